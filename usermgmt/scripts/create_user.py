"""
Create a local user (e.g. an extra admin) without going through the API. Run from project root:
  python -m usermgmt.scripts.create_user USERNAME PASSWORD [role] --name NAME --email EMAIL
Example:
  python -m usermgmt.scripts.create_user ada s3cret-pass admin --name "Ada Lovelace" --email ada@example.com
"""
import argparse
import sys

from usermgmt.core.config import get_settings
from usermgmt.core.database import build_session_factory
from usermgmt.core.security import PASSWORD_MAX_LEN, USERNAME_MAX_LEN, hash_password
from usermgmt.models import Role, User
from usermgmt.repositories import users as user_repo


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a local user profile.")
    parser.add_argument("username", help=f"Username (1-{USERNAME_MAX_LEN} chars)")
    parser.add_argument("password", help=f"Password (1-{PASSWORD_MAX_LEN} chars)")
    parser.add_argument(
        "role", nargs="?", default=Role.USER.value, choices=[r.value for r in Role]
    )
    parser.add_argument("--name", help="Display name (defaults to the username)")
    parser.add_argument("--email", help="Email (defaults to USERNAME@example.com)")
    args = parser.parse_args(argv)

    settings = get_settings()
    if settings.AUTH_MODE != "local":
        print("AUTH_MODE is not 'local'; create users through the API instead.", file=sys.stderr)
        return 1

    username = args.username.strip()
    if not username or len(username) > USERNAME_MAX_LEN:
        print("Invalid username length.", file=sys.stderr)
        return 1
    if not args.password.strip() or len(args.password) > PASSWORD_MAX_LEN:
        print(f"Password must be 1-{PASSWORD_MAX_LEN} characters.", file=sys.stderr)
        return 1
    email = (args.email or f"{username}@example.com").strip()

    db = build_session_factory(settings)()
    try:
        if user_repo.username_taken(db, username):
            print(f"User '{username}' already exists.", file=sys.stderr)
            return 1
        if user_repo.email_taken(db, email):
            print(f"Email '{email}' is already in use.", file=sys.stderr)
            return 1
        user = User(
            name=(args.name or username).strip(),
            email=email,
            username=username,
            password_hash=hash_password(args.password),
            role=args.role,
            active=True,
        )
        db.add(user)
        db.commit()
        print(f"Created user '{username}' with role '{args.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
