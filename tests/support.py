"""Shared builders for the test suites: settings, in-memory database, users and API client."""

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from usermgmt.core import security
from usermgmt.core.config import Settings
from usermgmt.core.database import get_db
from usermgmt.main import create_app
from usermgmt.models import Base, User

# Cheap hashes keep the suite fast; production cost is unaffected.
security.BCRYPT_ROUNDS = 4

DEFAULT_PASSWORD = "correct-horse"


def make_settings(**overrides: object) -> Settings:
    """Local-mode settings on an in-memory database, ignoring any .env file."""
    values: dict[str, object] = {
        "DATABASE_URL": "sqlite://",
        "JWT_SECRET": "test-secret",
        "SEED_ON_STARTUP": False,
        "_env_file": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_oidc_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "AUTH_MODE": "oidc",
        "OIDC_BASE_URL": "https://sso.test",
        "OIDC_REALM": "demo",
        "OIDC_CLIENT_ID": "usermgmt",
        "OIDC_CLIENT_SECRET": "client-secret",
    }
    values.update(overrides)
    return make_settings(**values)


def make_session_factory() -> sessionmaker:
    """Fresh in-memory SQLite schema shared by every session (single connection)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_file_database(directory: str) -> tuple[str, sessionmaker]:
    """
    SQLite file database with the schema created; returns its URL and a factory
    whose sessions use separate connections, like concurrent requests.
    """
    url = f"sqlite:///{directory}/usermgmt.db"
    engine = create_engine(url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return url, sessionmaker(autocommit=False, autoflush=False, bind=engine)


def add_user(
    db: Session,
    username: str,
    password: str | None = DEFAULT_PASSWORD,
    role: str = "user",
    active: bool = True,
    name: str | None = None,
    email: str | None = None,
    external_id: str | None = None,
) -> User:
    user = User(
        name=name or username.title(),
        email=email or f"{username}@example.com",
        username=username,
        role=role,
        active=active,
        password_hash=security.hash_password(password) if password else None,
        external_id=external_id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_client(
    settings: Settings,
    session_factory: sessionmaker,
    overrides: dict | None = None,
) -> TestClient:
    """TestClient for an app whose requests use session_factory."""
    app = create_app(settings)

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides.update(overrides or {})
    return TestClient(app)


def login(client: TestClient, username: str, password: str = DEFAULT_PASSWORD):
    return client.post("/auth/login", json={"username": username, "password": password})


def bearer(client: TestClient, username: str, password: str = DEFAULT_PASSWORD) -> dict[str, str]:
    resp = login(client, username, password)
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
