"""Tests for usermgmt.services.refresh_tokens against SQLite (in-memory, and a file for interleaved sessions)."""

import tempfile
import unittest
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

from support import add_user, make_file_database, make_session_factory
from usermgmt.core.security import hash_refresh_token
from usermgmt.models import RefreshToken
from usermgmt.services import refresh_tokens

TTL = 3600


class RefreshTokenTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.user = add_user(self.db, "alice")

    def tearDown(self) -> None:
        self.db.close()

    def _record(self, plain: str) -> RefreshToken:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.token_hash == hash_refresh_token(plain))
            .one()
        )


class TestIssue(RefreshTokenTestCase):
    def test_stores_only_the_hash(self) -> None:
        plain = refresh_tokens.issue(self.db, self.user, TTL)
        self.db.commit()
        record = self._record(plain)
        self.assertNotEqual(record.token_hash, plain)
        self.assertIsNone(record.revoked_at)
        self.assertEqual(record.user_id, self.user.id)

    def test_new_login_revokes_previous_chain(self) -> None:
        first = refresh_tokens.issue(self.db, self.user, TTL)
        second = refresh_tokens.issue(self.db, self.user, TTL)
        self.db.commit()
        self.assertIsNone(refresh_tokens.validate(self.db, first))
        self.assertIsNotNone(refresh_tokens.validate(self.db, second))

    def test_does_not_touch_other_users(self) -> None:
        bob = add_user(self.db, "bob")
        bobs = refresh_tokens.issue(self.db, bob, TTL)
        refresh_tokens.issue(self.db, self.user, TTL)
        self.db.commit()
        self.assertIsNotNone(refresh_tokens.validate(self.db, bobs))


class TestValidate(RefreshTokenTestCase):
    def test_blank_and_unknown_tokens(self) -> None:
        self.assertIsNone(refresh_tokens.validate(self.db, None))
        self.assertIsNone(refresh_tokens.validate(self.db, "   "))
        self.assertIsNone(refresh_tokens.validate(self.db, "never-issued"))

    def test_validate_has_no_side_effects(self) -> None:
        plain = refresh_tokens.issue(self.db, self.user, TTL)
        self.db.commit()
        for _ in range(3):
            self.assertIsNotNone(refresh_tokens.validate(self.db, plain))
        self.assertIsNone(self._record(plain).revoked_at)

    def test_expired_token_is_unusable(self) -> None:
        plain = refresh_tokens.issue(self.db, self.user, TTL)
        record = self._record(plain)
        record.expires_at = datetime.now(UTC) - timedelta(seconds=1)
        self.db.commit()
        self.assertIsNone(refresh_tokens.validate(self.db, plain))
        self.assertIsNone(refresh_tokens.rotate(self.db, plain, TTL))

    def test_inactive_owner_makes_token_unusable(self) -> None:
        plain = refresh_tokens.issue(self.db, self.user, TTL)
        self.user.active = False
        self.db.commit()
        self.assertIsNone(refresh_tokens.validate(self.db, plain))


class TestRotate(RefreshTokenTestCase):
    def test_rotation_revokes_consumed_token_and_mints_successor(self) -> None:
        original = refresh_tokens.issue(self.db, self.user, TTL)
        rotated = refresh_tokens.rotate(self.db, original, TTL)
        self.db.commit()
        self.assertIsNotNone(rotated)
        self.assertEqual(rotated.user.id, self.user.id)
        self.assertNotEqual(rotated.plain_token, original)
        self.assertIsNotNone(self._record(original).revoked_at)
        self.assertIsNotNone(refresh_tokens.validate(self.db, rotated.plain_token))

    def test_consumed_token_cannot_be_replayed(self) -> None:
        original = refresh_tokens.issue(self.db, self.user, TTL)
        rotated = refresh_tokens.rotate(self.db, original, TTL)
        self.db.commit()
        self.assertIsNone(refresh_tokens.rotate(self.db, original, TTL))
        # A failed replay leaves the live successor alone.
        self.assertIsNotNone(refresh_tokens.validate(self.db, rotated.plain_token))

    def test_unknown_token(self) -> None:
        self.assertIsNone(refresh_tokens.rotate(self.db, "bogus", TTL))
        self.assertEqual(self.db.query(RefreshToken).count(), 0)


class TestRevoke(RefreshTokenTestCase):
    def test_revoke_by_plain_token_returns_owner(self) -> None:
        plain = refresh_tokens.issue(self.db, self.user, TTL)
        owner = refresh_tokens.revoke_by_plain_token(self.db, plain)
        self.db.commit()
        self.assertEqual(owner.id, self.user.id)
        self.assertIsNone(refresh_tokens.validate(self.db, plain))
        self.assertIsNone(refresh_tokens.revoke_by_plain_token(self.db, plain))

    def test_revoke_all_counts_only_outstanding(self) -> None:
        refresh_tokens.issue(self.db, self.user, TTL)
        latest = refresh_tokens.issue(self.db, self.user, TTL)
        rotated = refresh_tokens.rotate(self.db, latest, TTL)
        self.db.commit()
        self.assertIsNotNone(rotated)
        self.assertEqual(refresh_tokens.revoke_all_for_user(self.db, self.user), 1)
        self.db.commit()
        self.assertEqual(refresh_tokens.revoke_all_for_user(self.db, self.user), 0)
        outstanding = (
            self.db.query(RefreshToken).filter(RefreshToken.revoked_at.is_(None)).count()
        )
        self.assertEqual(outstanding, 0)


class TestConcurrentRotation(unittest.TestCase):
    """Two requests presenting the same token: only one may consume it."""

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        _, self.session_factory = make_file_database(self.tmp.name)
        with self.session_factory() as db:
            user = add_user(db, "alice")
            self.user_id = user.id
            self.plain = refresh_tokens.issue(db, user, TTL)
            db.commit()
        self.competing: list = []

    def tearDown(self) -> None:
        self.session_factory.kw["bind"].dispose()
        self.tmp.cleanup()

    def _live_tokens(self) -> int:
        with self.session_factory() as db:
            return (
                db.query(RefreshToken)
                .filter(RefreshToken.user_id == self.user_id, RefreshToken.revoked_at.is_(None))
                .count()
            )

    def _validate_then_compete(self):
        """validate() that lets another request rotate the same token and commit right after the read."""
        real_validate = refresh_tokens.validate

        def side_effect(db, plain):
            record = real_validate(db, plain)
            if db is not self.competing_db:
                with self.session_factory() as other:
                    self.competing_db = other
                    self.competing.append(refresh_tokens.rotate(other, plain, TTL))
                    other.commit()
            return record

        self.competing_db = None
        return patch.object(refresh_tokens, "validate", side_effect=side_effect)

    def test_interleaved_rotation_mints_one_successor(self) -> None:
        with self.session_factory() as db:
            with self._validate_then_compete():
                late = refresh_tokens.rotate(db, self.plain, TTL)
            db.commit()

        self.assertIsNotNone(self.competing[0])
        self.assertIsNone(late)
        self.assertEqual(self._live_tokens(), 1)

    def test_logout_after_competing_rotation_reports_no_owner(self) -> None:
        with self.session_factory() as db:
            with self._validate_then_compete():
                owner = refresh_tokens.revoke_by_plain_token(db, self.plain)
            db.commit()

        self.assertIsNotNone(self.competing[0])
        self.assertIsNone(owner)
        self.assertEqual(self._live_tokens(), 1)


if __name__ == "__main__":
    unittest.main()
