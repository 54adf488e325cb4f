"""API tests for /auth in local mode: login, refresh rotation, logout and the refresh cookie."""

import unittest
from unittest.mock import patch

from support import add_user, login, make_client, make_session_factory, make_settings
from usermgmt.core.security import hash_refresh_token, verify_password
from usermgmt.models import RefreshToken

COOKIE = "refresh_token"


class AuthApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = make_settings()
        self.session_factory = make_session_factory()
        with self.session_factory() as db:
            add_user(db, "alice", role="admin")
            add_user(db, "ivan", active=False)
        self.client = make_client(self.settings, self.session_factory)

    def _refresh_with(self, token: str):
        self.client.cookies.clear()
        return self.client.post("/auth/refresh", headers={"Cookie": f"{COOKIE}={token}"})


class TestLogin(AuthApiTestCase):
    def test_success_returns_token_profile_and_cookie(self) -> None:
        resp = login(self.client, "alice")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["token_type"], "bearer")
        self.assertTrue(body["access_token"])
        self.assertEqual(body["user"]["username"], "alice")
        self.assertEqual(body["user"]["role"], "admin")
        self.assertNotIn("password_hash", body["user"])
        self.assertNotIn("refresh_token", body)

        cookie = resp.headers["set-cookie"]
        self.assertIn(f"{COOKIE}=", cookie)
        self.assertIn("HttpOnly", cookie)
        self.assertIn("Path=/", cookie)
        self.assertIn("SameSite=strict", cookie)
        self.assertIn(f"Max-Age={self.settings.REFRESH_TOKEN_TTL_SECONDS}", cookie)

    def test_username_is_trimmed(self) -> None:
        resp = self.client.post(
            "/auth/login", json={"username": "  alice ", "password": "correct-horse"}
        )
        self.assertEqual(resp.status_code, 200)

    def test_wrong_password_and_unknown_user_are_indistinguishable(self) -> None:
        wrong = login(self.client, "alice", "nope")
        unknown = login(self.client, "nobody", "nope")
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(wrong.json(), unknown.json())
        self.assertNotIn("set-cookie", wrong.headers)

    def test_unknown_and_inactive_users_still_pay_bcrypt(self) -> None:
        for username in ("nobody", "ivan", "alice"):
            with patch(
                "usermgmt.services.sessions.verify_password", wraps=verify_password
            ) as checked:
                login(self.client, username, "wrong-password")
            checked.assert_called_once()
            self.assertTrue(checked.call_args.args[1].startswith("$2"))

    def test_inactive_user_cannot_log_in(self) -> None:
        self.assertEqual(login(self.client, "ivan").status_code, 401)

    def test_malformed_body_is_400(self) -> None:
        self.assertEqual(self.client.post("/auth/login", json={"username": "alice"}).status_code, 400)
        resp = self.client.post("/auth/login", json={"username": "   ", "password": "x"})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("detail", resp.json())

    def test_new_login_ends_previous_session(self) -> None:
        first = login(self.client, "alice").cookies[COOKIE]
        second = login(self.client, "alice").cookies[COOKIE]
        self.assertEqual(self._refresh_with(first).status_code, 401)
        self.assertEqual(self._refresh_with(second).status_code, 200)


class TestRefresh(AuthApiTestCase):
    def test_rotation_issues_new_cookie_and_access_token(self) -> None:
        original = login(self.client, "alice").cookies[COOKIE]
        resp = self._refresh_with(original)
        self.assertEqual(resp.status_code, 200)
        rotated = resp.cookies[COOKIE]
        self.assertNotEqual(rotated, original)
        self.assertEqual(resp.json()["user"]["username"], "alice")

        me = self.client.get(
            "/users/me", headers={"Authorization": f"Bearer {resp.json()['access_token']}"}
        )
        self.assertEqual(me.status_code, 200)

    def test_replayed_token_rejected_and_cookie_cleared(self) -> None:
        original = login(self.client, "alice").cookies[COOKIE]
        self.assertEqual(self._refresh_with(original).status_code, 200)
        replay = self._refresh_with(original)
        self.assertEqual(replay.status_code, 401)
        self.assertIn("Max-Age=0", replay.headers["set-cookie"])

    def test_missing_cookie(self) -> None:
        self.client.cookies.clear()
        resp = self.client.post("/auth/refresh")
        self.assertEqual(resp.status_code, 401)
        self.assertIn(f"{COOKIE}=", resp.headers["set-cookie"])

    def test_cookie_jar_carries_rotation(self) -> None:
        login(self.client, "alice")
        for _ in range(3):
            self.assertEqual(self.client.post("/auth/refresh").status_code, 200)

    def test_deactivated_user_cannot_refresh(self) -> None:
        token = login(self.client, "alice").cookies[COOKIE]
        with self.session_factory() as db:
            record = (
                db.query(RefreshToken)
                .filter(RefreshToken.token_hash == hash_refresh_token(token))
                .one()
            )
            record.user.active = False
            db.commit()
        self.assertEqual(self._refresh_with(token).status_code, 401)


class TestLogout(AuthApiTestCase):
    def test_logout_revokes_and_clears_cookie(self) -> None:
        token = login(self.client, "alice").cookies[COOKIE]
        resp = self.client.post("/auth/logout")
        self.assertEqual(resp.status_code, 204)
        self.assertIn("Max-Age=0", resp.headers["set-cookie"])
        self.assertEqual(self._refresh_with(token).status_code, 401)

    def test_logout_without_cookie_still_204(self) -> None:
        self.client.cookies.clear()
        resp = self.client.post("/auth/logout")
        self.assertEqual(resp.status_code, 204)
        self.assertIn("Max-Age=0", resp.headers["set-cookie"])

    def test_logout_with_unknown_cookie_still_204(self) -> None:
        self.client.cookies.clear()
        resp = self.client.post("/auth/logout", headers={"Cookie": f"{COOKIE}=garbage"})
        self.assertEqual(resp.status_code, 204)


class TestApiPrefix(unittest.TestCase):
    def test_routes_mount_under_prefix(self) -> None:
        session_factory = make_session_factory()
        with session_factory() as db:
            add_user(db, "alice")
        client = make_client(make_settings(API_PREFIX="/api"), session_factory)
        self.assertEqual(
            client.post(
                "/api/auth/login", json={"username": "alice", "password": "correct-horse"}
            ).status_code,
            200,
        )
        self.assertEqual(client.get("/api/health").status_code, 200)


if __name__ == "__main__":
    unittest.main()
