"""Unit tests for usermgmt.core.config: validation of env-driven settings."""

import unittest

from pydantic import ValidationError

from support import make_oidc_settings, make_settings


class TestSettingsDefaults(unittest.TestCase):
    def test_local_mode_defaults(self) -> None:
        settings = make_settings()
        self.assertEqual(settings.AUTH_MODE, "local")
        self.assertEqual(settings.ACCESS_TOKEN_TTL_SECONDS, 900)
        self.assertEqual(settings.REFRESH_TOKEN_TTL_SECONDS, 7 * 24 * 3600)
        self.assertEqual(settings.REFRESH_COOKIE_NAME, "refresh_token")
        self.assertEqual(settings.API_PREFIX, "")

    def test_settings_are_frozen(self) -> None:
        settings = make_settings()
        with self.assertRaises(ValidationError):
            settings.AUTH_MODE = "oidc"


class TestSettingsValidation(unittest.TestCase):
    def test_rejects_non_sql_database_url(self) -> None:
        with self.assertRaises(ValidationError):
            make_settings(DATABASE_URL="mysql://localhost/db")

    def test_log_level_is_normalized(self) -> None:
        self.assertEqual(make_settings(LOG_LEVEL="debug").LOG_LEVEL, "DEBUG")
        with self.assertRaises(ValidationError):
            make_settings(LOG_LEVEL="chatty")

    def test_api_prefix_must_be_absolute(self) -> None:
        self.assertEqual(make_settings(API_PREFIX="/api/").API_PREFIX, "/api")
        with self.assertRaises(ValidationError):
            make_settings(API_PREFIX="api")

    def test_blank_jwt_secret_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            make_settings(JWT_SECRET="   ")

    def test_ttl_bounds(self) -> None:
        with self.assertRaises(ValidationError):
            make_settings(ACCESS_TOKEN_TTL_SECONDS=10)
        with self.assertRaises(ValidationError):
            make_settings(REFRESH_TOKEN_TTL_SECONDS=100 * 24 * 3600)


class TestOidcSettings(unittest.TestCase):
    def test_oidc_mode_requires_provider_fields(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            make_settings(AUTH_MODE="oidc", OIDC_BASE_URL="https://sso.test")
        message = str(ctx.exception)
        self.assertIn("OIDC_REALM", message)
        self.assertIn("OIDC_CLIENT_SECRET", message)

    def test_oidc_urls_derived_from_base_and_realm(self) -> None:
        settings = make_oidc_settings(OIDC_BASE_URL="https://sso.test/")
        self.assertEqual(settings.oidc_realm_url, "https://sso.test/realms/demo")
        self.assertEqual(settings.oidc_admin_url, "https://sso.test/admin/realms/demo")

    def test_oidc_base_url_scheme_checked(self) -> None:
        with self.assertRaises(ValidationError):
            make_oidc_settings(OIDC_BASE_URL="ftp://sso.test")


if __name__ == "__main__":
    unittest.main()
