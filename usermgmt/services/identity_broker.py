"""
Mirror local user CRUD into the identity provider's admin API.

Every multi-step operation reports its sub-steps individually (SyncResult)
so the caller decides which failures are fatal and which are only logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from usermgmt.models import Role
from usermgmt.services.oidc import OidcClient, log_upstream_failure

if TYPE_CHECKING:
    from usermgmt.core.config import Settings

logger = logging.getLogger(__name__)

MANAGED_ROLES = (Role.ADMIN.value, Role.USER.value)

# Step names reported in SyncResult.steps.
STEP_SERVICE_TOKEN = "service_token"
STEP_CREATE = "create"
STEP_RESOLVE_ID = "resolve_id"
STEP_RECOVER = "recover"
STEP_PROFILE = "profile"
STEP_PASSWORD = "password"
STEP_ROLES = "roles"


@dataclass(frozen=True)
class RemoteUserCommand:
    """Desired remote state of a user. password=None leaves credentials untouched on update."""

    username: str
    email: str
    name: str
    role: str | None = None
    active: bool = True
    password: str | None = None


@dataclass(frozen=True)
class SyncStep:
    name: str
    ok: bool
    detail: str | None = None


@dataclass
class SyncResult:
    """Outcome of a broker operation, one entry per attempted step."""

    steps: list[SyncStep] = field(default_factory=list)
    external_id: str | None = None

    def record(self, name: str, ok: bool, detail: str | None = None) -> bool:
        self.steps.append(SyncStep(name=name, ok=ok, detail=detail))
        if not ok:
            logger.warning(
                "Identity sync step failed",
                extra={"sync_step": name, "external_id": self.external_id, "reason": detail},
            )
        return ok

    def succeeded(self, name: str) -> bool:
        return any(s.name == name and s.ok for s in self.steps)

    @property
    def failed_steps(self) -> list[str]:
        return [s.name for s in self.steps if not s.ok]

    @property
    def ok(self) -> bool:
        return not self.failed_steps


class IdentityBroker:
    """Admin-API client for one realm, authenticated with the service account."""

    def __init__(
        self,
        settings: Settings,
        oidc_client: OidcClient | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.admin_url = settings.oidc_admin_url
        self.timeout = settings.OIDC_REQUEST_TIMEOUT_SEC
        self.oidc_client = oidc_client or OidcClient(settings, transport=transport)
        self.transport = transport if transport is not None else self.oidc_client.transport

    @property
    def users_url(self) -> str:
        return f"{self.admin_url}/users"

    @property
    def roles_url(self) -> str:
        return f"{self.admin_url}/roles"

    def resolve_service_token(self) -> str | None:
        """Client-credentials exchange; None means every admin operation must fail."""
        return self.oidc_client.client_credentials_token()

    def _send(
        self,
        client: httpx.Client,
        method: str,
        url: str,
        token: str,
        payload: Any = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response | None:
        try:
            return client.request(
                method,
                url,
                headers={"Authorization": f"Bearer {token}"},
                json=payload,
                params=params,
            )
        except httpx.HTTPError as e:
            logger.warning("Identity provider unreachable (%s %s): %s", method, url, e)
            return None

    def _ok(self, resp: httpx.Response | None, action: str) -> bool:
        if resp is None:
            return False
        if resp.status_code >= 300:
            log_upstream_failure(action, resp)
            return False
        return True

    def _json(self, resp: httpx.Response | None, action: str) -> Any:
        if not self._ok(resp, action):
            return None
        try:
            return resp.json()
        except ValueError:
            logger.warning("Identity provider returned non-JSON for %s", action)
            return None

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _id_from_location(resp: httpx.Response) -> str | None:
        location = resp.headers.get("Location") or ""
        tail = location.rstrip("/").rsplit("/", 1)[-1]
        return tail or None

    def find_user_id_by_username(
        self, client: httpx.Client, username: str, token: str
    ) -> str | None:
        users = self._json(
            self._send(
                client,
                "GET",
                self.users_url,
                token,
                params={"username": username, "exact": "true"},
            ),
            "user lookup",
        )
        if not isinstance(users, list) or not users:
            return None
        return users[0].get("id") or None

    def _set_password(
        self, client: httpx.Client, user_id: str, password: str, token: str
    ) -> bool:
        resp = self._send(
            client,
            "PUT",
            f"{self.users_url}/{user_id}/reset-password",
            token,
            {"type": "password", "value": password, "temporary": False},
        )
        return self._ok(resp, "password reset")

    def assign_realm_role(
        self, client: httpx.Client, user_id: str, role: str | None, token: str
    ) -> bool:
        """
        Leave the user holding exactly one managed realm role.

        The provider models assignments as a set, so managed roles currently
        held are removed before the target role is added. Unmanaged roles are
        left alone.
        """
        target = Role.normalize(role).value
        representations: dict[str, Any] = {}
        for name in MANAGED_ROLES:
            rep = self._json(
                self._send(client, "GET", f"{self.roles_url}/{name}", token),
                f"role lookup ({name})",
            )
            if not isinstance(rep, dict):
                return False
            representations[name] = rep

        mappings_url = f"{self.users_url}/{user_id}/role-mappings/realm"
        current = self._json(
            self._send(client, "GET", mappings_url, token), "role mappings lookup"
        )
        if not isinstance(current, list):
            return False

        held = {m.get("name") for m in current if isinstance(m, dict)}
        to_remove = [representations[name] for name in MANAGED_ROLES if name in held]
        if to_remove:
            resp = self._send(client, "DELETE", mappings_url, token, to_remove)
            if not self._ok(resp, "role removal"):
                return False

        resp = self._send(client, "POST", mappings_url, token, [representations[target]])
        return self._ok(resp, "role assignment")

    def create_remote_user(self, command: RemoteUserCommand) -> SyncResult:
        """
        Provision a remote user and return its id in result.external_id.

        A 409 (user already exists upstream, e.g. after an earlier partial
        attempt) is recovered by adopting the existing account. Role
        assignment failure is reported but does not clear external_id.
        """
        result = SyncResult()
        token = self.resolve_service_token()
        if not result.record(STEP_SERVICE_TOKEN, token is not None):
            return result

        payload = {
            "username": command.username,
            "email": command.email,
            "firstName": command.name,
            "enabled": command.active,
            "emailVerified": True,
            "requiredActions": [],
            "credentials": [
                {"type": "password", "value": command.password or "", "temporary": False}
            ],
        }
        with self._client() as client:
            resp = self._send(client, "POST", self.users_url, token, payload)
            if resp is not None and resp.status_code == 409:
                result.record(STEP_CREATE, True, "already exists upstream")
                return self._recover_existing(client, command, token, result)
            if not result.record(STEP_CREATE, self._ok(resp, "user create")):
                return result

            external_id = self._id_from_location(resp)
            if external_id is None:
                external_id = self.find_user_id_by_username(client, command.username, token)
            if not result.record(STEP_RESOLVE_ID, external_id is not None):
                return result
            result.external_id = external_id

            result.record(
                STEP_ROLES, self.assign_realm_role(client, external_id, command.role, token)
            )
        return result

    def _recover_existing(
        self,
        client: httpx.Client,
        command: RemoteUserCommand,
        token: str,
        result: SyncResult,
    ) -> SyncResult:
        external_id = self.find_user_id_by_username(client, command.username, token)
        if not result.record(STEP_RESOLVE_ID, external_id is not None):
            return result
        result.external_id = external_id

        resp = self._send(
            client,
            "PUT",
            f"{self.users_url}/{external_id}",
            token,
            {
                "email": command.email,
                "firstName": command.name,
                "enabled": command.active,
                "emailVerified": True,
                "requiredActions": [],
            },
        )
        if not result.record(STEP_RECOVER, self._ok(resp, "user recovery")):
            result.external_id = None
            return result
        if command.password:
            result.record(
                STEP_PASSWORD,
                self._set_password(client, external_id, command.password, token),
            )
        result.record(
            STEP_ROLES, self.assign_realm_role(client, external_id, command.role, token)
        )
        return result

    def update_remote_user(self, external_id: str | None, command: RemoteUserCommand) -> SyncResult:
        """
        Push profile and enabled flag, then the password (only if supplied), then the role.

        Only service_token and profile failures mean nothing was changed upstream.
        """
        result = SyncResult(external_id=external_id)
        if not external_id:
            result.record(STEP_PROFILE, False, "user has no external id")
            return result
        token = self.resolve_service_token()
        if not result.record(STEP_SERVICE_TOKEN, token is not None):
            return result

        with self._client() as client:
            resp = self._send(
                client,
                "PUT",
                f"{self.users_url}/{external_id}",
                token,
                {
                    "username": command.username,
                    "email": command.email,
                    "firstName": command.name,
                    "enabled": command.active,
                },
            )
            if not result.record(STEP_PROFILE, self._ok(resp, "user update")):
                return result
            if command.password:
                result.record(
                    STEP_PASSWORD,
                    self._set_password(client, external_id, command.password, token),
                )
            result.record(
                STEP_ROLES, self.assign_realm_role(client, external_id, command.role, token)
            )
        return result

    def delete_remote_user(self, external_id: str | None) -> bool:
        if not external_id:
            return False
        token = self.resolve_service_token()
        if token is None:
            return False
        with self._client() as client:
            resp = self._send(client, "DELETE", f"{self.users_url}/{external_id}", token)
            return self._ok(resp, "user delete")

    def logout_remote_user(self, external_id: str | None) -> bool:
        """End every provider session of the user (administrative force-logout)."""
        if not external_id:
            return False
        token = self.resolve_service_token()
        if token is None:
            return False
        with self._client() as client:
            resp = self._send(client, "POST", f"{self.users_url}/{external_id}/logout", token)
            return self._ok(resp, "user logout")
