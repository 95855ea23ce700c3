from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from ..infra.contracts import HttpClient
from ..infra.errors import AuthenticationError


@dataclass
class SecretRead:
    """Outcome of one KV read. ``status`` is None on transport failure."""

    path: str
    status: Optional[int]
    data: Dict[str, str] = field(default_factory=dict)
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300

    @property
    def not_found(self) -> bool:
        return self.status == 404


class VaultClient:
    """Minimal Vault HTTP client: JWT login plus KV reads.

    ``http`` defaults to the ``requests`` module; tests pass a fake with the
    same get/post surface.
    """

    def __init__(
        self,
        address: str,
        *,
        auth_mount: str = "jwt",
        kv_mount: str = "secret",
        kv_version: int = 1,
        timeout: int = 30,
        http: Optional[HttpClient] = None,
    ):
        self.address = str(address or "").rstrip("/")
        self.auth_mount = auth_mount.strip("/")
        self.kv_mount = kv_mount.strip("/")
        self.kv_version = kv_version
        self.timeout = timeout
        self.http = http or requests
        self._token = ""

    @property
    def authenticated(self) -> bool:
        return bool(self._token)

    def login_jwt(self, jwt: str, role: str) -> None:
        """Exchange a CI-issued JWT for a Vault session token."""
        if not self.address:
            raise AuthenticationError("Vault address missing. Set VAULT_ADDR or vault.address in deploy config.")
        if not jwt:
            raise AuthenticationError("CI identity token missing. Set VAULT_ID_TOKEN or run inside a Buildkite job.")
        url = f"{self.address}/v1/auth/{self.auth_mount}/login"
        payload: Dict[str, Any] = {"jwt": jwt}
        if role:
            payload["role"] = role
        try:
            r = self.http.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise AuthenticationError(f"Vault login endpoint unreachable at {url}: {e}")

        if not (200 <= r.status_code < 300):
            raise AuthenticationError(f"Vault rejected the CI identity token (HTTP {r.status_code}) at {url}")

        try:
            body = r.json()
        except ValueError:
            body = {}
        token = str(((body or {}).get("auth") or {}).get("client_token") or "")
        if not token:
            raise AuthenticationError(f"Vault login at {url} returned no client_token")
        self._token = token

    def _kv_url(self, path: str) -> str:
        rel = path.strip("/")
        if self.kv_version == 2:
            return f"{self.address}/v1/{self.kv_mount}/data/{rel}"
        return f"{self.address}/v1/{self.kv_mount}/{rel}"

    def read(self, path: str) -> SecretRead:
        """Read ``<kv_mount>/<path>``. Never raises for HTTP or transport errors."""
        if not self._token:
            raise AuthenticationError("Vault read attempted before login")
        url = self._kv_url(path)
        try:
            r = self.http.get(url, headers={"X-Vault-Token": self._token}, timeout=self.timeout)
        except requests.RequestException as e:
            return SecretRead(path=path, status=None, error=str(e))

        if not (200 <= r.status_code < 300):
            return SecretRead(path=path, status=r.status_code, error=f"HTTP {r.status_code}")

        try:
            body = r.json() or {}
        except ValueError:
            return SecretRead(path=path, status=r.status_code, error="response is not JSON")
        data = body.get("data") or {}
        if self.kv_version == 2:
            data = data.get("data") or {}
        if not isinstance(data, dict):
            return SecretRead(path=path, status=r.status_code, error="secret data is not an object")
        return SecretRead(
            path=path,
            status=r.status_code,
            data={str(k): "" if v is None else str(v) for k, v in data.items()},
        )

    def forget(self) -> None:
        self._token = ""
