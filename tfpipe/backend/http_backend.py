from __future__ import annotations

from typing import Dict, Optional

import requests

from ..infra.contracts import HttpClient
from ..infra.errors import BackendUnreachable, ConfigError, InitializationFailed
from ..infra.models import BackendAddresses, CredentialBundle, Environment
from ..tofu.runner import TofuClient
from ..utils.names import validate_name


def derive_addresses(base_url: str, project: str, environment: str) -> BackendAddresses:
    """State, lock and unlock URLs for one (project, environment)."""
    base = str(base_url or "").strip().rstrip("/")
    if not base:
        raise ConfigError("backend base URL missing. Set TF_BACKEND_BASE_URL or backend.base_url in deploy config.")
    try:
        project = validate_name("project", project)
        environment = validate_name("environment", environment)
    except ValueError as e:
        raise ConfigError(str(e))
    address = f"{base}/{project}/{environment}"
    lock = f"{address}/lock"
    return BackendAddresses(address=address, lock_address=lock, unlock_address=lock)


def transport_env(addresses: BackendAddresses, bundle: CredentialBundle) -> Dict[str, str]:
    """Environment variables the HTTP state backend reads its settings from."""
    return {
        "TF_HTTP_ADDRESS": addresses.address,
        "TF_HTTP_LOCK_ADDRESS": addresses.lock_address,
        "TF_HTTP_UNLOCK_ADDRESS": addresses.unlock_address,
        "TF_HTTP_LOCK_METHOD": "LOCK",
        "TF_HTTP_UNLOCK_METHOD": "UNLOCK",
        "TF_HTTP_USERNAME": bundle.get("TF_HTTP_USERNAME"),
        "TF_HTTP_PASSWORD": bundle.get("TF_HTTP_PASSWORD"),
    }


def basic_auth(bundle: CredentialBundle):
    return (bundle.get("TF_HTTP_USERNAME"), bundle.get("TF_HTTP_PASSWORD"))


def probe(
    addresses: BackendAddresses,
    bundle: CredentialBundle,
    *,
    http: Optional[HttpClient] = None,
    timeout: int = 15,
) -> Optional[int]:
    """Connectivity check against the state address.

    401 is fatal. 404 means the state does not exist yet. Everything else is
    a warning; ``init`` will fail loudly if the backend really is down.
    Returns the HTTP status, or None on transport error.
    """
    client = http or requests
    try:
        r = client.get(addresses.address, auth=basic_auth(bundle), timeout=timeout)
    except requests.RequestException as e:
        print(f"[backend] WARNING: state backend probe failed for {addresses.address}: {e}")
        return None

    status = int(r.status_code)
    if status == 401:
        raise BackendUnreachable(f"state backend rejected credentials (HTTP 401) at {addresses.address}")
    if status == 404:
        print(f"[backend] state not yet created at {addresses.address}")
    elif not (200 <= status < 300):
        print(f"[backend] WARNING: state backend probe returned HTTP {status} for {addresses.address}")
    return status


def initialize(tofu: TofuClient) -> None:
    cp = tofu.init()
    if not cp.ok:
        raise InitializationFailed(f"{tofu.binary} init failed in {tofu.workdir} (exit {cp.returncode}): {cp.tail()}")


class BackendConfigurator:
    """Points the state client of one environment at its remote state."""

    def __init__(self, *, base_url: str, project: str, http: Optional[HttpClient] = None):
        self.base_url = base_url
        self.project = project
        self.http = http

    def configure(self, environment: Environment, bundle: CredentialBundle, tofu: TofuClient) -> TofuClient:
        """Derive addresses, probe, and run ``init -reconfigure``.

        Returns a TofuClient carrying this environment's credentials and the
        transport env. Safe to repeat.
        """
        addresses = derive_addresses(self.base_url, self.project, environment.name)
        configured = tofu.with_env({**bundle.as_env(), **transport_env(addresses, bundle)})
        probe(addresses, bundle, http=self.http)
        initialize(configured)
        print(f"[backend] initialized environment={environment.name} address={addresses.address}")
        return configured

    def addresses(self, environment: Environment) -> BackendAddresses:
        return derive_addresses(self.base_url, self.project, environment.name)
