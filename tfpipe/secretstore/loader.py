from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..config.load_deploy_config import ProviderSpec, VaultSettings
from ..infra.errors import AuthenticationError, RequiredSecretMissing
from ..infra.models import CredentialBundle
from .export import consume_export_file
from .vault import SecretRead, VaultClient

TokenSource = Callable[[str], str]


def identity_token_from_env(audience: str) -> str:
    return str(os.environ.get("VAULT_ID_TOKEN", "") or "").strip()


class CredentialLoader:
    """Builds a CredentialBundle for one environment.

    Per provider the namespaced path ``<provider>/<environment>`` is read
    first; on 404 the default path ``<provider>`` is tried when the provider
    allows it. Optional providers that still have nothing are skipped with a
    warning; required providers raise RequiredSecretMissing.
    """

    def __init__(
        self,
        settings: VaultSettings,
        *,
        client: Optional[VaultClient] = None,
        token_sources: Optional[Iterable[TokenSource]] = None,
    ):
        self.settings = settings
        self.client = client or VaultClient(
            settings.address,
            auth_mount=settings.auth_mount,
            kv_mount=settings.kv_mount,
            kv_version=settings.kv_version,
            timeout=settings.timeout,
        )
        self.token_sources: List[TokenSource] = list(token_sources or [identity_token_from_env])

    def _identity_token(self) -> str:
        for source in self.token_sources:
            try:
                token = source(self.settings.audience)
            except Exception as e:
                raise AuthenticationError(f"failed to obtain CI identity token: {e}")
            if token:
                return token
        return ""

    def authenticate(self) -> None:
        self.client.login_jwt(self._identity_token(), self.settings.role)
        print(f"[secrets] authenticated to {self.client.address} role={self.settings.role or '<default>'}")

    def _read_provider(self, provider: ProviderSpec, environment: str) -> SecretRead:
        res = self.client.read(f"{provider.name}/{environment}")
        if res.not_found and provider.fallback_default:
            print(f"[secrets] {provider.name}/{environment} not found; trying default path {provider.name}")
            res = self.client.read(provider.name)
        return res

    def _missing(self, provider: ProviderSpec, environment: str, reason: str, bundle: CredentialBundle) -> None:
        if provider.required:
            bundle.scrub()
            raise RequiredSecretMissing(
                f"required provider {provider.name!r} has no usable secret for environment {environment!r}: {reason}"
            )
        print(f"[secrets] WARNING: optional provider {provider.name!r} skipped for {environment!r}: {reason}")
        bundle.providers_skipped.append(provider.name)

    def load(self, environment: str, *, authenticate: bool = True) -> CredentialBundle:
        """Authenticate (unless already done) and fetch every configured provider."""
        if authenticate or not self.client.authenticated:
            self.authenticate()

        bundle = CredentialBundle(environment)
        for provider in self.settings.providers:
            res = self._read_provider(provider, environment)
            if not res.ok:
                self._missing(provider, environment, res.error or f"HTTP {res.status}", bundle)
                continue

            absent = [f for f in provider.fields if not res.data.get(f, "").strip()]
            if absent and provider.required:
                self._missing(provider, environment, f"fields missing or empty: {absent}", bundle)
                continue

            for secret_field, logical_name in provider.fields.items():
                value = res.data.get(secret_field, "")
                if value.strip():
                    bundle.set(logical_name, value)
            if absent:
                print(f"[secrets] WARNING: provider {provider.name!r} for {environment!r} lacks fields {absent}")
            bundle.providers_loaded.append(provider.name)

        print(
            f"[secrets] environment={environment} loaded={bundle.providers_loaded} "
            f"skipped={bundle.providers_skipped} keys={len(bundle)}"
        )
        return bundle

    def load_from_export(self, environment: str, path: Path) -> CredentialBundle:
        """Take the bundle from an export file written earlier in the same job.

        The file is deleted whether or not it is usable. Vault is not contacted.
        """
        try:
            values = consume_export_file(path)
        except (OSError, ValueError) as e:
            raise RequiredSecretMissing(f"credentials file {path} for environment {environment!r} is unreadable: {e}")

        bundle = CredentialBundle(environment, {k: v for k, v in values.items() if v.strip()})
        for provider in self.settings.providers:
            absent = [name for name in provider.fields.values() if name not in bundle]
            if absent and provider.required:
                self._missing(provider, environment, f"credentials file lacks {absent}", bundle)
            elif len(absent) == len(provider.fields):
                bundle.providers_skipped.append(provider.name)
            else:
                bundle.providers_loaded.append(provider.name)

        print(f"[secrets] environment={environment} loaded from credentials file keys={len(bundle)}")
        return bundle

    def close(self) -> None:
        self.client.forget()
