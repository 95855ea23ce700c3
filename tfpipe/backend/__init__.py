"""HTTP remote state backend: address derivation, init, lock checks."""

from .http_backend import BackendConfigurator, derive_addresses, transport_env  # noqa: F401
from .locks import LockChecker, check_lock, parse_lock_listing  # noqa: F401
