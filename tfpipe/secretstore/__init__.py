"""Per-environment credentials from Vault.

Safe by default:
- Secret values are never printed.
- Credentials stay in a CredentialBundle and are handed to child processes
  explicitly; os.environ is never modified.
"""

from .export import consume_export_file, write_export_file  # noqa: F401
from .loader import CredentialLoader  # noqa: F401
from .vault import VaultClient  # noqa: F401
