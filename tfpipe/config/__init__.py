"""Deploy configuration.

The YAML file at ``config/deploy.yml`` is the single source of truth for the
environment order, the production pattern and the external tool wiring.
Selected keys can be overridden from the CI environment.
"""

from .load_deploy_config import (  # noqa: F401
    AnalyzerSpec,
    DeployConfig,
    ProviderSpec,
    VaultSettings,
    load_deploy_config,
    resolve_config_path,
)
