from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

from ..infra.errors import ConfigError
from ..infra.models import DeploymentSequence, Environment
from ..utils.names import validate_name
from .validate_deploy_config import validate_deploy_config

DEFAULT_CONFIG_REL_PATH = Path("config/deploy.yml")

DEFAULT_PRODUCTION_PATTERN = r"^(prd|prod|production)([-_].*)?$"
DEFAULT_WORKDIR_TEMPLATE = "environments/{environment}"


@dataclass(frozen=True)
class ProviderSpec:
    """One secret provider read from ``<kv_mount>/<name>/<environment>``.

    ``fields`` maps the secret's field names to the logical credential names
    the pipeline passes to subprocesses.
    """

    name: str
    fields: Dict[str, str]
    required: bool = False
    fallback_default: bool = True


DEFAULT_PROVIDERS: Tuple[ProviderSpec, ...] = (
    ProviderSpec(
        name="backend",
        fields={"username": "TF_HTTP_USERNAME", "password": "TF_HTTP_PASSWORD"},
        required=True,
        fallback_default=False,
    ),
    ProviderSpec(
        name="aws",
        fields={
            "access_key_id": "AWS_ACCESS_KEY_ID",
            "secret_access_key": "AWS_SECRET_ACCESS_KEY",
        },
    ),
    ProviderSpec(name="compliance", fields={"token": "COMPLIANCE_SCANNER_TOKEN"}),
)

BACKEND_PROVIDER = "backend"


@dataclass(frozen=True)
class VaultSettings:
    address: str = ""
    role: str = ""
    auth_mount: str = "jwt"
    kv_mount: str = "secret"
    kv_version: int = 1
    audience: str = "vault"
    timeout: int = 30
    providers: Tuple[ProviderSpec, ...] = DEFAULT_PROVIDERS


@dataclass(frozen=True)
class AnalyzerSpec:
    name: str
    command: Tuple[str, ...] = ()
    enabled: bool = True
    warn_threshold: int = 10

    @property
    def configured(self) -> bool:
        return self.enabled and bool(self.command)


@dataclass(frozen=True)
class DeployConfig:
    project: str = ""
    environments: Tuple[str, ...] = ()
    production_pattern: str = DEFAULT_PRODUCTION_PATTERN
    workdir_template: str = DEFAULT_WORKDIR_TEMPLATE
    tofu_binary: str = "tofu"
    backend_base_url: str = ""
    vault: VaultSettings = field(default_factory=VaultSettings)
    analyzers: Dict[str, AnalyzerSpec] = field(default_factory=dict)
    security_scan_command: str = ""
    repo_root: Path = field(default_factory=Path.cwd)

    def is_production(self, environment: str) -> bool:
        return re.match(self.production_pattern, environment, flags=re.IGNORECASE) is not None

    def workdir(self, environment: str) -> Path:
        rel = self.workdir_template.format(environment=environment, project=self.project)
        p = Path(rel)
        return p if p.is_absolute() else (self.repo_root / p)

    def require_project(self, override: Optional[str] = None) -> str:
        project = str(override or self.project or "").strip()
        if not project:
            raise ConfigError("project name missing. Set `project` in deploy config, DEPLOY_PROJECT, or --project.")
        try:
            return validate_name("project", project)
        except ValueError as e:
            raise ConfigError(str(e))

    def sequence(self, names: Optional[Sequence[str]] = None) -> DeploymentSequence:
        """Build the ordered DeploymentSequence (defaults to the configured order)."""
        wanted = list(names) if names is not None else list(self.environments)
        if not wanted:
            raise ConfigError("no environments configured. Set `environments` or DEPLOY_ENVIRONMENTS.")
        envs: List[Environment] = []
        for idx, raw in enumerate(wanted):
            try:
                name = validate_name("environment", raw)
            except ValueError as e:
                raise ConfigError(str(e))
            envs.append(
                Environment(
                    name=name,
                    position=idx,
                    workdir=self.workdir(name),
                    production=self.is_production(name),
                )
            )
        try:
            return DeploymentSequence(environments=tuple(envs))
        except ValueError as e:
            raise ConfigError(str(e))

    def environment(self, name: str) -> Environment:
        """Resolve one environment, keeping its configured position when known."""
        seq_names = list(self.environments)
        if name in seq_names:
            return self.sequence(seq_names).get(name)
        return self.sequence([name]).get(name)

    def analyzer(self, name: str) -> AnalyzerSpec:
        return self.analyzers.get(name) or AnalyzerSpec(name=name, enabled=False)


def resolve_config_path(repo_root: Path, cli_path: Optional[str] = None) -> Tuple[Path, bool]:
    """Resolve the deploy config path.

    Precedence:
      1) CLI flag --config
      2) TFPIPE_CONFIG
      3) <repo_root>/config/deploy.yml

    Returns (path, explicit). A missing explicit path is an error; a missing
    default path means "defaults plus environment overrides".
    """
    if cli_path and str(cli_path).strip():
        return Path(str(cli_path).strip()).expanduser().resolve(), True

    env_path = str(os.environ.get("TFPIPE_CONFIG", "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve(), True

    return (repo_root / DEFAULT_CONFIG_REL_PATH).resolve(), False


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"deploy config is not valid YAML: {path}: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"deploy config must be a mapping: {path}")
    return data


def _providers(raw: Any) -> Tuple[ProviderSpec, ...]:
    if raw is None:
        return DEFAULT_PROVIDERS
    out: List[ProviderSpec] = []
    for p in raw:
        name = str(p["name"])
        out.append(
            ProviderSpec(
                name=name,
                fields={str(k): str(v) for k, v in (p.get("fields") or {}).items()},
                # The state backend credential is always mandatory.
                required=bool(p.get("required", False)) or name == BACKEND_PROVIDER,
                fallback_default=bool(p.get("fallback_default", True)),
            )
        )
    if not any(p.name == BACKEND_PROVIDER for p in out):
        raise ConfigError(f"vault.providers must include the {BACKEND_PROVIDER!r} provider")
    return tuple(out)


def _analyzers(raw: Mapping[str, Any]) -> Dict[str, AnalyzerSpec]:
    out: Dict[str, AnalyzerSpec] = {}
    for key, name in (("ai_summary", "ai-summary"), ("blast_radius", "blast-radius")):
        blk = raw.get(key) or {}
        out[name] = AnalyzerSpec(
            name=name,
            command=tuple(str(x) for x in (blk.get("command") or [])),
            enabled=bool(blk.get("enabled", True)),
            warn_threshold=int(blk.get("warn_threshold", 10)),
        )
    return out


def _env(env: Mapping[str, str], key: str) -> str:
    return str(env.get(key, "") or "").strip()


def build_deploy_config(
    data: Dict[str, Any],
    *,
    repo_root: Path,
    env: Optional[Mapping[str, str]] = None,
) -> DeployConfig:
    """Turn a validated config mapping into DeployConfig, applying env overrides.

    Environment overrides:
      - DEPLOY_PROJECT, DEPLOY_ENVIRONMENTS (comma-separated)
      - TF_BACKEND_BASE_URL, TOFU_BINARY
      - VAULT_ADDR, VAULT_ROLE, VAULT_AUTH_MOUNT
    """
    env_map = env if env is not None else os.environ
    validate_deploy_config(data)

    vault_raw = data.get("vault") or {}
    vault = VaultSettings(
        address=_env(env_map, "VAULT_ADDR") or str(vault_raw.get("address", "") or ""),
        role=_env(env_map, "VAULT_ROLE") or str(vault_raw.get("role", "") or ""),
        auth_mount=_env(env_map, "VAULT_AUTH_MOUNT") or str(vault_raw.get("auth_mount", "jwt")),
        kv_mount=str(vault_raw.get("kv_mount", "secret")),
        kv_version=int(vault_raw.get("kv_version", 1)),
        audience=str(vault_raw.get("audience", "vault")),
        timeout=int(vault_raw.get("timeout", 30)),
        providers=_providers(vault_raw.get("providers")),
    )

    envs_override = _env(env_map, "DEPLOY_ENVIRONMENTS")
    if envs_override:
        environments = tuple(x.strip() for x in envs_override.split(",") if x.strip())
    else:
        environments = tuple(str(x) for x in (data.get("environments") or []))

    pattern = str(data.get("production_pattern") or DEFAULT_PRODUCTION_PATTERN)
    try:
        re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"production_pattern is not a valid regex: {e}")

    return DeployConfig(
        project=_env(env_map, "DEPLOY_PROJECT") or str(data.get("project", "") or ""),
        environments=environments,
        production_pattern=pattern,
        workdir_template=str(data.get("workdir_template") or DEFAULT_WORKDIR_TEMPLATE),
        tofu_binary=_env(env_map, "TOFU_BINARY") or str(data.get("tofu_binary") or "tofu"),
        backend_base_url=_env(env_map, "TF_BACKEND_BASE_URL") or str((data.get("backend") or {}).get("base_url", "") or ""),
        vault=vault,
        analyzers=_analyzers(data.get("analyzers") or {}),
        security_scan_command=str((data.get("security_scan") or {}).get("command", "") or ""),
        repo_root=repo_root,
    )


def load_deploy_config(repo_root: Path, cli_path: Optional[str] = None) -> DeployConfig:
    """Load and validate the deploy config for a pipeline step."""
    path, explicit = resolve_config_path(repo_root, cli_path)
    if path.exists():
        data = _read_yaml(path)
    elif explicit:
        raise ConfigError(f"deploy config not found: {path}")
    else:
        data = {}
    return build_deploy_config(data, repo_root=repo_root)
