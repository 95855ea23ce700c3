from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Tuple

from ..backend.http_backend import BackendConfigurator
from ..config.load_deploy_config import DeployConfig
from ..infra.contracts import CiAgent, CommandRunner, HttpClient
from ..infra.exec_local import LocalCommandRunner
from ..infra.models import CredentialBundle, Environment
from ..secretstore.loader import CredentialLoader
from ..tofu.runner import TofuClient


@dataclass
class StageContext:
    """Collaborators shared by the stages of one pipeline step.

    Nothing here holds credentials; those live in the CredentialBundle that
    ``environment_session`` yields and scrubs.
    """

    config: DeployConfig
    agent: CiAgent
    loader: CredentialLoader
    project: str
    output_dir: Path
    runner: CommandRunner = field(default_factory=LocalCommandRunner)
    http: Optional[HttpClient] = None
    # Export file from `tfpipe secrets --export-file`; replaces the Vault read.
    credentials_file: Optional[Path] = None

    def load_credentials(self, environment: Environment) -> CredentialBundle:
        if self.credentials_file is not None:
            return self.loader.load_from_export(environment.name, self.credentials_file)
        return self.loader.load(environment.name)

    def tofu(self, environment: Environment) -> TofuClient:
        return TofuClient(workdir=environment.workdir, binary=self.config.tofu_binary, runner=self.runner)

    def backend(self) -> BackendConfigurator:
        return BackendConfigurator(base_url=self.config.backend_base_url, project=self.project, http=self.http)


def log_group(title: str) -> None:
    """Open a collapsible Buildkite log group."""
    print(f"--- {title}")


@contextmanager
def environment_session(ctx: StageContext, environment: Environment) -> Iterator[Tuple[CredentialBundle, TofuClient]]:
    """Authenticate, fetch credentials and initialize the backend.

    The bundle is scrubbed and the client's env cleared when the block exits,
    on success or failure.
    """
    bundle: Optional[CredentialBundle] = None
    tofu: Optional[TofuClient] = None
    try:
        bundle = ctx.load_credentials(environment)
        tofu = ctx.backend().configure(environment, bundle, ctx.tofu(environment))
        yield bundle, tofu
    finally:
        if tofu is not None:
            tofu.clear_env()
        if bundle is not None:
            bundle.scrub()
        ctx.loader.close()


def publish_failure(agent, *, context: str, title: str, error: BaseException) -> None:
    """Error annotation for a failed stage. Never masks the original error."""
    try:
        agent.annotate(f"**{title}**\n\n{type(error).__name__}: {error}", style="error", context=context)
    except Exception as e:
        print(f"[annotate] WARNING: could not publish failure annotation for {context}: {e}")
