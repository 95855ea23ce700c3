from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from ..infra.contracts import CiAgent
from ..infra.errors import BackupFailure
from ..infra.models import StateBackup
from ..tofu.runner import TofuClient
from ..utils.fs import sha256_bytes, write_once_bytes
from ..utils.time import compact_stamp, utcnow, utcnow_iso


def backup_file_name(environment: str, now: datetime) -> str:
    return f"state-backup-{environment}-{compact_stamp(now)}.tfstate"


def take_state_backup(
    *,
    environment: str,
    tofu: TofuClient,
    backup_dir: Path,
    now: Optional[datetime] = None,
) -> StateBackup:
    """Pull remote state into a new, never-overwritten file."""
    ts = now or utcnow()
    cp = tofu.state_pull()
    if not cp.ok:
        raise BackupFailure(f"state pull failed (exit {cp.returncode}): {cp.tail()}")
    if not cp.stdout.strip():
        raise BackupFailure("state pull returned no state")

    data = cp.stdout.encode("utf-8")
    path = backup_dir / backup_file_name(environment, ts)
    try:
        write_once_bytes(path, data)
    except FileExistsError:
        raise BackupFailure(f"backup already exists, refusing to overwrite: {path}")
    except OSError as e:
        raise BackupFailure(f"could not write backup {path}: {e}")

    return StateBackup(
        environment=environment,
        path=path,
        created_at=utcnow_iso(ts),
        sha256=sha256_bytes(data),
        size_bytes=len(data),
    )


def best_effort_backup(
    *,
    environment: str,
    tofu: TofuClient,
    backup_dir: Path,
    agent: CiAgent,
    now: Optional[datetime] = None,
) -> Optional[StateBackup]:
    """Take and upload a backup. Failures are logged and return None."""
    try:
        backup = take_state_backup(environment=environment, tofu=tofu, backup_dir=backup_dir, now=now)
        agent.upload_artifacts([backup.path])
    except Exception as e:
        print(f"[backup] WARNING: state backup skipped for {environment}: {e}")
        return None
    print(f"[backup] environment={environment} file={backup.path.name} bytes={backup.size_bytes}")
    return backup
