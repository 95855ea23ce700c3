"""Remote state lock check.

The lock itself is owned by the state backend and acquired by plan/apply.
This module only looks for an existing lock before apply and, when an operator
explicitly asks for it, forces an unlock. The override does not check that the
previous holder has actually stopped; it is an operator-supervised escape hatch.
"""

from __future__ import annotations

import json
import re
from typing import Optional

import requests

from ..infra.contracts import HttpClient
from ..infra.errors import LockParseError, StateLocked
from ..infra.models import BackendAddresses, CredentialBundle, LockInfo
from ..tofu.runner import TofuClient
from .http_backend import basic_auth

LOCK_INFO_MARKER = "Lock Info"
LOCK_ID_RE = re.compile(r"ID:\s*([0-9A-Za-z][0-9A-Za-z._:-]*)")
_TEXT_FIELD_RE = re.compile(r"^\s*(Path|Operation|Who|Version|Created|Info):\s*(.*)$", re.MULTILINE)
JSON_LOCK_FIELDS = ("Who", "Operation", "Info", "Created", "Path", "Version")


def fetch_lock_listing(
    addresses: BackendAddresses,
    bundle: CredentialBundle,
    *,
    http: Optional[HttpClient] = None,
    timeout: int = 15,
) -> str:
    """Return the backend's lock record as text ('' when there is none)."""
    client = http or requests
    try:
        r = client.get(addresses.lock_address, auth=basic_auth(bundle), timeout=timeout)
    except requests.RequestException as e:
        print(f"[lock] WARNING: could not query lock at {addresses.lock_address}: {e}")
        return ""
    if r.status_code in (204, 404):
        return ""
    if not (200 <= r.status_code < 300):
        print(f"[lock] WARNING: lock query returned HTTP {r.status_code} for {addresses.lock_address}")
        return ""
    return r.text or ""


def parse_lock_listing(listing: str) -> Optional[LockInfo]:
    """Parse a lock listing.

    JSON lock records (``{"ID": ..., "Who": ..., ...}``) are read directly.
    Otherwise the text form ``Lock Info: ... ID: <id>`` is matched. A listing
    that says ``Lock Info``, or a JSON record with lock fields, without an
    extractable ID raises LockParseError.
    """
    text = (listing or "").strip()
    if not text:
        return None

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        lock_id = str(data.get("ID") or "").strip()
        if not lock_id:
            if LOCK_INFO_MARKER in text or any(data.get(k) for k in JSON_LOCK_FIELDS):
                raise LockParseError("lock record has lock fields but no lock ID")
            return None
        return LockInfo(
            lock_id=lock_id,
            who=str(data.get("Who") or ""),
            operation=str(data.get("Operation") or ""),
            created=str(data.get("Created") or ""),
            raw={str(k): str(v) for k, v in data.items()},
        )

    if LOCK_INFO_MARKER not in text:
        return None
    m = LOCK_ID_RE.search(text.split(LOCK_INFO_MARKER, 1)[1])
    if not m:
        raise LockParseError("lock listing reports 'Lock Info' but no lock ID could be extracted")
    fields = {k: v.strip() for k, v in _TEXT_FIELD_RE.findall(text)}
    return LockInfo(
        lock_id=m.group(1),
        who=fields.get("Who", ""),
        operation=fields.get("Operation", ""),
        created=fields.get("Created", ""),
        raw=fields,
    )


def check_lock(listing: str, *, tofu: TofuClient, force_unlock: bool = False) -> Optional[LockInfo]:
    """Raise StateLocked for an existing lock unless ``force_unlock`` is set.

    Returns the lock that was force-released, or None when no lock was held.
    """
    info = parse_lock_listing(listing)
    if info is None:
        print("[lock] no existing state lock")
        return None

    if not force_unlock:
        raise StateLocked(
            f"remote state is locked ({info.describe()}). "
            "Wait for the holder to finish, or re-run with --force-unlock / TF_FORCE_UNLOCK=1 "
            "after confirming it is gone."
        )

    print(f"[lock] WARNING: forcing unlock of {info.describe()} (operator override)")
    cp = tofu.force_unlock(info.lock_id)
    if not cp.ok:
        raise StateLocked(f"force-unlock of lock {info.lock_id} failed (exit {cp.returncode}): {cp.tail()}")
    return info


class LockChecker:
    def __init__(self, *, http: Optional[HttpClient] = None):
        self.http = http

    def ensure_unlocked(
        self,
        addresses: BackendAddresses,
        bundle: CredentialBundle,
        tofu: TofuClient,
        *,
        force_unlock: bool = False,
    ) -> Optional[LockInfo]:
        listing = fetch_lock_listing(addresses, bundle, http=self.http)
        return check_lock(listing, tofu=tofu, force_unlock=force_unlock)
