from __future__ import annotations

import re
import uuid
from pathlib import Path

from .config import SANITIZED_SUFFIX


_ASSET_NAME_RE = re.compile(r"^[0-9a-f]{32}\.[a-z0-9]{2,5}$")


def new_asset_name(suffix: str = SANITIZED_SUFFIX) -> str:
    """Generate a store filename.

    The name is a random UUID4 (122 bits of entropy), never derived from
    anything the client sent, so it cannot collide across concurrent requests
    or restarts and cannot carry path tricks.
    """
    return f"{uuid.uuid4().hex}{suffix}"


def normalize_asset_name(name: str) -> str:
    """Validate a store filename produced by new_asset_name."""
    if not isinstance(name, str):
        raise ValueError("Invalid asset name")
    name = name.strip().lower()
    if not _ASSET_NAME_RE.match(name):
        raise ValueError("Invalid asset name")
    return name


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when the store is handed a path it
    did not create.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
