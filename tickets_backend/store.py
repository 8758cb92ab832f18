from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Protocol

from .config import SANITIZED_SUFFIX, TEMP_UPLOADS_ROOT, UPLOAD_DIR_MODE
from .security import new_asset_name, normalize_asset_name, safe_join

if TYPE_CHECKING:
    from .sanitizer import SanitizedAsset


logger = logging.getLogger(__name__)


class TemporaryStore(Protocol):
    """Where sanitized assets land between sanitization and composition."""

    def put(self, data: bytes, suffix: str = SANITIZED_SUFFIX) -> Path: ...

    def read(self, path: Path) -> bytes: ...

    def delete(self, path: Path) -> bool: ...


def _now_epoch() -> float:
    return time.time()


class FileStore:
    """TemporaryStore backed by a single flat directory."""

    def __init__(self, root: Path = TEMP_UPLOADS_ROOT, dir_mode: int = UPLOAD_DIR_MODE) -> None:
        self.root = Path(root).resolve()
        self.dir_mode = dir_mode

    def ensure_root(self) -> Path:
        # exist_ok covers two requests racing to create the directory.
        self.root.mkdir(mode=self.dir_mode, parents=True, exist_ok=True)
        return self.root

    def _resolve(self, path: Path) -> Path:
        # Only accept names we generated, sitting directly under root.
        name = normalize_asset_name(Path(path).name)
        resolved = safe_join(self.root, name)
        if Path(path).is_absolute() and Path(path).resolve() != resolved:
            raise ValueError("Path outside store")
        return resolved

    def put(self, data: bytes, suffix: str = SANITIZED_SUFFIX) -> Path:
        """Write data under a fresh unique name and return the absolute path.

        Raises OSError when the directory cannot be created or the write fails.
        No partial file is left behind on failure.
        """
        self.ensure_root()
        dest = safe_join(self.root, new_asset_name(suffix))
        # "xb" never overwrites an existing file, even if a name ever repeated.
        try:
            with open(dest, "xb") as fh:
                fh.write(data)
        except OSError:
            self._discard(dest)
            raise
        return dest

    def read(self, path: Path) -> bytes:
        try:
            resolved = self._resolve(path)
        except ValueError:
            raise FileNotFoundError(str(Path(path).name))
        return resolved.read_bytes()

    def contains(self, path: Path) -> bool:
        try:
            return self._resolve(path).is_file()
        except ValueError:
            return False

    def delete(self, path: Path) -> bool:
        """Remove one stored file. Idempotent; returns True if a file was removed."""
        try:
            resolved = self._resolve(path)
        except ValueError:
            logger.warning("Refusing to delete path outside the upload store: %s", Path(path).name)
            return False
        return self._discard(resolved)

    def _discard(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError:
            logger.warning("Could not delete temporary file %s", path.name, exc_info=True)
            return False
        return True

    def list_files(self) -> list[Path]:
        if not self.root.exists():
            return []
        out: list[Path] = []
        for child in self.root.iterdir():
            try:
                normalize_asset_name(child.name)
            except ValueError:
                continue
            if child.is_file():
                out.append(child)
        return out

    def cleanup_stale(self, max_age_seconds: float) -> int:
        """Delete stored files older than max_age_seconds.

        Only files that look like ours are touched. Returns the number deleted.
        """
        max_age = max(0.0, max_age_seconds)
        now = _now_epoch()
        deleted = 0
        for child in self.list_files():
            try:
                age = now - os.path.getmtime(child)
            except OSError:
                continue
            if age > max_age and self._discard(child):
                deleted += 1
        if deleted:
            logger.info("Removed %d stale upload(s) from %s", deleted, self.root)
        return deleted


@contextmanager
def hold(store: TemporaryStore, asset: "SanitizedAsset") -> Iterator["SanitizedAsset"]:
    """Scope an asset to a block; its file is deleted on every exit path."""
    try:
        yield asset
    finally:
        if store.delete(asset.path):
            logger.debug("Deleted temporary asset %s", asset.path.name)
