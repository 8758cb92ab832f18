"""Pytest fixtures for ticket generator tests."""

from __future__ import annotations

import io
import os
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from tickets_backend.config import SANITIZED_SUFFIX
from tickets_backend.security import new_asset_name
from tickets_backend.store import FileStore


FAKE_PDF = b"%PDF-1.4\n% fake ticket\n%%EOF\n"


class MemoryStore:
    """In-memory TemporaryStore for tests that should not touch disk."""

    root = Path("/memory-store")

    def __init__(self) -> None:
        self.files: dict[Path, bytes] = {}
        self.deleted: list[Path] = []

    def put(self, data: bytes, suffix: str = SANITIZED_SUFFIX) -> Path:
        path = self.root / new_asset_name(suffix)
        self.files[path] = bytes(data)
        return path

    def read(self, path: Path) -> bytes:
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(str(path))

    def delete(self, path: Path) -> bool:
        self.deleted.append(path)
        return self.files.pop(path, None) is not None


class FailingStore(MemoryStore):
    def put(self, data: bytes, suffix: str = SANITIZED_SUFFIX) -> Path:
        raise OSError(28, "No space left on device")


class FakeRenderer:
    """Stands in for the Playwright renderer; records what it was asked to print."""

    def __init__(self, store: FileStore | None = None, fail: bool = False) -> None:
        self.store = store
        self.fail = fail
        self.calls: list[str] = []
        self.files_during_render: list[int] = []

    async def __call__(self, html: str) -> bytes:
        self.calls.append(html)
        if self.store is not None:
            self.files_during_render.append(len(self.store.list_files()))
        if self.fail:
            raise RuntimeError("chromium crashed")
        return FAKE_PDF


def _noise(size: tuple[int, int], mode: str = "RGB") -> Image.Image:
    bands = len(Image.new(mode, (1, 1)).getbands())
    return Image.frombytes(mode, size, os.urandom(size[0] * size[1] * bands))


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    """Factory: encode a fresh image to bytes in the given Pillow format."""

    def _make(fmt: str = "PNG", size: tuple[int, int] = (40, 20), mode: str = "RGB", noise: bool = False, **save_kwargs) -> bytes:
        if noise:
            im = _noise(size, mode)
        elif mode == "RGB":
            im = Image.new(mode, size, (200, 30, 30))
        else:
            im = Image.new(mode, size)
        buf = io.BytesIO()
        im.save(buf, format=fmt, **save_kwargs)
        return buf.getvalue()

    return _make


@pytest.fixture
def jpeg_bytes(make_image) -> bytes:
    return make_image("JPEG")


@pytest.fixture
def png_bytes(make_image) -> bytes:
    return make_image("PNG")


@pytest.fixture
def webp_bytes(make_image) -> bytes:
    return make_image("WEBP", lossless=True)


@pytest.fixture
def jpeg_with_metadata() -> bytes:
    """JPEG carrying EXIF (camera make, a scripted description, orientation) and an ICC blob."""
    im = Image.new("RGB", (30, 10), (10, 120, 240))
    exif = Image.Exif()
    exif[0x010F] = "EvilCam"  # Make
    exif[0x010E] = "<script>alert(1)</script>"  # ImageDescription
    exif[0x0112] = 6  # Orientation: rotate 90 CW
    buf = io.BytesIO()
    im.save(buf, format="JPEG", exif=exif.tobytes(), icc_profile=b"FAKE-ICC-PROFILE" * 8)
    return buf.getvalue()


@pytest.fixture
def png_with_metadata() -> bytes:
    """PNG with text chunks, an ICC blob and a trailing polyglot payload."""
    im = Image.new("RGBA", (16, 16), (0, 255, 0, 128))
    info = PngInfo()
    info.add_text("Comment", "<?php system($_GET['c']); ?>")
    info.add_text("Software", "payload", zip=True)
    buf = io.BytesIO()
    im.save(buf, format="PNG", pnginfo=info, icc_profile=b"FAKE-ICC-PROFILE" * 8)
    return buf.getvalue() + b"<?php echo 'polyglot'; ?>"


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def file_store(tmp_path: Path) -> FileStore:
    return FileStore(tmp_path / "uploads")


@pytest.fixture
def renderer(file_store: FileStore) -> FakeRenderer:
    return FakeRenderer(file_store)


@pytest.fixture
def client(file_store: FileStore, renderer: FakeRenderer) -> Generator[TestClient, None, None]:
    """Test client wired to a tmp store and the fake renderer.

    The client is not entered as a context manager, so the lifespan cleanup
    task never runs against the real upload directory.
    """
    from server import app, get_renderer, get_store

    app.dependency_overrides[get_store] = lambda: file_store
    app.dependency_overrides[get_renderer] = lambda: renderer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
