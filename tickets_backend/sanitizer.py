"""Upload sanitization.

Every accepted upload goes through the same pipeline:

1. presence / transport check
2. declared size check, then a bounded read
3. content type sniffed from magic bytes (client metadata is ignored)
4. full decode with the single decoder matching the sniffed type
5. re-encode of the raw pixels to PNG
6. write under a server-generated name

Only step 5's output reaches disk. No byte of the upload is stored, so
EXIF, ICC profiles, text chunks and polyglot payloads are all dropped.
"""
from __future__ import annotations

import enum
import io
import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Union

from PIL import Image, ImageOps

from .config import (
    ALLOWED_IMAGE_TYPES,
    MAX_IMAGE_PIXELS,
    MAX_IMAGE_SIDE_PX,
    MAX_UPLOAD_BYTES,
    SANITIZED_FORMAT,
    SANITIZED_SUFFIX,
)
from .store import TemporaryStore


logger = logging.getLogger(__name__)


class SanitizationError(str, enum.Enum):
    NO_FILE_PROVIDED = "no_file_provided"
    TOO_LARGE = "too_large"
    UNSUPPORTED_TYPE = "unsupported_type"
    DECODE_FAILED = "decode_failed"
    WRITE_FAILED = "write_failed"


@dataclass
class UploadRequest:
    """One form field as handed over by the HTTP layer.

    filename is whatever the client claimed; it is only ever logged.
    """

    field_name: str
    stream: Optional[BinaryIO]
    declared_size: Optional[int] = None
    filename: Optional[str] = None
    complete: bool = True


@dataclass(frozen=True)
class SanitizedAsset:
    path: Path
    size: int
    format: str = SANITIZED_FORMAT


@dataclass(frozen=True)
class Ok:
    asset: SanitizedAsset

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: SanitizationError

    @property
    def ok(self) -> bool:
        return False


SanitizeResult = Union[Ok, Err]


# Sniffed MIME type -> the only Pillow decoder allowed to open it.
_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def sniff_image_type(data: bytes) -> Optional[str]:
    """Return the MIME type implied by the leading magic bytes, or None."""
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(_PNG_SIGNATURE):
        return "image/png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _read_bounded(stream: BinaryIO, limit: int) -> bytes:
    # Read at most limit bytes; callers pass max+1 to detect overflow.
    chunks: list[bytes] = []
    remaining = limit
    while remaining > 0:
        chunk = stream.read(min(remaining, 64 * 1024))
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def decode_image(data: bytes, mime_type: str) -> Image.Image:
    """Fully decode data with the decoder for mime_type.

    Raises on anything the decoder rejects, including a valid magic number
    followed by a corrupt body, and on images whose header announces more
    pixels than the budget allows (checked before any pixel is decoded).
    """
    pil_format = _PIL_FORMATS[mime_type]
    with warnings.catch_warnings():
        warnings.simplefilter("error", Image.DecompressionBombWarning)
        with Image.open(io.BytesIO(data), formats=[pil_format]) as im:
            width, height = im.size
            if max(width, height) > MAX_IMAGE_SIDE_PX or width * height > MAX_IMAGE_PIXELS:
                raise ValueError(f"image too large: {width}x{height}")
            im.load()
            # Bake orientation into the pixels; the EXIF tag itself is dropped later.
            return ImageOps.exif_transpose(im)


def _canonical_mode(im: Image.Image) -> str:
    if im.mode in ("RGB", "RGBA", "L", "LA"):
        return im.mode
    if "A" in im.getbands() or "transparency" in im.info:
        return "RGBA"
    return "RGB"


def reencode_png(im: Image.Image) -> bytes:
    """Serialize only the pixel buffer of im as PNG."""
    mode = _canonical_mode(im)
    if im.mode != mode:
        im = im.convert(mode)
    # frombytes starts from an empty info dict: no exif, icc_profile, text or dpi.
    clean = Image.frombytes(mode, im.size, im.tobytes())
    out = io.BytesIO()
    clean.save(out, format=SANITIZED_FORMAT)
    return out.getvalue()


def _fail(
    upload: UploadRequest,
    error: SanitizationError,
    *,
    sniffed: Optional[str] = None,
    size: Optional[int] = None,
    detail: str = "",
) -> Err:
    logger.warning(
        "Upload rejected: field=%s kind=%s sniffed=%s size=%s client_filename=%r %s",
        upload.field_name,
        error.value,
        sniffed,
        size if size is not None else upload.declared_size,
        upload.filename,
        detail,
    )
    return Err(error)


def sanitize(
    upload: Optional[UploadRequest],
    store: TemporaryStore,
    allowed_types: Iterable[str] = ALLOWED_IMAGE_TYPES,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> SanitizeResult:
    """Validate, re-encode and store one uploaded image.

    On success exactly one new file exists in the store. On failure nothing is
    left behind; the reason is logged and the caller only gets the Err kind.
    """
    if upload is None:
        logger.warning("Upload rejected: field missing from request kind=%s", SanitizationError.NO_FILE_PROVIDED.value)
        return Err(SanitizationError.NO_FILE_PROVIDED)
    if upload.stream is None or not upload.complete:
        return _fail(upload, SanitizationError.NO_FILE_PROVIDED, detail="stream missing or transfer incomplete")
    if not upload.filename and not upload.declared_size:
        # Browsers send an empty part when the file input was left blank.
        return _fail(upload, SanitizationError.NO_FILE_PROVIDED, detail="empty file part")

    if upload.declared_size is not None and upload.declared_size > max_bytes:
        return _fail(upload, SanitizationError.TOO_LARGE, detail=f"limit={max_bytes}")

    # The declared size may lie; never buffer more than the limit.
    data = _read_bounded(upload.stream, max_bytes + 1)
    if len(data) > max_bytes:
        return _fail(upload, SanitizationError.TOO_LARGE, size=len(data), detail=f"limit={max_bytes} (read)")
    if not data:
        return _fail(upload, SanitizationError.NO_FILE_PROVIDED, size=0, detail="empty body")

    allowed = set(allowed_types) & set(_PIL_FORMATS)
    sniffed = sniff_image_type(data)
    if sniffed is None or sniffed not in allowed:
        return _fail(upload, SanitizationError.UNSUPPORTED_TYPE, sniffed=sniffed, size=len(data))

    try:
        image = decode_image(data, sniffed)
        clean = reencode_png(image)
    except Exception as e:
        # Hostile input can make decoders raise almost anything.
        return _fail(
            upload,
            SanitizationError.DECODE_FAILED,
            sniffed=sniffed,
            size=len(data),
            detail=f"{type(e).__name__}: {e}",
        )

    try:
        path = store.put(clean, SANITIZED_SUFFIX)
    except OSError as e:
        return _fail(
            upload,
            SanitizationError.WRITE_FAILED,
            sniffed=sniffed,
            size=len(data),
            detail=f"{type(e).__name__}: {e}",
        )

    logger.debug(
        "Upload sanitized: field=%s sniffed=%s in=%d out=%d name=%s",
        upload.field_name,
        sniffed,
        len(data),
        len(clean),
        path.name,
    )
    return Ok(SanitizedAsset(path=path, size=len(clean)))

