from __future__ import annotations

import os
import re
import asyncio
import logging
from contextlib import ExitStack, asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, field_validator

from tickets_backend.composer import Renderer, TicketSpec, compose, render_pdf, ticket_filename
from tickets_backend.config import (
    ALLOWED_IMAGE_TYPES,
    CLEANUP_INTERVAL_SECONDS,
    LOGO_REQUIRED_MESSAGE,
    MAX_UPLOAD_BYTES,
    SERVER_ERROR_MESSAGE,
    STALE_UPLOAD_TTL_SECONDS,
    STATIC_DIR,
    TEMP_UPLOADS_ROOT,
)
from tickets_backend.sanitizer import SanitizationError, SanitizeResult, UploadRequest, sanitize
from tickets_backend.store import FileStore, TemporaryStore, hold


logger = logging.getLogger(__name__)

_store = FileStore(TEMP_UPLOADS_ROOT)

_LEADING_INT_RE = re.compile(r"[+-]?\d+")


class RequiredAssetMissing(Exception):
    """The logo did not survive sanitization; no ticket can be produced."""

    def __init__(self, field_name: str) -> None:
        super().__init__(field_name)
        self.field_name = field_name


class StoreUnavailable(Exception):
    """A sanitized upload could not be written to the temporary store."""


class TicketOptions(BaseModel):
    with_barcode: bool = False

    @field_validator("with_barcode", mode="before")
    @classmethod
    def _int_cast(cls, value: object) -> bool:
        # Checkbox semantics: leading integer, anything unparsable is 0.
        if value is None or isinstance(value, bool):
            return bool(value)
        match = _LEADING_INT_RE.match(str(value).strip())
        return bool(match) and int(match.group(0)) != 0


def get_store() -> TemporaryStore:
    return _store


def get_renderer() -> Renderer:
    return render_pdf


def _to_upload_request(field_name: str, upload: Optional[UploadFile]) -> Optional[UploadRequest]:
    if upload is None:
        return None
    return UploadRequest(
        field_name=field_name,
        stream=upload.file,
        declared_size=upload.size,
        filename=upload.filename,
    )


async def _sanitize(field_name: str, upload: Optional[UploadFile], store: TemporaryStore) -> SanitizeResult:
    # Decoding is CPU bound; keep it off the event loop.
    return await asyncio.to_thread(
        sanitize, _to_upload_request(field_name, upload), store, ALLOWED_IMAGE_TYPES, MAX_UPLOAD_BYTES
    )


async def _cleanup_worker(store: FileStore) -> None:
    # Periodically delete uploads orphaned by crashed requests.
    while True:
        try:
            await asyncio.to_thread(store.cleanup_stale, STALE_UPLOAD_TTL_SECONDS)
        except Exception:
            logger.exception("Stale upload cleanup failed")
        await asyncio.sleep(max(30, CLEANUP_INTERVAL_SECONDS))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create the store up front, sweep leftovers, then start the periodic cleanup task.
    try:
        _store.ensure_root()
        _store.cleanup_stale(STALE_UPLOAD_TTL_SECONDS)
    except OSError:
        logger.exception("Could not prepare upload directory %s", _store.root)

    task = asyncio.create_task(_cleanup_worker(_store))
    app.state._cleanup_task = task
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(lifespan=lifespan)

# Allow the form to post even when index.html is opened from disk
# (file:// pages send Origin: null, which otherwise fails CORS).
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)


@app.middleware("http")
async def _no_cache_static_assets(request: Request, call_next):
    response = await call_next(request)
    path = (request.url.path or "").lower()
    if path.endswith((".css", ".js", ".html")) and not path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequiredAssetMissing)
async def _required_asset_missing(request: Request, exc: RequiredAssetMissing) -> Response:
    return PlainTextResponse(LOGO_REQUIRED_MESSAGE, status_code=400)


@app.exception_handler(StoreUnavailable)
async def _store_unavailable(request: Request, exc: StoreUnavailable) -> Response:
    return PlainTextResponse(SERVER_ERROR_MESSAGE, status_code=500)


@app.post("/api/ticket")
async def generate_ticket(
    logo: Optional[UploadFile] = File(None),
    barcode: Optional[UploadFile] = File(None),
    withBarcode: Optional[str] = Form(None),
    store: TemporaryStore = Depends(get_store),
    renderer: Renderer = Depends(get_renderer),
) -> Response:
    """Sanitize the uploads and stream back the ticket PDF.

    The logo is mandatory: if it fails, the request stops before the barcode is
    even looked at, so no temporary file is created. Every sanitized file is
    deleted when this handler exits, however it exits.
    """
    options = TicketOptions(with_barcode=withBarcode)

    with ExitStack() as held:
        logo_result = await _sanitize("logo", logo, store)
        if not logo_result.ok:
            # A store that cannot take files is a server fault, not a bad upload.
            if logo_result.error is SanitizationError.WRITE_FAILED:
                raise StoreUnavailable()
            raise RequiredAssetMissing("logo")
        logo_asset = logo_result.asset
        held.enter_context(hold(store, logo_asset))

        barcode_result = await _sanitize("barcode", barcode, store)
        barcode_asset = barcode_result.asset if barcode_result.ok else None
        if barcode_asset is not None:
            held.enter_context(hold(store, barcode_asset))

        spec = TicketSpec(logo=logo_asset, barcode=barcode_asset, include_barcode=options.with_barcode)
        try:
            pdf_bytes = await compose(spec, store, renderer)
        except Exception:
            logger.exception("Ticket rendering failed")
            return PlainTextResponse(SERVER_ERROR_MESSAGE, status_code=500)

    headers = {
        "Content-Disposition": f'attachment; filename="{ticket_filename(options.with_barcode)}"',
        "Cache-Control": "no-store",
        "X-Content-Type-Options": "nosniff",
    }
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)


# Static form hosting (so you can open http://localhost:8010/)
# Note: define API routes above, then mount static at '/'. Only STATIC_DIR is
# exposed; the upload store lives outside it.
app.mount("/", StaticFiles(directory=str(STATIC_DIR), html=True, check_dir=False), name="static")


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
