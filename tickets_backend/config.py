from __future__ import annotations

import os
from pathlib import Path


# tickets_backend/ -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Landing zone for sanitized uploads.
# Default: project-local ./temp_uploads, which is NOT under the static dir.
# Override with env var TICKETS_TEMP_UPLOADS_ROOT.
_root_raw = os.environ.get("TICKETS_TEMP_UPLOADS_ROOT")
if _root_raw and _root_raw.strip():
    TEMP_UPLOADS_ROOT = Path(_root_raw)
else:
    TEMP_UPLOADS_ROOT = PROJECT_ROOT / "temp_uploads"
TEMP_UPLOADS_ROOT = TEMP_UPLOADS_ROOT.resolve()

# Permission mode used when the store directory is created on demand.
UPLOAD_DIR_MODE = int(os.environ.get("TICKETS_UPLOAD_DIR_MODE", "755"), 8)

# Upload limits.
MAX_UPLOAD_BYTES = int(os.environ.get("TICKETS_MAX_UPLOAD_BYTES", str(2 * 1024 * 1024)))  # 2MB
# Decoded pixel budget. The ticket prints at 55mm wide, so anything past a few
# megapixels is wasted memory (decode, transpose and re-encode each copy it).
MAX_IMAGE_SIDE_PX = int(os.environ.get("TICKETS_MAX_IMAGE_SIDE_PX", "4000"))
MAX_IMAGE_PIXELS = int(os.environ.get("TICKETS_MAX_IMAGE_PIXELS", str(8 * 1000 * 1000)))

# Sanitized files normally live for one request. Anything older than this
# was orphaned by a crashed worker and is swept by the cleanup task.
STALE_UPLOAD_TTL_SECONDS = float(os.environ.get("TICKETS_STALE_UPLOAD_TTL_SECONDS", "900"))
CLEANUP_INTERVAL_SECONDS = int(os.environ.get("TICKETS_CLEANUP_INTERVAL_SECONDS", "300"))

# Sniffed MIME types accepted for logo and barcode.
ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})

# Canonical format every sanitized asset is re-encoded to.
SANITIZED_FORMAT = "PNG"
SANITIZED_SUFFIX = ".png"

# Public front-end. Only this directory is served statically.
STATIC_DIR = PROJECT_ROOT / "static"
_watermark_raw = os.environ.get("TICKETS_WATERMARK_PATH")
WATERMARK_PATH = Path(_watermark_raw) if _watermark_raw else STATIC_DIR / "images" / "watermark.png"

# Page geometry in mm. A portrait page built from a 90x55 size is 55 wide, 90 tall.
CANVAS_WIDTH_MM = 55.0
CANVAS_HEIGHT_MM = 90.0

# Fixed ticket content.
TICKET_PHONE = "3016388895"
TICKET_GIFT_LABEL = "REGALO"
TICKET_PRICE = "$30.000"
TICKET_SITE = "mystock.com.co"
TICKET_BARCODE_PLACEHOLDER = "ESPACIO PARA CODIGO DE BARRAS"

FILENAME_WITH_BARCODE = "ticket-con-codigo.pdf"
FILENAME_WITHOUT_BARCODE = "ticket-sin-codigo.pdf"

LOGO_REQUIRED_MESSAGE = "Error: El logo es un archivo requerido y no pudo ser procesado."
SERVER_ERROR_MESSAGE = "Error interno del servidor. Por favor, inténtelo de nuevo más tarde."
