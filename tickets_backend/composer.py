from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag
from playwright.async_api import async_playwright

from .config import (
    CANVAS_HEIGHT_MM,
    CANVAS_WIDTH_MM,
    FILENAME_WITH_BARCODE,
    FILENAME_WITHOUT_BARCODE,
    TICKET_BARCODE_PLACEHOLDER,
    TICKET_GIFT_LABEL,
    TICKET_PHONE,
    TICKET_PRICE,
    TICKET_SITE,
    WATERMARK_PATH,
)
from .sanitizer import SanitizedAsset, sniff_image_type
from .store import TemporaryStore


logger = logging.getLogger(__name__)

Renderer = Callable[[str], Awaitable[bytes]]


@dataclass(frozen=True)
class TicketSpec:
    logo: Optional[SanitizedAsset]
    barcode: Optional[SanitizedAsset]
    include_barcode: bool = False

    @property
    def renders_barcode(self) -> bool:
        return bool(self.include_barcode and self.barcode is not None)


_PAGE_CSS = f"""
@page {{ size: {CANVAS_WIDTH_MM}mm {CANVAS_HEIGHT_MM}mm; margin: 0; }}
html, body {{ margin: 0; padding: 0; }}
body {{
  position: relative;
  width: {CANVAS_WIDTH_MM}mm;
  height: {CANVAS_HEIGHT_MM}mm;
  overflow: hidden;
  font-family: Helvetica, Arial, sans-serif;
  color: #000;
  -webkit-print-color-adjust: exact;
  print-color-adjust: exact;
}}
.slot {{ position: absolute; left: 0; width: 100%; margin: 0; text-align: center; white-space: nowrap; }}
img {{ position: absolute; display: block; height: auto; }}
.phone {{ top: 23mm; height: 5mm; line-height: 5mm; font-size: 14pt; background: #000; color: #fff; }}
.gift {{ top: 28mm; height: 6mm; line-height: 6mm; font-size: 16pt; font-weight: bold; color: rgb(184, 134, 0); }}
.price {{ top: 34mm; height: 6mm; line-height: 6mm; font-size: 18pt; font-weight: bold; }}
.site {{ top: 40mm; height: 4mm; line-height: 4mm; font-size: 10pt; }}
.barcode-placeholder {{
  top: 52mm; height: 20mm; line-height: 20mm; box-sizing: border-box;
  border: 0.2mm solid rgb(180, 180, 180); font-size: 8pt; font-style: italic;
}}
"""

_SKELETON = (
    "<!DOCTYPE html><html><head><meta charset=\"utf-8\"/><title>ticket</title>"
    "<style></style></head><body></body></html>"
)


def ticket_filename(include_barcode: bool) -> str:
    return FILENAME_WITH_BARCODE if include_barcode else FILENAME_WITHOUT_BARCODE


def _data_uri(data: bytes) -> str:
    mime = sniff_image_type(data) or "image/png"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def _read_asset(store: TemporaryStore, asset: Optional[SanitizedAsset], role: str) -> Optional[bytes]:
    if asset is None:
        return None
    try:
        return store.read(asset.path)
    except OSError:
        # Sanitized earlier but gone now (or unreadable): leave the slot blank.
        logger.warning("Ticket %s file is missing or unreadable: %s", role, asset.path.name)
        return None


def _read_watermark(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except OSError:
        logger.warning("Static watermark image not found at %s", path)
        return None


def _image(soup: BeautifulSoup, data: bytes, role: str, x: float, y: float, width: float) -> Tag:
    img = soup.new_tag("img")
    img["src"] = _data_uri(data)
    img["alt"] = ""
    img["data-role"] = role
    img["style"] = f"left: {x}mm; top: {y}mm; width: {width}mm;"
    return img


def _text(soup: BeautifulSoup, css_class: str, text: str) -> Tag:
    div = soup.new_tag("div")
    div["class"] = ["slot", css_class]
    div.string = text
    return div


def build_ticket_html(spec: TicketSpec, store: TemporaryStore, watermark_path: Path = WATERMARK_PATH) -> str:
    """Lay out the ticket as a single absolutely positioned HTML page.

    Geometry (mm, page is 55 wide and 90 tall):
    - logo at the top, full width
    - phone band, gift label, price, site name
    - barcode slot: logo again + barcode, or a bordered placeholder
    - watermark stamped at a fixed spot regardless of uploads

    Images are inlined as data: URIs so the renderer never touches the store.
    """
    soup = BeautifulSoup(_SKELETON, "html.parser")
    soup.style.string = _PAGE_CSS
    body = soup.body

    logo_bytes = _read_asset(store, spec.logo, "logo")
    if logo_bytes is not None:
        body.append(_image(soup, logo_bytes, "logo", 0, 0, 55))

    body.append(_text(soup, "phone", TICKET_PHONE))
    body.append(_text(soup, "gift", TICKET_GIFT_LABEL))
    body.append(_text(soup, "price", TICKET_PRICE))
    body.append(_text(soup, "site", TICKET_SITE))

    barcode_bytes = _read_asset(store, spec.barcode, "barcode") if spec.renders_barcode else None
    if barcode_bytes is not None:
        # The logo is drawn a second time above the barcode.
        if logo_bytes is not None:
            body.append(_image(soup, logo_bytes, "barcode-logo", 0, 50, 55))
        body.append(_image(soup, barcode_bytes, "barcode", 0, 55, 55))
    else:
        body.append(_text(soup, "barcode-placeholder", TICKET_BARCODE_PLACEHOLDER))

    watermark = _read_watermark(watermark_path)
    if watermark is not None:
        body.append(_image(soup, watermark, "watermark", 23, 45.2, 9))

    return str(soup)


async def render_pdf(html: str) -> bytes:
    """Print html to a single-page PDF with headless Chromium."""
    async with async_playwright() as p:
        browser = await p.chromium.launch()
        try:
            page = await browser.new_page()
            await page.set_content(html, wait_until="load")
            pdf_bytes = await page.pdf(
                width=f"{CANVAS_WIDTH_MM}mm",
                height=f"{CANVAS_HEIGHT_MM}mm",
                print_background=True,
                prefer_css_page_size=True,
                page_ranges="1",
                margin={"top": "0", "right": "0", "bottom": "0", "left": "0"},
            )
        finally:
            await browser.close()
    return pdf_bytes


async def compose(spec: TicketSpec, store: TemporaryStore, renderer: Renderer = render_pdf) -> bytes:
    """Build the ticket and return the PDF bytes.

    The document is assembled in memory and returned whole; nothing is written
    server-side, so there is no partial output to roll back.
    """
    html = build_ticket_html(spec, store)
    return await renderer(html)
