"""
Recipient watermarking.

Pure functions applied when a recipient opens a document. The stored file
is never touched; every call renders a fresh copy stamped with who opened
it, through which grant, and when.
"""
import io
from datetime import datetime, timezone
from typing import Tuple
from uuid import UUID

import structlog
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PyPdfError
from reportlab.pdfgen import canvas

logger = structlog.get_logger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

# PyPDF2 reports damaged files through its own errors and plain built-ins
PDF_PARSE_ERRORS = (PyPdfError, ValueError, KeyError, TypeError, IndexError, AttributeError)

STAMP_FONT = "Helvetica"
STAMP_FONT_SIZE = 8
STAMP_MARGIN = 18
STAMP_OPACITY = 0.45


def watermark_text(display_name: str, email: str, grant_id: UUID, at: datetime) -> str:
    """
    Build the stamp identifying a recipient.

    Args:
        display_name: Recipient name
        email: Recipient email
        grant_id: Grant the document was opened through
        at: Time of access

    Returns:
        Single-line stamp
    """
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    at = at.astimezone(timezone.utc)
    return f"Shared with {display_name} <{email}> | grant {grant_id} | {at:%Y-%m-%d %H:%M} UTC"


def embeds_watermark(content_type: str) -> bool:
    """Whether ``apply_watermark`` changes content of this type."""
    base_type = content_type.split(";")[0].strip().lower()
    return base_type == PDF_CONTENT_TYPE or base_type.startswith("text/")


def apply_watermark(content: bytes, content_type: str, text: str) -> bytes:
    """
    Stamp a copy of ``content`` with ``text``.

    PDFs get the stamp in the header and footer of every page, text files a
    trailing stamp line. Other types, and PDFs that cannot be parsed, come
    back unchanged; the caller carries the stamp out of band.
    """
    base_type = content_type.split(";")[0].strip().lower()

    if base_type == PDF_CONTENT_TYPE:
        try:
            return _stamp_pdf(content, text)
        except PDF_PARSE_ERRORS as e:
            logger.warning("watermark_pdf_unreadable", error_type=type(e).__name__, error=str(e))
            return content

    if base_type.startswith("text/"):
        separator = b"" if not content or content.endswith(b"\n") else b"\n"
        return content + separator + f"\n-- {text} --\n".encode("utf-8")

    return content


def _page_size(page) -> Tuple[float, float]:
    box = page.mediabox
    return float(box.width), float(box.height)


def _render_overlay(text: str, width: float, height: float) -> bytes:
    buffer = io.BytesIO()
    overlay = canvas.Canvas(buffer, pagesize=(width, height))
    overlay.setFillColorRGB(0.5, 0.5, 0.5, alpha=STAMP_OPACITY)
    overlay.setFont(STAMP_FONT, STAMP_FONT_SIZE)
    overlay.drawString(STAMP_MARGIN, height - STAMP_MARGIN, text)
    overlay.drawString(STAMP_MARGIN, STAMP_MARGIN - STAMP_FONT_SIZE / 2, text)
    overlay.showPage()
    overlay.save()
    return buffer.getvalue()


def _stamp_pdf(content: bytes, text: str) -> bytes:
    reader = PdfReader(io.BytesIO(content))
    writer = PdfWriter()

    # pages of one document usually share a size
    overlays = {}
    for page in reader.pages:
        size = _page_size(page)
        if size not in overlays:
            overlays[size] = PdfReader(io.BytesIO(_render_overlay(text, *size))).pages[0]
        page.merge_page(overlays[size])
        writer.add_page(page)

    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()
