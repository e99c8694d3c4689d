"""Embedding of signatures, titles and dates into the first page of an AFE.

Layout is computed by small pure functions (:func:`fit_font_size`, :func:`layout_text`,
:func:`layout_signature`, :func:`layout_date`) so it can be checked without producing a PDF.
Drawing follows the usual overlay approach: a reportlab canvas the size of the first page is
rendered to an in-memory PDF and merged onto that page with pypdf.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence, Union

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

from afe_approval.core.exceptions import RenderError, ValidationError

logger = logging.getLogger("afe_approval.pdf")

FONT_NAME = "Helvetica"
MAX_FONT_SIZE = 11
MIN_FONT_SIZE = 8
TEXT_PADDING = 2

DEFAULT_TITLE_WIDTH = 150
DEFAULT_TITLE_HEIGHT = 20
DEFAULT_DATE_WIDTH = 80
DEFAULT_DATE_HEIGHT = 20
LEGACY_SIGNATURE_WIDTH = 120
LEGACY_SIGNATURE_HEIGHT = 40
LEGACY_DATE_FONT_SIZE = 10
LEGACY_DATE_COLOR = (0.0, 0.0, 0.5)
TEXT_COLOR = (0.0, 0.0, 0.0)

PNG_DATA_URL_PREFIX = "data:image/png;base64,"
ALLOWED_ROTATIONS = (90, 180, 270)
LANDSCAPE_RATIO = 1.2


# --- placements -----------------------------------------------------------------------


@dataclass(frozen=True)
class ExplicitBox:
    """Signature drawn inside a user-drawn box, left aligned and vertically centered."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class LegacyCenteredPoint:
    """Signature centered on a single click, fitted into the default 120x40 area."""

    x: float
    y: float


SignaturePlacement = Union[ExplicitBox, LegacyCenteredPoint]


@dataclass(frozen=True)
class TextBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class DateBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class BesideSignature:
    """Date written to the right of the signature when no date box was placed."""

    signature_x: float
    signature_y: float
    signature_width: float | None = None
    signature_height: float | None = None


DatePlacement = Union[DateBox, BesideSignature]


@dataclass(frozen=True)
class SlotAnnotation:
    """Everything needed to draw one signed slot."""

    label: str
    signing_order: int
    title_text: str | None = None
    title: TextBox | None = None
    signature_image: str | None = None
    signature: SignaturePlacement | None = None
    signed_at: datetime | None = None
    date: DatePlacement | None = None


@dataclass(frozen=True)
class TextDraw:
    text: str
    x: float
    y: float
    font_size: float
    font_name: str = FONT_NAME
    color: tuple[float, float, float] = TEXT_COLOR


@dataclass(frozen=True)
class ImageDraw:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class PdfInfo:
    page_count: int
    width: float
    height: float
    rotation: int
    title: str | None = None
    author: str | None = None


# --- layout ---------------------------------------------------------------------------


def fit_font_size(text: str, box_width: float, font_name: str = FONT_NAME) -> int:
    """Largest size from 11pt down to 8pt at which ``text`` fits ``box_width`` minus padding."""
    size = MAX_FONT_SIZE
    while pdfmetrics.stringWidth(text, font_name, size) > box_width - 2 * TEXT_PADDING and size > MIN_FONT_SIZE:
        size -= 1
    return size


def layout_text(text: str, x: float, y: float, width: float, height: float) -> TextDraw:
    size = fit_font_size(text, width)
    return TextDraw(text=text, x=x + TEXT_PADDING, y=y + (height - size) / 2, font_size=size)


def layout_title(text: str, box: TextBox) -> TextDraw:
    width = box.width or DEFAULT_TITLE_WIDTH
    height = box.height or DEFAULT_TITLE_HEIGHT
    return layout_text(text, box.x, box.y, width, height)


def format_signed_date(value: datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def layout_date(signed_at: datetime, placement: DatePlacement) -> TextDraw:
    text = format_signed_date(signed_at)
    if isinstance(placement, DateBox):
        width = placement.width or DEFAULT_DATE_WIDTH
        height = placement.height or DEFAULT_DATE_HEIGHT
        return layout_text(text, placement.x, placement.y, width, height)
    sig_width = placement.signature_width or LEGACY_SIGNATURE_WIDTH
    sig_height = placement.signature_height or LEGACY_SIGNATURE_HEIGHT
    return TextDraw(
        text=text,
        x=placement.signature_x + sig_width + 10,
        y=placement.signature_y + sig_height / 2 - 5,
        font_size=LEGACY_DATE_FONT_SIZE,
        color=LEGACY_DATE_COLOR,
    )


def layout_signature(placement: SignaturePlacement, image_width: float, image_height: float) -> ImageDraw:
    if image_width <= 0 or image_height <= 0:
        raise ValidationError("Signature image has no size")
    if isinstance(placement, ExplicitBox):
        scale = min(placement.width / image_width, placement.height / image_height)
        width = image_width * scale
        height = image_height * scale
        return ImageDraw(
            x=placement.x,
            y=placement.y + (placement.height - height) / 2,
            width=width,
            height=height,
        )
    scale = min(LEGACY_SIGNATURE_WIDTH / image_width, LEGACY_SIGNATURE_HEIGHT / image_height)
    width = image_width * scale
    height = image_height * scale
    return ImageDraw(x=placement.x - width / 2, y=placement.y - height / 2, width=width, height=height)


def signature_placement(
    x: float | None, y: float | None, width: float | None, height: float | None
) -> SignaturePlacement | None:
    if x is None or y is None:
        return None
    if width and height:
        return ExplicitBox(x=x, y=y, width=width, height=height)
    return LegacyCenteredPoint(x=x, y=y)


def date_placement(slot) -> DatePlacement | None:
    if slot.date_x is not None and slot.date_y is not None:
        return DateBox(x=slot.date_x, y=slot.date_y, width=slot.date_width, height=slot.date_height)
    if slot.date_x is None and slot.signature_x is not None:
        return BesideSignature(
            signature_x=slot.signature_x,
            signature_y=slot.signature_y or 0,
            signature_width=slot.signature_width,
            signature_height=slot.signature_height,
        )
    return None


def annotation_for_slot(slot, user) -> SlotAnnotation:
    """Build the drawing instructions for a signed ``AfeSigner`` and its ``User``."""
    title = None
    if slot.title_x is not None and slot.title_y is not None:
        title = TextBox(x=slot.title_x, y=slot.title_y, width=slot.title_width, height=slot.title_height)
    return SlotAnnotation(
        label=getattr(user, "email", None) or str(slot.user_id),
        signing_order=slot.signing_order,
        title_text=getattr(user, "title", None),
        title=title,
        signature_image=slot.signature_image,
        signature=signature_placement(
            slot.signature_x, slot.signature_y, slot.signature_width, slot.signature_height
        ),
        signed_at=slot.signed_at,
        date=date_placement(slot) if slot.signed_at else None,
    )


# --- images ---------------------------------------------------------------------------


def decode_signature_image(data: str) -> bytes:
    payload = (data or "").strip()
    if payload.startswith(PNG_DATA_URL_PREFIX):
        payload = payload[len(PNG_DATA_URL_PREFIX):]
    if not payload:
        raise ValidationError("Signature image is empty")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Signature image is not valid base64") from exc


def load_signature_image(data: str) -> ImageReader:
    raw = decode_signature_image(data)
    try:
        return ImageReader(io.BytesIO(raw))
    except Exception as exc:
        raise ValidationError("Signature image is not a readable PNG") from exc


def validate_signature_image(data: str) -> None:
    """Raise ValidationError unless ``data`` decodes to an image reportlab can draw."""
    reader = load_signature_image(data)
    width, height = reader.getSize()
    if width <= 0 or height <= 0:
        raise ValidationError("Signature image has no size")


# --- drawing --------------------------------------------------------------------------


def _draw_text(overlay: canvas.Canvas, draw: TextDraw) -> None:
    overlay.setFont(draw.font_name, draw.font_size)
    overlay.setFillColor(colors.Color(*draw.color))
    overlay.drawString(draw.x, draw.y, draw.text)


def _draw_slot(overlay: canvas.Canvas, annotation: SlotAnnotation) -> None:
    if annotation.title is not None and annotation.title_text:
        try:
            _draw_text(overlay, layout_title(annotation.title_text, annotation.title))
        except Exception:
            logger.exception("Could not draw title for %s", annotation.label)

    if annotation.signature is not None and annotation.signature_image:
        try:
            image = load_signature_image(annotation.signature_image)
            image_width, image_height = image.getSize()
            draw = layout_signature(annotation.signature, image_width, image_height)
            overlay.drawImage(image, draw.x, draw.y, width=draw.width, height=draw.height, mask="auto")
            logger.debug(
                "Signature for %s at (%.1f, %.1f) size %.1fx%.1f",
                annotation.label,
                draw.x,
                draw.y,
                draw.width,
                draw.height,
            )
        except Exception:
            logger.exception("Could not draw signature for %s", annotation.label)

    if annotation.date is not None and annotation.signed_at is not None:
        try:
            _draw_text(overlay, layout_date(annotation.signed_at, annotation.date))
        except Exception:
            logger.exception("Could not draw date for %s", annotation.label)


def _read_pdf(data: bytes) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(data))
        if not reader.pages:
            raise RenderError("PDF has no pages")
        return reader
    except RenderError:
        raise
    except (PyPdfError, ValueError, OSError) as exc:
        raise RenderError(f"Could not read PDF: {exc}") from exc


def annotate_pdf(original_bytes: bytes, annotations: Sequence[SlotAnnotation]) -> bytes:
    """Draw every annotation, in signing order, onto the first page of ``original_bytes``.

    A failure while drawing one element is logged and the remaining elements are still
    drawn; only an unreadable input PDF raises :class:`RenderError`.
    """
    reader = _read_pdf(original_bytes)
    writer = PdfWriter()
    first_page = reader.pages[0]
    width = float(first_page.mediabox.width)
    height = float(first_page.mediabox.height)

    overlay_stream = io.BytesIO()
    overlay = canvas.Canvas(overlay_stream, pagesize=(width, height))
    for annotation in sorted(annotations, key=lambda item: item.signing_order):
        _draw_slot(overlay, annotation)
    overlay.save()
    overlay_stream.seek(0)

    overlay_reader = PdfReader(overlay_stream)
    first_page.merge_page(overlay_reader.pages[0])
    for page in reader.pages:
        writer.add_page(page)

    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


# --- inspection and rotation ----------------------------------------------------------


def get_pdf_info(data: bytes) -> PdfInfo:
    reader = _read_pdf(data)
    page = reader.pages[0]
    metadata = reader.metadata
    return PdfInfo(
        page_count=len(reader.pages),
        width=float(page.mediabox.width),
        height=float(page.mediabox.height),
        rotation=int(page.rotation or 0) % 360,
        title=metadata.title if metadata else None,
        author=metadata.author if metadata else None,
    )


def _write(reader: PdfReader) -> bytes:
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


def rotate_pdf(data: bytes, degrees: int) -> bytes:
    """Add ``degrees`` (90, 180 or 270) to the rotation of every page.

    Any other value, or any failure, returns ``data`` untouched.
    """
    if degrees not in ALLOWED_ROTATIONS:
        return data
    try:
        reader = PdfReader(io.BytesIO(data))
        for page in reader.pages:
            page.rotation = (int(page.rotation or 0) + degrees) % 360
        return _write(reader)
    except Exception:
        logger.warning("Rotation by %s degrees failed, serving the PDF as stored", degrees, exc_info=True)
        return data


def auto_fix_rotation(data: bytes) -> bytes:
    """Turn unrotated landscape pages (wider than 1.2x their height) to portrait."""
    try:
        reader = PdfReader(io.BytesIO(data))
        changed = False
        for page in reader.pages:
            width = float(page.mediabox.width)
            height = float(page.mediabox.height)
            if width > height * LANDSCAPE_RATIO and int(page.rotation or 0) % 360 == 0:
                page.rotation = 270
                changed = True
        if not changed:
            return data
        return _write(reader)
    except Exception:
        logger.warning("Automatic rotation fix failed, serving the PDF as stored", exc_info=True)
        return data


def is_pdf_bytes(data: bytes) -> bool:
    return data[:5] == b"%PDF-"
