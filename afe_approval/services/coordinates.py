"""Conversion between canvas pixels (top-left origin) and PDF points (bottom-left origin).

The browser renders the first page of an AFE onto a canvas whose size differs from the
page's native size in points.  Every placement the user makes on that canvas goes through
this module before it is persisted, so the stored numbers are always PDF user space.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from afe_approval.core.exceptions import ValidationError

MIN_BOX_WIDTH = 20
MIN_BOX_HEIGHT = 10


@dataclass(frozen=True)
class PageGeometry:
    pdf_width: float
    pdf_height: float
    render_width: float
    render_height: float

    def __post_init__(self) -> None:
        for name in ("pdf_width", "pdf_height", "render_width", "render_height"):
            value = getattr(self, name)
            if value is None or not math.isfinite(value) or value <= 0:
                raise ValidationError(f"{name} must be a positive number")

    @property
    def scale_x(self) -> float:
        return self.pdf_width / self.render_width

    @property
    def scale_y(self) -> float:
        return self.pdf_height / self.render_height


@dataclass(frozen=True)
class ScreenPoint:
    x: float
    y: float


@dataclass(frozen=True)
class ScreenBox:
    """A rectangle drawn on the canvas, in canvas pixels."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class PdfPoint:
    x: float
    y: float


@dataclass(frozen=True)
class PdfBox:
    """A rectangle in PDF points; ``y`` is the bottom edge."""

    x: float
    y: float
    width: float
    height: float


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def point_to_pdf(point: ScreenPoint, geometry: PageGeometry) -> PdfPoint:
    """Map a click on the canvas to integer PDF points."""
    pdf_x = point.x * geometry.scale_x
    pdf_y = geometry.pdf_height - point.y * geometry.scale_y
    return PdfPoint(x=_round_half_up(pdf_x), y=_round_half_up(pdf_y))


def validate_screen_box(box: ScreenBox) -> None:
    for value in (box.x, box.y, box.width, box.height):
        if value is None or not math.isfinite(value):
            raise ValidationError("Box coordinates must be finite numbers")
    if box.width < MIN_BOX_WIDTH or box.height < MIN_BOX_HEIGHT:
        raise ValidationError(
            f"Box must be at least {MIN_BOX_WIDTH}x{MIN_BOX_HEIGHT} pixels "
            f"(got {box.width:g}x{box.height:g})"
        )


def box_to_pdf(box: ScreenBox, geometry: PageGeometry) -> PdfBox:
    """Map a dragged rectangle to PDF points, keeping sub-point precision."""
    validate_screen_box(box)
    scale_x = geometry.scale_x
    scale_y = geometry.scale_y
    return PdfBox(
        x=box.x * scale_x,
        y=geometry.pdf_height - (box.y + box.height) * scale_y,
        width=box.width * scale_x,
        height=box.height * scale_y,
    )


def pdf_to_point(point: PdfPoint, geometry: PageGeometry) -> ScreenPoint:
    return ScreenPoint(
        x=point.x / geometry.scale_x,
        y=(geometry.pdf_height - point.y) / geometry.scale_y,
    )


def pdf_to_box(box: PdfBox, geometry: PageGeometry) -> ScreenBox:
    """Inverse of :func:`box_to_pdf`, used to redraw persisted boxes on the canvas."""
    width = box.width / geometry.scale_x
    height = box.height / geometry.scale_y
    return ScreenBox(
        x=box.x / geometry.scale_x,
        y=(geometry.pdf_height - box.y) / geometry.scale_y - height,
        width=width,
        height=height,
    )
