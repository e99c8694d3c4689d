import io
from datetime import datetime
from types import SimpleNamespace

import pytest
from pypdf import PdfReader
from reportlab.pdfbase import pdfmetrics

from afe_approval.core.exceptions import RenderError, ValidationError
from afe_approval.services.pdf import (
    DEFAULT_DATE_WIDTH,
    LEGACY_DATE_COLOR,
    LEGACY_DATE_FONT_SIZE,
    MAX_FONT_SIZE,
    MIN_FONT_SIZE,
    BesideSignature,
    DateBox,
    ExplicitBox,
    LegacyCenteredPoint,
    SlotAnnotation,
    TextBox,
    annotate_pdf,
    auto_fix_rotation,
    date_placement,
    decode_signature_image,
    fit_font_size,
    format_signed_date,
    get_pdf_info,
    is_pdf_bytes,
    layout_date,
    layout_signature,
    layout_text,
    layout_title,
    rotate_pdf,
    signature_placement,
    validate_signature_image,
)

from tests.conftest import make_pdf_bytes, make_signature_png


def test_short_text_uses_largest_font() -> None:
    assert fit_font_size("CFO", 150) == MAX_FONT_SIZE


def test_long_text_stops_at_minimum_font() -> None:
    text = "Senior Vice President of Drilling and Completions Operations"
    assert fit_font_size(text, 40) == MIN_FONT_SIZE


@pytest.mark.parametrize("width", [60, 90, 120, 150, 200])
def test_chosen_size_fits_or_is_the_floor(width: float) -> None:
    text = "Operations Manager"
    size = fit_font_size(text, width)

    assert MIN_FONT_SIZE <= size <= MAX_FONT_SIZE
    if size > MIN_FONT_SIZE:
        assert pdfmetrics.stringWidth(text, "Helvetica", size) <= width - 4
    if size < MAX_FONT_SIZE:
        assert pdfmetrics.stringWidth(text, "Helvetica", size + 1) > width - 4


def test_text_is_padded_and_vertically_centered() -> None:
    draw = layout_text("CFO", x=100, y=200, width=150, height=20)

    assert draw.x == 102
    assert draw.font_size == 11
    assert draw.y == pytest.approx(200 + (20 - 11) / 2)


def test_title_box_without_size_uses_defaults() -> None:
    draw = layout_title("CFO", TextBox(x=10, y=10, width=None, height=None))

    assert draw.y == pytest.approx(10 + (20 - 11) / 2)


def test_signed_date_has_no_leading_zeros() -> None:
    assert format_signed_date(datetime(2024, 3, 5, 14, 30)) == "3/5/2024"
    assert format_signed_date(datetime(2024, 12, 25)) == "12/25/2024"


def test_date_in_box() -> None:
    draw = layout_date(datetime(2024, 3, 5), DateBox(x=300, y=100, width=None, height=None))

    assert draw.text == "3/5/2024"
    assert draw.x == 302
    assert fit_font_size("3/5/2024", DEFAULT_DATE_WIDTH) == draw.font_size


def test_legacy_date_beside_signature() -> None:
    draw = layout_date(datetime(2024, 3, 5), BesideSignature(signature_x=200, signature_y=300))

    assert (draw.x, draw.y) == (200 + 120 + 10, 300 + 20 - 5)
    assert draw.font_size == LEGACY_DATE_FONT_SIZE
    assert draw.color == LEGACY_DATE_COLOR


def test_signature_fills_box_keeping_aspect_ratio() -> None:
    draw = layout_signature(ExplicitBox(x=10, y=20, width=100, height=40), 200, 40)

    assert (draw.width, draw.height) == (100, 20)
    assert draw.x == 10
    assert draw.y == pytest.approx(30)


def test_legacy_signature_is_centered_on_point() -> None:
    draw = layout_signature(LegacyCenteredPoint(x=300, y=400), 240, 80)

    assert (draw.width, draw.height) == (120, 40)
    assert (draw.x, draw.y) == (240, 380)


def test_zero_size_image_is_rejected() -> None:
    with pytest.raises(ValidationError):
        layout_signature(LegacyCenteredPoint(x=1, y=1), 0, 10)


def test_signature_placement_variants() -> None:
    assert signature_placement(None, 10, None, None) is None
    assert signature_placement(5, 10, None, None) == LegacyCenteredPoint(x=5, y=10)
    assert signature_placement(5, 10, 100, 30) == ExplicitBox(x=5, y=10, width=100, height=30)


def _slot(**overrides):
    values = dict(
        signature_x=None,
        signature_y=None,
        signature_width=None,
        signature_height=None,
        date_x=None,
        date_y=None,
        date_width=None,
        date_height=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_date_placement_prefers_date_box() -> None:
    placement = date_placement(_slot(signature_x=1, signature_y=2, date_x=50, date_y=60))
    assert placement == DateBox(x=50, y=60, width=None, height=None)


def test_date_placement_falls_back_to_signature() -> None:
    placement = date_placement(_slot(signature_x=100, signature_y=200, signature_width=90, signature_height=30))
    assert placement == BesideSignature(signature_x=100, signature_y=200, signature_width=90, signature_height=30)


def test_no_date_without_any_position() -> None:
    assert date_placement(_slot()) is None


def test_decode_accepts_prefixed_and_bare_base64() -> None:
    png = make_signature_png()
    bare = png.split(",", 1)[1]

    assert decode_signature_image(png) == decode_signature_image(bare)
    assert decode_signature_image(png).startswith(b"\x89PNG")


@pytest.mark.parametrize("value", ["", "data:image/png;base64,", "data:image/png;base64,not*base64", "aGVsbG8="])
def test_invalid_signature_images(value: str) -> None:
    with pytest.raises(ValidationError):
        validate_signature_image(value)


def _annotation(order: int, image: str | None, **kwargs) -> SlotAnnotation:
    return SlotAnnotation(
        label=f"signer-{order}",
        signing_order=order,
        signature_image=image,
        signed_at=datetime(2024, 3, 5),
        **kwargs,
    )


def test_annotate_pdf_draws_on_first_page_only() -> None:
    original = make_pdf_bytes(pages=2)
    annotations = [
        _annotation(
            1,
            make_signature_png(),
            signature=ExplicitBox(x=72, y=500, width=150, height=40),
            date=DateBox(x=240, y=500, width=80, height=20),
            title_text="Operations Manager",
            title=TextBox(x=72, y=470, width=150, height=20),
        ),
        _annotation(2, make_signature_png(), signature=LegacyCenteredPoint(x=300, y=300),
                    date=BesideSignature(signature_x=300, signature_y=300)),
    ]

    annotated = annotate_pdf(original, annotations)

    reader = PdfReader(io.BytesIO(annotated))
    assert len(reader.pages) == 2
    first = reader.pages[0].extract_text()
    assert "3/5/2024" in first
    assert "Operations Manager" in first
    assert "3/5/2024" not in reader.pages[1].extract_text()


def test_broken_signature_image_is_skipped() -> None:
    annotations = [
        _annotation(1, "data:image/png;base64,aGVsbG8=", signature=LegacyCenteredPoint(x=100, y=100),
                    date=DateBox(x=100, y=50, width=80, height=20)),
    ]

    annotated = annotate_pdf(make_pdf_bytes(), annotations)

    assert is_pdf_bytes(annotated)
    assert "3/5/2024" in PdfReader(io.BytesIO(annotated)).pages[0].extract_text()


def test_unreadable_pdf_raises_render_error() -> None:
    with pytest.raises(RenderError):
        annotate_pdf(b"%PDF-1.4 garbage", [])


def test_pdf_info() -> None:
    info = get_pdf_info(make_pdf_bytes(width=595, height=842, pages=3))

    assert info.page_count == 3
    assert (info.width, info.height) == (595, 842)
    assert info.rotation == 0


def test_landscape_page_is_turned_to_portrait() -> None:
    fixed = auto_fix_rotation(make_pdf_bytes(width=792, height=612))

    assert get_pdf_info(fixed).rotation == 270


def test_portrait_and_near_square_pages_are_left_alone() -> None:
    portrait = make_pdf_bytes()
    near_square = make_pdf_bytes(width=800, height=700)

    assert auto_fix_rotation(portrait) is portrait
    assert auto_fix_rotation(near_square) is near_square


def test_already_rotated_landscape_is_left_alone() -> None:
    rotated = rotate_pdf(make_pdf_bytes(width=792, height=612), 90)

    assert auto_fix_rotation(rotated) is rotated


@pytest.mark.parametrize("degrees", [0, 45, -90, 360])
def test_unsupported_rotation_returns_input(degrees: int) -> None:
    original = make_pdf_bytes()
    assert rotate_pdf(original, degrees) is original


def test_explicit_rotation_adds_to_existing() -> None:
    once = rotate_pdf(make_pdf_bytes(), 90)
    twice = rotate_pdf(once, 270)

    assert get_pdf_info(once).rotation == 90
    assert get_pdf_info(twice).rotation == 0


def test_rotation_failure_returns_input() -> None:
    assert rotate_pdf(b"not a pdf", 90) == b"not a pdf"


def test_is_pdf_bytes() -> None:
    assert is_pdf_bytes(make_pdf_bytes())
    assert not is_pdf_bytes(b"PK\x03\x04")
