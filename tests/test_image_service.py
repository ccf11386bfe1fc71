"""Tests for the Pillow transform service and request helpers."""

import io
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image, UnidentifiedImageError

from src.resizer.router.resize import content_disposition, normalise_mime_type, parse_dimension
from src.resizer.errors import ErrorKind, ResizeError
from src.resizer.schemas.resize import ResizeRequest
from src.resizer.services.image_service import (
    decoder_formats_for,
    flatten_onto_background,
    resize_image,
    suggested_filename,
)


def _request(data: bytes, width: int = 40, height: int = 30, filename: str = "a.png") -> ResizeRequest:
    return ResizeRequest(
        image_bytes=data,
        declared_mime_type="image/png",
        original_filename=filename,
        target_width=width,
        target_height=height,
    )


def _png(size: tuple[int, int], mode: str = "RGB", color: object = "green") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


# ──────────────────────────────────────────────
# resize_image
# ──────────────────────────────────────────────
@pytest.mark.parametrize(
    ("source", "target"),
    [((2000, 1000), (400, 400)), ((10, 300), (300, 10)), ((1, 1), (5, 7))],
)
def test_output_has_exact_requested_size(source: tuple[int, int], target: tuple[int, int]) -> None:
    result = resize_image(_request(_png(source), *target), quality=90)

    with Image.open(io.BytesIO(result.output_bytes)) as out:
        assert out.format == "JPEG"
        assert out.size == target
    assert result.output_mime_type == "image/jpeg"
    assert result.source_size == source
    assert result.source_format == "PNG"


def test_quality_changes_output_size() -> None:
    noise = np.random.default_rng(1).integers(0, 256, (120, 120, 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(noise).save(buffer, format="PNG")
    request = _request(buffer.getvalue(), 120, 120)

    low = resize_image(request, quality=20)
    high = resize_image(request, quality=90)

    assert len(high.output_bytes) > len(low.output_bytes)


def test_palette_transparency_is_flattened() -> None:
    img = Image.new("P", (8, 8), color=0)
    img.putpalette([0, 0, 0] * 256)
    img.info["transparency"] = 0

    flat = flatten_onto_background(img)

    assert flat.mode == "RGB"
    assert flat.getpixel((0, 0)) == (255, 255, 255)


def _encoded_png(image: Image.Image, **params: object) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", **params)
    return buffer.getvalue()


def _mean_output(data: bytes) -> np.ndarray:
    result = resize_image(_request(data, 10, 10), quality=90)
    with Image.open(io.BytesIO(result.output_bytes)) as out:
        return np.asarray(out.convert("RGB"), dtype=np.float64).mean(axis=(0, 1))


@pytest.mark.parametrize(
    "source",
    [
        pytest.param(lambda: _encoded_png(Image.new("RGB", (20, 20), (0, 0, 0)), transparency=(0, 0, 0)), id="RGB+tRNS"),
        pytest.param(lambda: _encoded_png(Image.new("L", (20, 20), 0), transparency=0), id="L+tRNS"),
        pytest.param(lambda: _encoded_png(Image.new("LA", (20, 20), (0, 0))), id="LA"),
        pytest.param(lambda: _encoded_png(Image.new("RGBA", (20, 20), (0, 0, 0, 0))), id="RGBA"),
    ],
)
def test_transparent_sources_become_white(source) -> None:
    assert _mean_output(source()).min() >= 245


def test_colour_key_only_hides_matching_pixels() -> None:
    """A tRNS key that matches no pixel leaves the image opaque."""
    data = _encoded_png(Image.new("RGB", (20, 20), (200, 0, 0)), transparency=(0, 0, 0))
    red, green, blue = _mean_output(data)
    assert red > 180
    assert green < 40
    assert blue < 40


def test_sixteen_bit_greyscale_is_scaled_not_clipped() -> None:
    data = _encoded_png(Image.fromarray(np.full((20, 20), 1000, dtype=np.uint16)))
    with Image.open(io.BytesIO(data)) as decoded:
        assert decoded.mode in {"I;16", "I"}

    # 1000 / 256 ≈ 4
    assert _mean_output(data).max() < 12


def test_sixteen_bit_greyscale_keeps_full_range() -> None:
    data = _encoded_png(Image.fromarray(np.full((20, 20), 65535, dtype=np.uint16)))
    assert _mean_output(data).min() >= 245


def test_opaque_image_keeps_colours() -> None:
    flat = flatten_onto_background(Image.new("L", (4, 4), color=0))
    assert flat.mode == "RGB"
    assert flat.getpixel((0, 0)) == (0, 0, 0)


def test_decoder_restricted_to_formats() -> None:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4)).save(buffer, format="BMP")

    with pytest.raises(UnidentifiedImageError):
        resize_image(_request(buffer.getvalue()), quality=90, formats=["JPEG", "PNG", "WEBP"])


def test_truncated_image_raises() -> None:
    noise = np.random.default_rng(2).integers(0, 256, (64, 64, 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(noise).save(buffer, format="PNG")
    data = buffer.getvalue()
    with pytest.raises(OSError):
        resize_image(_request(data[: len(data) // 2]), quality=90)


def test_rasters_are_closed_on_failure() -> None:
    closed: list[Image.Image] = []
    real_close = Image.Image.close

    def tracking_close(self: Image.Image) -> None:
        closed.append(self)
        real_close(self)

    with patch.object(Image.Image, "close", tracking_close), \
            patch("src.resizer.services.image_service.encode_jpeg", side_effect=OSError("disk full")):
        with pytest.raises(OSError, match="disk full"):
            resize_image(_request(_png((16, 16))), quality=90)

    # flattened copy and resized copy, plus the decoded source
    assert len(closed) >= 2
    assert any(image.size == (40, 30) for image in closed)


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────
@pytest.mark.parametrize(
    ("original", "expected"),
    [
        ("photo.png", "resized_photo.png.jpg"),
        ("", "resized_image.jpg"),
        (None, "resized_image.jpg"),
        ("C:\\fakepath\\cat.webp", "resized_cat.webp.jpg"),
        ("../../etc/passwd", "resized_passwd.jpg"),
    ],
)
def test_suggested_filename(original: str | None, expected: str) -> None:
    assert suggested_filename(original) == expected


def test_decoder_formats_for() -> None:
    assert decoder_formats_for({"image/jpeg", "image/jpg", "image/png"}) == ["JPEG", "PNG"]
    assert decoder_formats_for({"image/tiff"}) == []


def test_content_disposition_ascii() -> None:
    assert content_disposition("resized_a.png.jpg") == 'attachment; filename="resized_a.png.jpg"'


def test_content_disposition_non_ascii() -> None:
    header = content_disposition('resized_фото "1".jpg')
    assert header.startswith('attachment; filename="resized_____ _1_.jpg"')
    assert "filename*=utf-8''resized_%D1%84%D0%BE%D1%82%D0%BE%20%221%22.jpg" in header


@pytest.mark.parametrize(("raw", "expected"), [("1", 1), ("800", 800), ("+12", 12), ("007", 7)])
def test_parse_dimension_valid(raw: str, expected: int) -> None:
    assert parse_dimension(raw, max_dimension=10_000) == expected


@pytest.mark.parametrize("raw", ["0", "-1", "abc", "1.5", "1e2", "١٢", "1_000"])
def test_parse_dimension_invalid(raw: str) -> None:
    with pytest.raises(ResizeError) as exc_info:
        parse_dimension(raw, max_dimension=10_000)
    assert exc_info.value.kind is ErrorKind.INVALID_DIMENSIONS


def test_parse_dimension_upper_bound() -> None:
    assert parse_dimension("10000", max_dimension=10_000) == 10_000
    with pytest.raises(ResizeError):
        parse_dimension("10001", max_dimension=10_000)


def test_normalise_mime_type() -> None:
    assert normalise_mime_type("Image/PNG; charset=binary") == "image/png"
    assert normalise_mime_type(None) == ""
