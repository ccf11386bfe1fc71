"""Service layer – decode, resample and encode with Pillow.

The transform is synchronous and CPU-bound; callers run it in a worker
thread.  Every ``Image`` opened or created here is closed before the function
returns, whether encoding succeeded or not.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Iterable
from contextlib import ExitStack

from PIL import Image

from src.resizer.config import (
    BACKGROUND_COLOR,
    DECODER_FORMATS,
    DEFAULT_FILENAME_STEM,
    OUTPUT_EXTENSION,
    OUTPUT_FORMAT,
    OUTPUT_MIME_TYPE,
)
from src.resizer.schemas.resize import ResizedImage, ResizeRequest

logger = logging.getLogger(__name__)

# Integer modes wider than 8 bits (16-bit PNG greyscale decodes to these).
_HIGH_BIT_MODES = {"I", "I;16", "I;16L", "I;16B", "I;16N"}


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────
def suggested_filename(original_filename: str | None) -> str:
    """``resized_<name>.jpg`` where *name* falls back to ``image``."""
    name = (original_filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    return f"resized_{name or DEFAULT_FILENAME_STEM}{OUTPUT_EXTENSION}"


def decoder_formats_for(mime_types: Iterable[str]) -> list[str]:
    """Pillow format names the decoder may sniff for the given MIME types."""
    return sorted({DECODER_FORMATS[mime] for mime in mime_types if mime in DECODER_FORMATS})


def _scoped(stack: ExitStack, image: Image.Image) -> Image.Image:
    """Register *image* to be closed (pixel buffer released) when *stack* exits."""
    stack.callback(image.close)
    return image


def _to_rgb(image: Image.Image) -> Image.Image:
    """RGB copy of *image*; wide integer samples are scaled down, not clipped."""
    if image.mode not in _HIGH_BIT_MODES:
        return image.convert("RGB")

    with ExitStack() as stack:
        wide = _scoped(stack, image.convert("I"))
        scaled = _scoped(stack, wide.point(lambda v: v * (1 / 256)))
        grey = _scoped(stack, scaled.convert("L"))
        return grey.convert("RGB")


def _alpha_channel(image: Image.Image) -> Image.Image:
    """Alpha of *image* as an ``L`` mask, from an alpha band or a tRNS colour key."""
    with ExitStack() as stack:
        rgba = _scoped(stack, image.convert("RGBA"))
        return rgba.getchannel("A")


# ──────────────────────────────────────────────
# Decode / resample / encode
# ──────────────────────────────────────────────
def decode_image(data: bytes, formats: list[str] | None = None) -> Image.Image:
    """Decode *data* into a fully loaded raster.

    ``load()`` forces the whole pixel buffer to be read so truncated files
    fail here rather than half-way through resampling.
    """
    image = Image.open(io.BytesIO(data), formats=formats or None)
    try:
        image.load()
    except Exception:
        image.close()
        raise
    return image


def flatten_onto_background(image: Image.Image) -> Image.Image:
    """Return an RGB copy of *image* composited onto :data:`BACKGROUND_COLOR`.

    Transparency may come from an alpha band (``RGBA``, ``LA``, ``PA``) or
    from a tRNS colour key in ``info`` (``P``, ``L``, ``RGB``, ``I;16``).
    """
    colour = _to_rgb(image)
    if not image.has_transparency_data:
        return colour

    with ExitStack() as stack:
        _scoped(stack, colour)
        alpha = _scoped(stack, _alpha_channel(image))
        background = _scoped(stack, Image.new("RGB", colour.size, BACKGROUND_COLOR))
        return Image.composite(colour, background, alpha)


def resample_fill(image: Image.Image, width: int, height: int) -> Image.Image:
    """Stretch *image* to exactly ``width`` x ``height`` (no crop, no padding)."""
    return image.resize((width, height), Image.Resampling.LANCZOS)


def encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=OUTPUT_FORMAT, quality=quality)
    return buffer.getvalue()


def resize_image(
    request: ResizeRequest,
    *,
    quality: int,
    formats: list[str] | None = None,
) -> ResizedImage:
    """Run the full decode → fill-resample → JPEG encode transform.

    Parameters
    ----------
    request : ResizeRequest – validated upload and target size.
    quality : int           – JPEG quality (0-100).
    formats : list[str]     – Pillow formats the decoder may accept.

    Exceptions from Pillow propagate unchanged; the router maps them.
    """
    with ExitStack() as stack:
        source = _scoped(stack, decode_image(request.image_bytes, formats))
        source_format, source_size = source.format, source.size

        flat = _scoped(stack, flatten_onto_background(source))
        resized = _scoped(
            stack, resample_fill(flat, request.target_width, request.target_height),
        )
        output = encode_jpeg(resized, quality)

    logger.info(
        "Resized %s %sx%s → %sx%s (%d bytes)",
        source_format, *source_size,
        request.target_width, request.target_height, len(output),
    )
    return ResizedImage(
        output_bytes=output,
        output_mime_type=OUTPUT_MIME_TYPE,
        suggested_filename=suggested_filename(request.original_filename),
        source_format=source_format,
        source_size=source_size,
    )
