"""Router – image resize."""

import re
from functools import partial
from urllib.parse import quote

import anyio
import anyio.to_thread
from fastapi import APIRouter, Depends, Request, Response
from starlette.datastructures import FormData, UploadFile

from src.resizer.config import Settings, get_settings
from src.resizer.errors import ErrorKind, ResizeError, classify_error
from src.resizer.schemas.error import ErrorResponse
from src.resizer.schemas.resize import ResizedImage, ResizeRequest
from src.resizer.services.image_service import decoder_formats_for, resize_image

router = APIRouter(tags=["Resize"])

_INTEGER = re.compile(r"[+-]?[0-9]+")

_MULTIPART_SCHEMA = {
    "requestBody": {
        "required": True,
        "content": {
            "multipart/form-data": {
                "schema": {
                    "type": "object",
                    "required": ["image", "width", "height"],
                    "properties": {
                        "image": {"type": "string", "format": "binary"},
                        "width": {"type": "string", "example": "800"},
                        "height": {"type": "string", "example": "600"},
                    },
                },
            },
        },
    },
}


# ──────────────────────────────────────────────
# Validation
# ──────────────────────────────────────────────
def _text_field(form: FormData, name: str) -> str | None:
    value = form.get(name)
    if value is None or isinstance(value, UploadFile):
        return None
    value = value.strip()
    return value or None


def _file_field(form: FormData, name: str) -> UploadFile | None:
    value = form.get(name)
    if not isinstance(value, UploadFile):
        return None
    # Browsers send an empty, nameless part when no file was chosen.
    if not value.filename and not value.size:
        return None
    return value


def parse_dimension(raw: str, max_dimension: int) -> int:
    """Parse a base-10 integer in ``1..max_dimension``."""
    if not _INTEGER.fullmatch(raw):
        raise ResizeError(ErrorKind.INVALID_DIMENSIONS)
    value = int(raw)
    if value <= 0:
        raise ResizeError(ErrorKind.INVALID_DIMENSIONS)
    if value > max_dimension:
        raise ResizeError(
            ErrorKind.INVALID_DIMENSIONS,
            f"Invalid dimensions. Width and height must not exceed {max_dimension} pixels.",
        )
    return value


def normalise_mime_type(content_type: str | None) -> str:
    """``image/PNG; foo=bar`` → ``image/png``."""
    return (content_type or "").split(";", 1)[0].strip().lower()


async def validate_resize_form(form: FormData, settings: Settings) -> ResizeRequest:
    """
    Build a :class:`ResizeRequest` from the multipart form.

    Checks run in a fixed order and the first failure wins:
    missing fields → dimensions → MIME type → size.
    """
    image = _file_field(form, "image")
    width_raw = _text_field(form, "width")
    height_raw = _text_field(form, "height")
    if image is None or width_raw is None or height_raw is None:
        raise ResizeError(ErrorKind.MISSING_FIELD)

    width = parse_dimension(width_raw, settings.max_dimension)
    height = parse_dimension(height_raw, settings.max_dimension)

    mime_type = normalise_mime_type(image.content_type)
    if mime_type not in settings.allowed_mime_types_set:
        raise ResizeError(ErrorKind.UNSUPPORTED_TYPE)

    # one extra byte is enough to detect an oversized upload
    data = await image.read(settings.max_upload_size + 1)
    if len(data) > settings.max_upload_size:
        raise ResizeError(
            ErrorKind.PAYLOAD_TOO_LARGE,
            f"File size too large. Maximum size is {settings.max_upload_size_label}.",
        )

    return ResizeRequest(
        image_bytes=data,
        declared_mime_type=mime_type,
        original_filename=image.filename or "",
        target_width=width,
        target_height=height,
    )


# ──────────────────────────────────────────────
# Transform
# ──────────────────────────────────────────────
async def run_transform(resize_request: ResizeRequest, settings: Settings) -> ResizedImage:
    """Run :func:`resize_image` in a worker thread under ``settings.transform_timeout``.

    Any failure is passed through :func:`classify_error`.
    """
    transform = partial(
        resize_image,
        resize_request,
        quality=settings.jpeg_quality,
        formats=decoder_formats_for(settings.allowed_mime_types_set),
    )
    try:
        with anyio.fail_after(settings.transform_timeout):
            return await anyio.to_thread.run_sync(transform, abandon_on_cancel=True)
    except Exception as exc:
        raise classify_error(exc) from exc


def content_disposition(filename: str) -> str:
    """``attachment`` header value; non-ASCII names also get ``filename*``."""
    fallback = "".join(
        char if char.isascii() and char.isprintable() and char not in '"\\' else "_"
        for char in filename
    )
    value = f'attachment; filename="{fallback}"'
    if fallback != filename:
        value += f"; filename*=utf-8''{quote(filename)}"
    return value


@router.post(
    "/api/resize",
    response_class=Response,
    responses={
        200: {"content": {"image/jpeg": {}}, "description": "The resized JPEG."},
        400: {"model": ErrorResponse, "description": "Invalid input."},
        500: {"model": ErrorResponse, "description": "Image processing failed."},
    },
    openapi_extra=_MULTIPART_SCHEMA,
)
async def resize(request: Request, settings: Settings = Depends(get_settings)) -> Response:
    """
    Resize an uploaded image to exactly ``width`` x ``height`` and return a JPEG.

    Form fields
    -----------
    image  : file – JPG, PNG or WebP, at most ``max_upload_size`` bytes.
    width  : str  – positive integer.
    height : str  – positive integer.

    The image is stretched to fill the target size and flattened onto a
    white background.
    """
    async with request.form() as form:
        resize_request = await validate_resize_form(form, settings)

    result = await run_transform(resize_request, settings)

    return Response(
        content=result.output_bytes,
        media_type=result.output_mime_type,
        headers={"Content-Disposition": content_disposition(result.suggested_filename)},
    )
