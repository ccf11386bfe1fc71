"""Error taxonomy for the resize pipeline and the mapping from internal failures.

Every failure that leaves the pipeline is a :class:`ResizeError` carrying one
:class:`ErrorKind`.  Validation raises them directly; failures coming out of
the image library go through :func:`classify_error`, which is the single place
where an internal exception type is assigned an external kind.
"""

from __future__ import annotations

import logging
from enum import Enum

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """External error kinds, each with a fixed HTTP status."""

    MISSING_FIELD = "MissingField"
    INVALID_DIMENSIONS = "InvalidDimensions"
    UNSUPPORTED_TYPE = "UnsupportedType"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    PROCESSING_FAILED = "ProcessingFailed"

    @property
    def status_code(self) -> int:
        if self is ErrorKind.PROCESSING_FAILED:
            return 500
        return 400


DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.MISSING_FIELD: "Missing required fields: image, width, or height",
    ErrorKind.INVALID_DIMENSIONS: "Invalid dimensions. Width and height must be positive numbers.",
    ErrorKind.UNSUPPORTED_TYPE: "Invalid file type. Only JPG, PNG, and WebP files are allowed.",
    ErrorKind.PAYLOAD_TOO_LARGE: "File size too large. Maximum size is 10MB.",
    ErrorKind.PROCESSING_FAILED: "Failed to process image. Please try again.",
}


class ResizeError(Exception):
    """A request-terminating failure with an external kind and a safe message."""

    def __init__(self, kind: ErrorKind, message: str | None = None) -> None:
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def __repr__(self) -> str:
        return f"ResizeError({self.kind.value!r}, {self.message!r})"


# Internal failure types raised around the transform step.  Order matters:
# the first matching entry wins, so subclasses come before their bases.
TRANSFORM_FAILURES: tuple[tuple[type[BaseException], str], ...] = (
    (Image.DecompressionBombError, "image exceeds the decoder pixel limit"),
    (UnidentifiedImageError, "image data could not be identified"),
    (TimeoutError, "transform exceeded its deadline"),
    (MemoryError, "out of memory during transform"),
    (OSError, "image data is corrupt or truncated"),
    (ValueError, "image library rejected the input"),
)


def classify_error(exc: BaseException) -> ResizeError:
    """Map *exc* to the :class:`ResizeError` returned to the caller.

    Known library failures become ``ProcessingFailed``.  Anything not listed
    in :data:`TRANSFORM_FAILURES` is still reported as ``ProcessingFailed``
    but logged as unclassified so it can be given an entry.
    """
    if isinstance(exc, ResizeError):
        return exc

    for exc_type, reason in TRANSFORM_FAILURES:
        if isinstance(exc, exc_type):
            logger.error("Image transform failed (%s): %r", reason, exc, exc_info=exc)
            return ResizeError(ErrorKind.PROCESSING_FAILED)

    logger.error("Unclassified error during image transform: %r", exc, exc_info=exc)
    return ResizeError(ErrorKind.PROCESSING_FAILED)
