from pydantic import BaseModel, ConfigDict, Field


class ResizeRequest(BaseModel):
    """Validated input for one resize, built from the multipart form."""
    model_config = ConfigDict(frozen=True)

    image_bytes: bytes = Field(repr=False)
    declared_mime_type: str
    original_filename: str
    target_width: int = Field(gt=0)
    target_height: int = Field(gt=0)


class ResizedImage(BaseModel):
    """Successful resize result."""
    output_bytes: bytes = Field(repr=False)
    output_mime_type: str
    suggested_filename: str
    source_format: str | None = None
    source_size: tuple[int, int] | None = None
