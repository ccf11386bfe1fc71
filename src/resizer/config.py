from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ──────────────────────────────────────────────
# Settings (from environment variables / .env)
# ──────────────────────────────────────────────
class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # CORS settings
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000"
    cors_allow_credentials: bool = True
    cors_allow_methods: str = "GET,POST,OPTIONS"
    cors_allow_headers: str = "*"

    # Upload settings
    max_upload_size: int = 10 * 1024 * 1024  # 10 MB
    allowed_mime_types: str = "image/jpeg,image/jpg,image/png,image/webp"

    # Resize settings
    jpeg_quality: int = Field(default=90, ge=0, le=100)
    max_dimension: int = Field(default=10_000, gt=0)
    transform_timeout: float | None = 30.0  # seconds, None disables

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def cors_methods_list(self) -> list[str]:
        """Parse CORS methods from comma-separated string."""
        if self.cors_allow_methods == "*":
            return ["*"]
        return [method.strip() for method in self.cors_allow_methods.split(",")]

    @property
    def cors_headers_list(self) -> list[str]:
        """Parse CORS headers from comma-separated string."""
        if self.cors_allow_headers == "*":
            return ["*"]
        return [header.strip() for header in self.cors_allow_headers.split(",")]

    @property
    def allowed_mime_types_set(self) -> set[str]:
        """Parse allowed MIME types from comma-separated string."""
        return {mime.strip().lower() for mime in self.allowed_mime_types.split(",") if mime.strip()}

    @property
    def max_upload_size_label(self) -> str:
        """Human readable upload ceiling, e.g. ``10MB``."""
        megabytes = self.max_upload_size / (1024 * 1024)
        if megabytes >= 1:
            return f"{megabytes:g}MB"
        return f"{self.max_upload_size / 1024:g}KB"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency – overridable in tests via ``app.dependency_overrides``."""
    return settings


# ──────────────────────────────────────────────
# Output encoding (fixed for every request)
# ──────────────────────────────────────────────
OUTPUT_FORMAT = "JPEG"
OUTPUT_MIME_TYPE = "image/jpeg"
OUTPUT_EXTENSION = ".jpg"
BACKGROUND_COLOR: tuple[int, int, int] = (255, 255, 255)
DEFAULT_FILENAME_STEM = "image"

# ──────────────────────────────────────────────
# Declared MIME type → Pillow decoder format
#   Decoding is restricted to these formats; the actual
#   format is sniffed from the bytes.
# ──────────────────────────────────────────────
DECODER_FORMATS: dict[str, str] = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}
