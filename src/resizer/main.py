"""Image Resizer – FastAPI application entry-point."""

from contextlib import asynccontextmanager
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from PIL import features
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from src.resizer.config import settings
from src.resizer.errors import ErrorKind, ResizeError
from src.resizer.router import health, resize

# Configure logging from settings
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Lifespan: report decoder support on startup
# ──────────────────────────────────────────────
@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    logger.info("🚀 Image resizer starting …")
    if not features.check("webp"):
        logger.warning("Pillow was built without WebP support; WebP uploads will fail.")
    logger.info(
        "Limits: max upload %s, max dimension %d px, JPEG quality %d.",
        settings.max_upload_size_label, settings.max_dimension, settings.jpeg_quality,
    )
    yield
    logger.info("🛑 Image resizer shutting down.")


# ──────────────────────────────────────────────
# Application factory
# ──────────────────────────────────────────────
app = FastAPI(
    title="Image Resizer API",
    description="Resize JPG, PNG and WebP images to exact dimensions and download them as JPEG.",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS middleware (configured from environment variables) ──
app.add_middleware(
    middleware_class=CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_methods_list,
    allow_headers=settings.cors_headers_list,
)

logger.info("CORS configured with origins: %s", settings.cors_origins_list)


# ──────────────────────────────────────────────
# Error responses – always {"error": "<message>"}
# ──────────────────────────────────────────────
@app.exception_handler(ResizeError)
async def resize_error_handler(request: Request, exc: ResizeError) -> JSONResponse:
    if exc.kind is not ErrorKind.PROCESSING_FAILED:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.kind.value)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# ── register routers ──
app.get('/')(lambda: {"message": "Welcome to the Image Resizer API! POST images to /api/resize; see /docs."})
app.include_router(health.router)
app.include_router(resize.router)
