"""Router – liveness probe."""

from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health() -> dict[str, str]:
    """Liveness / readiness probe; the service holds no state to check."""
    return {"status": "ok"}
