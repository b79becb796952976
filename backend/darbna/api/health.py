"""Health check endpoint."""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request) -> dict:
    """Return API health status."""
    sweeper = getattr(request.app.state, "sweeper", None)
    return {"status": "ok", "sweeper": "running" if sweeper and sweeper.running else "stopped"}
