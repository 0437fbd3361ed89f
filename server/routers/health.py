"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app accept players?)
- /metrics - Room and player counts for monitoring
"""

import json
from datetime import datetime, timezone

from fastapi import APIRouter, Response

from logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_manager = None


def set_health_dependencies(room_manager=None):
    """Set dependencies for health checks."""
    global _room_manager
    _room_manager = room_manager


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app handle players?

    Returns 503 until the room manager has been wired up.
    """
    checks = {}
    ready = _room_manager is not None

    if ready:
        checks["rooms"] = {"status": "ok", "active": len(_room_manager.rooms)}
    else:
        checks["rooms"] = {"status": "not_configured"}

    return Response(
        content=json.dumps({
            "status": "ok" if ready else "unavailable",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=200 if ready else 503,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """Expose room metrics for dashboards and alerting."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _room_manager is not None:
        stats = _room_manager.stats()
        metrics_data.update({
            "active_rooms": stats["rooms"],
            "total_players": stats["players"],
            "games_in_progress": stats["by_phase"].get("playing", 0),
            "rooms_by_phase": stats["by_phase"],
        })

    return metrics_data
