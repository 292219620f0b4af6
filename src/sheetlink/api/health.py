"""Health check endpoint.

Learn: Reports server version plus live counters for the three pieces of
process state: job table, sheet cache and WebSocket subscriptions.
"""

from fastapi import APIRouter, Depends

from sheetlink import __version__
from sheetlink.api.deps import get_services
from sheetlink.services.container import Services

router = APIRouter()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Check server health and report queue/cache/subscription counters."""
    checks = {"server": "ok", "version": __version__}

    try:
        jobs = await services.jobs.stats()
        checks["jobs"] = "ok" if services.jobs.running else "stopped"
    except Exception as e:
        jobs = {}
        checks["jobs"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {
        "status": status,
        **checks,
        "queue": jobs,
        "cache": services.cache.stats(),
        "subscriptions": {
            "channels": len(services.broadcaster.channels()),
            "connections": services.broadcaster.total_subscribers(),
        },
    }
