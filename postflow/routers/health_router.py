# postflow/routers/health_router.py
from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request):
    reconciler = getattr(request.app.state, "reconciler", None)
    return {
        "status": "ok",
        "reconciler_running": bool(reconciler and reconciler.running),
        "provider_configured": getattr(request.app.state, "publisher", None) is not None,
    }
