# postflow/main.py
import os
import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from postflow.routers.post_router import router as post_router
from postflow.routers.credentials_router import router as credentials_router
from postflow.routers.health_router import router as health_router
from postflow.infrastructure.database import init_db, get_session
from postflow.infrastructure.locks import build_lock
from postflow.infrastructure.media import MediaStore, UPLOAD_DIR
from postflow.infrastructure.upload_post_client import UploadPostClient
from postflow.middleware.logging import RequestIdMiddleware
from postflow.platforms.registry import build_adapters
from postflow.services.reconciler import Reconciler
import structlog

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() in ("1", "true", "yes")


def configure_structlog():
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
    )


configure_structlog()
logger = structlog.get_logger()

os.makedirs(UPLOAD_DIR, exist_ok=True)

app = FastAPI(title="postflow")

app.add_middleware(RequestIdMiddleware)

app.include_router(health_router)
app.include_router(post_router)
app.include_router(credentials_router)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.on_event("startup")
async def on_startup():
    await init_db()
    media_store = MediaStore()
    app.state.publisher = UploadPostClient.from_env()
    app.state.adapters = build_adapters(media_store=media_store)
    app.state.locks = build_lock()
    app.state.reconciler = Reconciler(
        session_factory=get_session,
        adapters=app.state.adapters,
        locks=app.state.locks,
        publisher=app.state.publisher,
    )
    if SCHEDULER_ENABLED:
        app.state.reconciler.start()
    logger.info(
        "app_startup",
        provider_configured=app.state.publisher is not None,
        scheduler_enabled=SCHEDULER_ENABLED,
    )


@app.on_event("shutdown")
async def on_shutdown():
    reconciler = getattr(app.state, "reconciler", None)
    if reconciler is not None:
        await reconciler.stop()
    logger.info("app_shutdown")


if __name__ == "__main__":
    uvicorn.run("postflow.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=True)
