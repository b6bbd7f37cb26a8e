"""FastAPI application for twist-gcp-thread-bridge."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from src.bridge import Bridge
from src.config import settings
from src.database import init_db, close_db
from src.routes.dead_letters import router as dead_letters_router
from src.routes.twist import router as twist_router
from src.routes.webhooks import router as webhooks_router

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("twist-gcp-thread-bridge starting up")
    await init_db()
    bridge = Bridge()
    bridge.start()
    app.state.bridge = bridge
    yield
    logger.info("twist-gcp-thread-bridge shutting down")
    await bridge.close()
    await close_db()


app = FastAPI(
    title="Twist GCP Thread Bridge",
    description="Relays GCP Monitoring notification-channel webhooks into Twist threads",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(webhooks_router, prefix=settings.api_prefix)
app.include_router(twist_router, prefix=settings.api_prefix)
app.include_router(dead_letters_router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "twist-gcp-thread-bridge"}


@app.get("/ready", response_class=PlainTextResponse)
async def ready(request: Request) -> str:
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None or bridge.pipeline.closing:
        raise HTTPException(status_code=503, detail="not ready")
    return "OK"
