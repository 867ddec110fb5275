"""
Visitor Pass Service

Residents issue time-bound visitor passes over WhatsApp, visitors check in
by sending their code, and facility staff oversee passes through /api/v1.
"""
from dotenv import load_dotenv
load_dotenv()  # settings below read the environment at import time

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request

from visitor_pass.api.v1 import passes
from visitor_pass.config import settings
from visitor_pass.conversation.webhook_handler import webhook_handler
from visitor_pass.infrastructure.database import init_db
from visitor_pass.infrastructure.whatsapp import evolution_client

SERVICE_VERSION = "0.1.0"

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ]
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("service_starting", service=settings.service_name, port=settings.port)
    await init_db()
    yield
    logger.info("service_stopped", service=settings.service_name)


app = FastAPI(
    title="Visitor Pass Service",
    description="Time-bound visitor passes issued by residents over WhatsApp",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.include_router(passes.router, prefix="/api/v1/passes", tags=["passes"])


async def _whatsapp_link_state() -> dict:
    try:
        state = await evolution_client.get_instance_status()
    except Exception as e:
        logger.warning("whatsapp_gateway_unreachable", error=str(e))
        return {"evolution_api": "disconnected", "evolution_error": str(e)}
    return {"evolution_api": state.get("state", "connected"), "evolution_error": None}


@app.get("/health")
async def health_check():
    """Liveness only; a down WhatsApp gateway is reported, not fatal."""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "evolution_instance": settings.evolution_instance,
        **await _whatsapp_link_state(),
    }


@app.post("/webhook")
async def evolution_webhook(request: Request):
    """Inbound events from the Evolution API instance (messages.upsert and friends)."""
    try:
        body = await request.json()
    except ValueError as e:
        logger.error("webhook_body_not_json", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")

    logger.debug("webhook_event", event_type=body.get("event"))
    await webhook_handler.process_message(body)
    return {"status": "ok"}


@app.get("/")
async def root():
    return {
        "service": "Visitor Pass Service",
        "version": SERVICE_VERSION,
        "instance": settings.evolution_instance,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "visitor_pass.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )
