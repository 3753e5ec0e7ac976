import time
import asyncio
import logging
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from fastapi import FastAPI, Request
from consentgate.core.config import settings
from consentgate.core.logging import setup_logging, request_id_ctx
from consentgate.core.errors import register_exception_handlers
from consentgate.core.db import init_models, SessionLocal
from consentgate.api.router import api_router
from consentgate.modules.events.outbox import run_outbox_relay
from consentgate.modules.authorizations.sweeper import run_expiry_sweeper
from consentgate.platform.provider_registry import registry

setup_logging()
app = FastAPI(title=settings.APP_NAME)
register_exception_handlers(app)

logger = logging.getLogger(__name__)

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id", "-")
    token = request_id_ctx.set(rid)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx.reset(token)
    if rid != "-":
        response.headers["x-request-id"] = rid
    return response

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

@app.on_event("startup")
async def on_startup():
    await init_models()
    tasks = []
    if settings.OUTBOX_RELAY_ENABLED:
        tasks.append(asyncio.create_task(run_outbox_relay(SessionLocal)))
    if settings.GRANT_SWEEP_ENABLED:
        tasks.append(asyncio.create_task(run_expiry_sweeper(SessionLocal, settings.GRANT_SWEEP_INTERVAL_SECONDS)))
    app.state.background_tasks = tasks

@app.on_event("shutdown")
async def on_shutdown():
    for task in getattr(app.state, "background_tasks", []):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await registry.close()

app.include_router(api_router, prefix=settings.API_PREFIX)
