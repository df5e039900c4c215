import time
import asyncio
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.errors import CoreError
from app.core.logging import request_id_ctx, setup_logging
from app.api.router import api_router
from app.modules.events.outbox import run_outbox_relay
from app.platform.provider_registry import registry


setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.STORE_PROVIDER == "postgres":
        from app.core.db import SessionLocal, init_models
        await init_models()
        app.state.outbox_task = asyncio.create_task(run_outbox_relay(registry.event_bus(), SessionLocal))
    logger.info(f"{settings.APP_NAME} started (store={settings.STORE_PROVIDER}, bus={settings.EVENT_BUS_PROVIDER})")
    yield
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await registry.change_hub().close()

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

# registered last so it runs first and the request log line carries the id
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id", "-")
    token = request_id_ctx.set(rid)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx.reset(token)
    response.headers["x-request-id"] = rid
    return response

@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError):
    logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"message": "An internal server error occurred."},
    )


app.include_router(api_router, prefix=settings.API_PREFIX)
