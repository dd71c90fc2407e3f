"""FastAPI application entrypoint for the gateway."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from wagateway.api import api_router
from wagateway.credentials import CredentialStore
from wagateway.engine import get_engine
from wagateway.log_config import configure_logging
from wagateway.manager import SessionManager
from wagateway.middleware import (
    http_exception_handler,
    request_logging_middleware,
    validation_exception_handler,
)
from wagateway.settings import settings
from wagateway.webhook import WebhookDispatcher

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.api_token = settings.token()
    engine = get_engine()
    manager = SessionManager(engine, CredentialStore(), WebhookDispatcher())
    app.state.manager = manager
    await manager.start()
    try:
        recovered = await manager.recover_all()
        logger.info(
            "Gateway started",
            sessions_dir=manager.credentials.root,
            recovering=len(recovered),
            webhook=bool(manager.dispatcher.url),
        )
        yield
    finally:
        await manager.shutdown()
        await engine.aclose()


app = FastAPI(lifespan=lifespan)

app.middleware("http")(request_logging_middleware)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

app.include_router(api_router)


def run() -> None:
    """Entry point for the wa-gateway console script."""
    uvicorn.run(
        "wagateway.main:app",
        host=settings.host(),
        port=settings.port(),
        reload=False,
    )


if __name__ == "__main__":
    run()
else:
    app.state.api_token = settings.token()
