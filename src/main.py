"""Entry point for the realtime call relay service."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from api.dependencies import get_post_call_processor
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from config.settings import get_settings
from relay.errors import ConfigError

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_settings().require_openai_api_key()
    post_call = get_post_call_processor()
    yield
    await post_call.drain()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Realtime Call Relay",
    description="Bridges Twilio Media Streams calls to the OpenAI Realtime API.",
    lifespan=lifespan,
)
app.include_router(api_router)
app.include_router(twilio_router)


def run() -> None:
    current = get_settings()
    try:
        current.require_openai_api_key()
    except ConfigError as exc:
        LOGGER.critical("%s", exc.detail)
        sys.exit(1)

    LOGGER.info("Server is listening on port %s", current.port)
    uvicorn.run(app, host=current.host, port=current.port, log_level=current.log_level.lower())


if __name__ == "__main__":
    run()
