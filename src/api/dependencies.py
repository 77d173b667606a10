"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache

from config.settings import get_settings
from integrations.openai_realtime import RealtimeLink, build_realtime_link
from integrations.webhook import build_dispatcher
from relay.extraction import PostCallProcessor, TranscriptExtractor
from relay.registry import SessionRegistry


@lru_cache(maxsize=1)
def get_registry() -> SessionRegistry:
    return SessionRegistry()


@lru_cache(maxsize=1)
def _post_call_factory() -> PostCallProcessor:
    # Lazy import so importing the routes never requires the OpenAI SDK client.
    from llm.openai_client import OpenAIClient

    settings = get_settings()
    return PostCallProcessor(TranscriptExtractor(OpenAIClient()), build_dispatcher(settings))


def get_post_call_processor() -> PostCallProcessor:
    return _post_call_factory()


def get_realtime_link_factory() -> Callable[[], RealtimeLink]:
    settings = get_settings()
    return lambda: build_realtime_link(settings)
