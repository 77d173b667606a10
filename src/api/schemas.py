"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel

SERVER_RUNNING_MESSAGE = "Twilio Media Stream Server is running!"


class StatusResponse(BaseModel):
    message: str = SERVER_RUNNING_MESSAGE
