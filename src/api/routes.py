"""Service-level HTTP routes."""

from __future__ import annotations

from fastapi import APIRouter

from api.schemas import StatusResponse

router = APIRouter()


@router.get("/", response_model=StatusResponse)
async def root_status() -> StatusResponse:
    return StatusResponse()
