"""
Health check endpoint.

Always returns 200 OK while the process is up; upstream APIs are not probed.
"""

import time
from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    timestamp: int  # Unix epoch seconds
    platforms: List[str]


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    registry = getattr(request.app.state, "registry", None)
    return HealthResponse(
        status="healthy",
        timestamp=int(time.time()),
        platforms=registry.platforms if registry else [],
    )
