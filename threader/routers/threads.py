"""Threads Router - API endpoints for single-author thread reconstruction.

Thin HTTP adapter: picks a platform adapter, calls it, returns the result.
Thread errors are mapped to HTTP responses by the global exception handlers.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from threader.models.thread import Thread, ThreadResult
from threader.services.content_warning import ContentWarning, get_cw_presentation
from threader.services.platforms.registry import AdapterRegistry

router = APIRouter(prefix="/api/threads", tags=["threads"])


class FetchThreadRequest(BaseModel):
    url: str = Field(..., description="Mastodon status or bsky.app post URL")
    initial_context_requests: Optional[int] = Field(default=None, ge=1)
    max_parent_lookups: Optional[int] = Field(
        default=None, ge=1, description="Mastodon only: single-status ancestor lookups"
    )


class ContinueThreadRequest(BaseModel):
    thread: Thread
    max_context_requests: Optional[int] = Field(default=None, ge=1)


class ResolveRequest(BaseModel):
    url: str


class ResolveResponse(BaseModel):
    platform: str
    canonical_url: str


class ThreadResponse(ThreadResult):
    """ThreadResult plus how each post's content warning should be shown."""

    content_warnings: List[ContentWarning] = Field(default_factory=list)


def get_registry(request: Request) -> AdapterRegistry:
    return request.app.state.registry


def _respond(result: ThreadResult) -> ThreadResponse:
    return ThreadResponse(
        **dict(result),
        content_warnings=[
            get_cw_presentation(post, index) for index, post in enumerate(result.thread.posts)
        ],
    )


@router.post("/resolve", response_model=ResolveResponse)
async def resolve_url(data: ResolveRequest, registry: AdapterRegistry = Depends(get_registry)):
    """Report which platform handles a URL and its canonical form."""
    adapter = registry.get_adapter_for_url(data.url)
    if adapter is None:
        raise HTTPException(status_code=400, detail="Unsupported post URL")
    ref = adapter.parse_url(data.url)
    return ResolveResponse(platform=adapter.platform, canonical_url=ref.canonical_url)


@router.post("/fetch", response_model=ThreadResponse)
async def fetch_thread(data: FetchThreadRequest, registry: AdapterRegistry = Depends(get_registry)):
    """Fetch the thread around a seed post URL."""
    adapter = registry.get_adapter_for_url(data.url)
    if adapter is None:
        raise HTTPException(
            status_code=400,
            detail="That URL does not look like a supported Mastodon or Bluesky post.",
        )

    options: Dict[str, Any] = {"initial_context_requests": data.initial_context_requests}
    if data.max_parent_lookups and adapter.platform == "mastodon":
        options["max_parent_lookups"] = data.max_parent_lookups

    result = await adapter.fetch_thread(data.url, **options)
    return _respond(result)


@router.post("/continue", response_model=ThreadResponse)
async def continue_thread(
    data: ContinueThreadRequest, registry: AdapterRegistry = Depends(get_registry)
):
    """Extend a previously fetched thread past its tail.

    Callers must not run two continuations of the same thread concurrently.
    """
    adapter = registry.get_adapter_for_platform(data.thread.platform)
    if adapter is None:
        raise HTTPException(status_code=400, detail=f"Unknown platform: {data.thread.platform}")

    result = await adapter.continue_thread(
        data.thread, max_context_requests=data.max_context_requests
    )
    return _respond(result)
