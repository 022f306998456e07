"""Bluesky / AT Protocol platform adapter.

Unauthenticated reads through the public AppView:
  GET https://public.api.bsky.app/xrpc/app.bsky.actor.getProfile?actor={handle}
  GET https://public.api.bsky.app/xrpc/app.bsky.feed.getPostThread
      ?uri=at://{did}/app.bsky.feed.post/{rkey}&depth={n}&parentHeight={n}

getPostThread returns a nested threadViewPost tree (parent chain above the
anchor, reply branches below it). The tree is flattened, filtered to the
seed's author and handed to the mainline builder; continuation re-anchors the
query at the current tail.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlsplit

from threader.config.settings import Settings, get_settings
from threader.models.thread import Account, Post, PostCounts, Thread, ThreadResult
from threader.services.errors import FetchError, LinkageError, ParseError, RateLimitError
from threader.services.fetch_client import ResilientFetchClient
from threader.services.mainline import (
    build_mainline,
    context_budget,
    extend_from_tail,
    mainline_sort_key,
)
from threader.services.platforms import PlatformAdapter, resume_time
from threader.services.platforms.bluesky_embeds import (
    attachments_from_embed,
    link_embeds_from_embed,
)
from threader.services.platforms.bluesky_richtext import rich_text_to_html
from threader.utils.logging import get_logger

logger = get_logger(__name__, prefix="Bluesky")

WEB_HOSTS = ("bsky.app", "www.bsky.app")
THREAD_VIEW_POST = "app.bsky.feed.defs#threadViewPost"
POST_COLLECTION = "app.bsky.feed.post"
GET_PROFILE = "app.bsky.actor.getProfile"
GET_POST_THREAD = "app.bsky.feed.getPostThread"

_POST_PATH = re.compile(r"^/profile/([^/]+)/post/([^/?#]+)")


@dataclass(frozen=True)
class BlueskyPostRef:
    actor: str
    rkey: str
    canonical_url: str


def parse_post_url(url: str) -> BlueskyPostRef:
    """Parse https://bsky.app/profile/{actor}/post/{rkey}."""
    try:
        parts = urlsplit(url.strip())
    except (ValueError, AttributeError) as e:
        raise ParseError(f"Invalid URL: {e}") from e

    if parts.scheme not in ("http", "https"):
        raise ParseError("URL must start with http:// or https://")
    if parts.hostname not in WEB_HOSTS:
        raise ParseError("That URL does not look like a Bluesky post.")

    match = _POST_PATH.match(parts.path)
    if not match:
        raise ParseError("Could not find actor and post id in that Bluesky URL.")

    actor = unquote(match.group(1))
    rkey = unquote(match.group(2))
    return BlueskyPostRef(
        actor=actor,
        rkey=rkey,
        canonical_url=f"https://bsky.app/profile/{actor}/post/{rkey}",
    )


def rkey_from_uri(uri: str) -> str:
    """Last path segment of an AT URI (at://did/collection/rkey)."""
    return str(uri or "").rstrip("/").split("/")[-1]


def post_web_url(uri: str, actor: str) -> str:
    return f"https://bsky.app/profile/{actor}/post/{rkey_from_uri(uri)}"


def _count(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def normalize_post(raw: Dict[str, Any]) -> Post:
    """Transform a Bluesky PostView JSON into a Post."""
    author = raw.get("author") or {}
    record = raw.get("record") if isinstance(raw.get("record"), dict) else {}
    handle = author.get("handle") or author.get("did") or "unknown.bsky.social"
    uri = str(raw.get("uri") or "")

    reply = record.get("reply") if isinstance(record.get("reply"), dict) else {}
    parent = reply.get("parent") if isinstance(reply.get("parent"), dict) else {}

    return Post(
        id=uri,
        url=post_web_url(uri, handle),
        created_at=record.get("createdAt") or raw.get("indexedAt") or "",
        content_html=rich_text_to_html(record),
        in_reply_to_id=parent.get("uri") or None,
        counts=PostCounts(
            replies=_count(raw.get("replyCount")),
            boosts=_count(raw.get("repostCount")),
            favourites=_count(raw.get("likeCount")),
        ),
        account=Account(
            id=str(author.get("did") or ""),
            username=handle,
            acct=handle,
            display_name=author.get("displayName") or handle,
            url=f"https://bsky.app/profile/{handle}",
        ),
        attachments=attachments_from_embed(raw.get("embed"), uri),
        link_embeds=link_embeds_from_embed(raw.get("embed"), uri),
    )


def collect_thread_posts(root: Any) -> Dict[str, Dict[str, Any]]:
    """Flatten a threadViewPost tree into {uri: PostView}, first sighting wins.

    Visits each node, then its parent chain, then its replies. Nodes of any
    other type (notFoundPost, blockedPost) are skipped with their subtrees.
    """
    by_uri: Dict[str, Dict[str, Any]] = {}
    pending = [root]
    while pending:
        node = pending.pop()
        if not isinstance(node, dict) or node.get("$type") != THREAD_VIEW_POST:
            continue

        post = node.get("post")
        if isinstance(post, dict) and post.get("uri") and post["uri"] not in by_uri:
            by_uri[post["uri"]] = post

        replies = node.get("replies")
        if isinstance(replies, list):
            pending.extend(reversed(replies))
        if node.get("parent"):
            pending.append(node["parent"])
    return by_uri


class BlueskyAdapter(PlatformAdapter):
    """Rebuilds single-author threads from bsky.app post links."""

    platform = "bluesky"

    def __init__(
        self,
        fetch_client: Optional[ResilientFetchClient] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        if fetch_client is None:
            fetch_client = ResilientFetchClient(
                "Bluesky",
                request_gap_ms=settings.BLUESKY_REQUEST_GAP_MS,
                cache_ttl_seconds=settings.RESPONSE_CACHE_TTL_SECONDS,
                cache_max_entries=settings.RESPONSE_CACHE_MAX_ENTRIES,
                detail_keys=("message", "error"),
                user_agent=settings.USER_AGENT,
                timeout=settings.HTTP_TIMEOUT,
            )
        super().__init__(fetch_client)

        appview = settings.BLUESKY_APPVIEW_URL.rstrip("/")
        self.xrpc_base = f"{appview}/xrpc"
        self.instance = urlsplit(appview).hostname or "public.api.bsky.app"
        self.default_context_requests = settings.DEFAULT_INITIAL_CONTEXT_REQUESTS
        self.default_continue_requests = settings.DEFAULT_MAX_CONTEXT_REQUESTS

    def parse_url(self, url: str) -> BlueskyPostRef:
        return parse_post_url(url)

    async def _xrpc(self, method: str, params: Dict[str, Any]) -> Any:
        return await self.fetch_client.get_json(f"{self.xrpc_base}/{method}", params)

    async def _resolve_did(self, actor: str) -> str:
        try:
            profile = await self._xrpc(GET_PROFILE, {"actor": actor})
        except RateLimitError:
            raise
        except FetchError as e:
            if e.status in (400, 404):
                raise LinkageError(f"Could not resolve Bluesky profile {actor!r}: {e}") from e
            raise

        did = profile.get("did") if isinstance(profile, dict) else None
        if not did:
            raise LinkageError("Could not resolve Bluesky profile DID for that URL.")
        return str(did)

    async def fetch_thread(
        self, url: str, *, initial_context_requests: Optional[int] = None
    ) -> ThreadResult:
        """Resolve the author, load the thread view around the seed, build the mainline."""
        ref = self.parse_url(url)
        did = await self._resolve_did(ref.actor)

        seed_uri = f"at://{did}/{POST_COLLECTION}/{ref.rkey}"
        depth = context_budget(initial_context_requests, self.default_context_requests)
        try:
            response = await self._xrpc(
                GET_POST_THREAD, {"uri": seed_uri, "depth": depth, "parentHeight": depth}
            )
        except RateLimitError:
            raise
        except FetchError as e:
            if e.status in (400, 404):
                raise LinkageError(f"Could not load that Bluesky thread: {e}") from e
            raise

        root = response.get("thread") if isinstance(response, dict) else None
        if not isinstance(root, dict) or root.get("$type") != THREAD_VIEW_POST:
            raise LinkageError("Could not load that Bluesky thread.")

        by_uri = collect_thread_posts(root)
        seed_raw = by_uri.get(seed_uri) or root.get("post")
        if not isinstance(seed_raw, dict) or not seed_raw.get("uri"):
            raise LinkageError("Could not locate the seed post in that Bluesky thread.")

        seed = normalize_post(seed_raw)
        author_id = seed.account.id

        same_author: Dict[str, Post] = {}
        for raw in by_uri.values():
            post = normalize_post(raw)
            if post.account.id == author_id and post.id != seed.id:
                same_author[post.id] = post

        built = build_mainline(
            seed, [], sorted(same_author.values(), key=mainline_sort_key)
        )
        thread = Thread(
            platform="bluesky",
            instance=self.instance,
            seed_post_id=seed.id,
            source_url=ref.canonical_url,
            has_alternate_branches=built.has_alternate_branches,
            posts=built.posts,
            author=seed.account,
        )
        logger.info(
            f"Fetched thread {seed.id}: {len(thread.posts)} posts "
            f"from {len(by_uri)} in view"
        )
        return ThreadResult(thread=thread, has_more=True, added_count=0)

    async def continue_thread(
        self, thread: Thread, *, max_context_requests: Optional[int] = None
    ) -> ThreadResult:
        """Re-query the thread view at the tail and append the author's next posts."""
        self.ensure_continuable(thread)
        tail = thread.tail
        if tail is None:
            return ThreadResult(thread=thread, has_more=False)

        depth = context_budget(max_context_requests, self.default_continue_requests)
        try:
            response = await self._xrpc(
                GET_POST_THREAD, {"uri": tail.id, "depth": depth, "parentHeight": 0}
            )
        except RateLimitError as e:
            logger.info(f"Continuation of {thread.seed_post_id} rate limited")
            return ThreadResult(
                thread=thread,
                has_more=True,
                rate_limited_until=resume_time(e.retry_after_ms),
            )
        except FetchError as e:
            logger.warning(f"Continuation of {thread.seed_post_id} stopped: {e}")
            return ThreadResult(thread=thread, has_more=False)

        root = response.get("thread") if isinstance(response, dict) else None
        if not isinstance(root, dict) or root.get("$type") != THREAD_VIEW_POST:
            return ThreadResult(thread=thread, has_more=False)

        candidates = [
            post
            for post in (normalize_post(raw) for raw in collect_thread_posts(root).values())
            if post.account.id == thread.author.id
        ]
        candidates.sort(key=mainline_sort_key)
        step = extend_from_tail(tail, candidates, {post.id for post in thread.posts})

        next_thread = thread
        if step.posts or (step.has_alternate_branches and not thread.has_alternate_branches):
            next_thread = thread.model_copy(
                update={
                    "posts": thread.posts + step.posts,
                    "has_alternate_branches": thread.has_alternate_branches
                    or step.has_alternate_branches,
                    "fetched_at": datetime.now(timezone.utc),
                }
            )
        return ThreadResult(
            thread=next_thread,
            has_more=bool(step.posts),
            added_count=len(step.posts),
        )
