"""Mastodon platform adapter - rebuilds an author's thread from status URLs.

Uses the public Mastodon API:
  GET /api/v1/statuses/{id}
  GET /api/v1/statuses/{id}/context
No authentication required for public statuses.
"""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from threader.config.settings import Settings, get_settings
from threader.models.thread import (
    ATTACHMENT_TYPES,
    Account,
    Attachment,
    LinkEmbed,
    Post,
    PostCounts,
    Thread,
    ThreadResult,
)
from threader.services.errors import FetchError, LinkageError, ParseError, RateLimitError
from threader.services.fetch_client import ResilientFetchClient
from threader.services.mainline import build_mainline, context_budget, extend_from_tail
from threader.services.platforms import PlatformAdapter, resume_time, site_name_from_url
from threader.utils.logging import get_logger

logger = get_logger(__name__, prefix="Mastodon")

_USER_STATUS_PATH = re.compile(r"/@[^/]+/\d+$")
_TRAILING_ID = re.compile(r"/(\d+)$")


@dataclass(frozen=True)
class MastodonStatusRef:
    instance: str
    status_id: str
    canonical_url: str


@dataclass
class _Expansion:
    """What one descendant-extension pass produced."""

    added: List[Post] = field(default_factory=list)
    has_alternate_branches: bool = False
    has_more: bool = False
    rate_limited_until: Optional[datetime] = None


def parse_status_url(url: str) -> MastodonStatusRef:
    """Parse https://instance/@user/123 (or .../statuses/123) into its parts."""
    try:
        parts = urlsplit(url.strip())
    except (ValueError, AttributeError) as e:
        raise ParseError(f"Invalid URL: {e}") from e

    if parts.scheme not in ("http", "https"):
        raise ParseError("URL must start with http:// or https://")

    host = parts.hostname
    path = parts.path.rstrip("/")
    looks_like_status = (
        "/@" in path or "/statuses/" in path or bool(_USER_STATUS_PATH.search(path))
    )
    if not host or not looks_like_status:
        raise ParseError("That URL does not look like a Mastodon status.")

    match = _TRAILING_ID.search(path)
    if not match:
        raise ParseError("Could not find a status id in that URL.")

    return MastodonStatusRef(
        instance=host,
        status_id=match.group(1),
        canonical_url=f"https://{host}{path}",
    )


def _count(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def _attachment(raw: Dict[str, Any]) -> Attachment:
    media_type = raw.get("type") or "unknown"
    return Attachment(
        id=str(raw.get("id") or ""),
        type=media_type if media_type in ATTACHMENT_TYPES else "unknown",
        url=raw.get("url") or "",
        preview_url=raw.get("preview_url") or None,
        description=raw.get("description") or "",
    )


def _link_embeds(raw: Dict[str, Any], status_id: str) -> List[LinkEmbed]:
    """Map a status preview card to a LinkEmbed, if it has anything to show."""
    card = raw.get("card")
    if not isinstance(card, dict) or not card.get("url"):
        return []

    title = card.get("title") or ""
    description = card.get("description") or ""
    image_url = card.get("image") or None
    if not title and not description and not image_url:
        return []

    url = str(card["url"])
    return [
        LinkEmbed(
            id=f"{status_id}-card",
            url=url,
            title=title,
            description=description,
            site_name=card.get("provider_name") or site_name_from_url(url),
            image_url=image_url,
        )
    ]


def normalize_status(raw: Dict[str, Any], instance: str) -> Post:
    """Transform a Mastodon Status JSON into a Post."""
    account = raw.get("account") or {}
    username = account.get("username") or "unknown"
    status_id = str(raw.get("id") or "")
    in_reply_to = raw.get("in_reply_to_id")

    return Post(
        id=status_id,
        url=raw.get("url") or f"https://{instance}/@{username}/{status_id}",
        created_at=raw.get("created_at") or "",
        content_html=raw.get("content") or "",
        spoiler_text=raw.get("spoiler_text") or "",
        sensitive=bool(raw.get("sensitive")),
        in_reply_to_id=str(in_reply_to) if in_reply_to else None,
        counts=PostCounts(
            replies=_count(raw.get("replies_count")),
            boosts=_count(raw.get("reblogs_count")),
            favourites=_count(raw.get("favourites_count")),
        ),
        account=Account(
            id=str(account.get("id") or ""),
            username=username,
            acct=account.get("acct") or username,
            display_name=account.get("display_name") or username,
            url=account.get("url") or f"https://{instance}/@{username}",
        ),
        attachments=[
            _attachment(item)
            for item in raw.get("media_attachments") or []
            if isinstance(item, dict)
        ],
        link_embeds=_link_embeds(raw, status_id),
    )


class MastodonAdapter(PlatformAdapter):
    """Rebuilds single-author threads from any Mastodon-compatible instance."""

    platform = "mastodon"

    def __init__(
        self,
        fetch_client: Optional[ResilientFetchClient] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        if fetch_client is None:
            fetch_client = ResilientFetchClient(
                "Mastodon",
                request_gap_ms=settings.MASTODON_REQUEST_GAP_MS,
                cache_ttl_seconds=settings.RESPONSE_CACHE_TTL_SECONDS,
                cache_max_entries=settings.RESPONSE_CACHE_MAX_ENTRIES,
                detail_keys=("error",),
                user_agent=settings.USER_AGENT,
                timeout=settings.HTTP_TIMEOUT,
            )
        super().__init__(fetch_client)
        self.default_context_requests = settings.DEFAULT_INITIAL_CONTEXT_REQUESTS
        self.default_continue_requests = settings.DEFAULT_MAX_CONTEXT_REQUESTS
        self.default_parent_lookups = settings.DEFAULT_MAX_PARENT_LOOKUPS

    def parse_url(self, url: str) -> MastodonStatusRef:
        return parse_status_url(url)

    @staticmethod
    def _status_url(instance: str, status_id: str) -> str:
        return f"https://{instance}/api/v1/statuses/{status_id}"

    async def fetch_thread(
        self,
        url: str,
        *,
        initial_context_requests: Optional[int] = None,
        max_parent_lookups: Optional[int] = None,
    ) -> ThreadResult:
        """Fetch the seed status, its context, and walk further up and down.

        Args:
            url: A status URL on any Mastodon-compatible instance.
            initial_context_requests: Hint for the descendant request budget.
            max_parent_lookups: How many single-status lookups to spend on
                ancestors the context window did not include.
        """
        ref = self.parse_url(url)
        base = self._status_url(ref.instance, ref.status_id)

        try:
            seed_raw, context_raw = await asyncio.gather(
                self.fetch_client.get_json(base),
                self.fetch_client.get_json(f"{base}/context"),
            )
        except RateLimitError:
            raise
        except FetchError as e:
            if e.status in (400, 404):
                raise LinkageError(
                    f"Could not find status {ref.status_id} on {ref.instance}."
                ) from e
            raise
        if not isinstance(seed_raw, dict) or not seed_raw.get("id"):
            raise LinkageError(f"Could not load status {ref.status_id} from {ref.instance}.")

        seed = normalize_status(seed_raw, ref.instance)
        author_id = seed.account.id
        context = context_raw if isinstance(context_raw, dict) else {}

        built = build_mainline(
            seed,
            self._same_author(context.get("ancestors"), ref.instance, author_id),
            self._same_author(context.get("descendants"), ref.instance, author_id),
        )
        posts = list(built.posts)

        lookups = max_parent_lookups or self.default_parent_lookups
        parents, rate_limited_until = await self._extend_ancestors(
            posts[0], {post.id for post in posts}, ref.instance, author_id, lookups
        )
        posts = parents + posts

        if rate_limited_until is not None:
            growth = _Expansion(has_more=True, rate_limited_until=rate_limited_until)
        else:
            budget = context_budget(initial_context_requests, self.default_context_requests)
            growth = await self._extend_descendants(posts, ref.instance, author_id, budget)

        thread = Thread(
            platform="mastodon",
            instance=ref.instance,
            seed_post_id=seed.id,
            source_url=ref.canonical_url,
            has_alternate_branches=built.has_alternate_branches or growth.has_alternate_branches,
            posts=posts + growth.added,
            author=seed.account,
        )
        logger.info(
            f"Fetched thread {ref.instance}/{seed.id}: {len(thread.posts)} posts "
            f"({len(parents)} extra ancestors, {len(growth.added)} extra descendants)"
        )
        return ThreadResult(
            thread=thread,
            has_more=growth.has_more,
            added_count=len(parents) + len(growth.added),
            rate_limited_until=growth.rate_limited_until,
        )

    async def continue_thread(
        self, thread: Thread, *, max_context_requests: Optional[int] = None
    ) -> ThreadResult:
        """Extend `thread` below its tail using further context queries."""
        self.ensure_continuable(thread)
        if thread.tail is None:
            return ThreadResult(thread=thread, has_more=False)

        budget = context_budget(max_context_requests, self.default_continue_requests)
        growth = await self._extend_descendants(
            thread.posts, thread.instance, thread.author.id, budget
        )

        next_thread = thread
        if growth.added or (growth.has_alternate_branches and not thread.has_alternate_branches):
            next_thread = thread.model_copy(
                update={
                    "posts": thread.posts + growth.added,
                    "has_alternate_branches": thread.has_alternate_branches
                    or growth.has_alternate_branches,
                    "fetched_at": datetime.now(timezone.utc),
                }
            )
        return ThreadResult(
            thread=next_thread,
            has_more=growth.has_more,
            added_count=len(growth.added),
            rate_limited_until=growth.rate_limited_until,
        )

    def _same_author(self, statuses: Any, instance: str, author_id: str) -> List[Post]:
        posts: List[Post] = []
        for raw in statuses or []:
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            post = normalize_status(raw, instance)
            if post.account.id == author_id:
                posts.append(post)
        return posts

    async def _extend_ancestors(
        self,
        head: Post,
        known_ids: Set[str],
        instance: str,
        author_id: str,
        max_lookups: int,
    ) -> Tuple[List[Post], Optional[datetime]]:
        """Walk up past the context window one status at a time.

        Stops quietly on a foreign-author parent or a failed lookup.
        Returns the new ancestors (oldest first) and a resume time if the
        walk was cut short by rate limiting.
        """
        found: List[Post] = []
        cursor = head
        rate_limited_until = None

        for _ in range(max(0, max_lookups)):
            parent_id = cursor.in_reply_to_id
            if not parent_id or parent_id in known_ids:
                break
            try:
                raw = await self.fetch_client.get_json(self._status_url(instance, parent_id))
            except RateLimitError as e:
                logger.info(f"Ancestor lookup for {parent_id} rate limited")
                rate_limited_until = resume_time(e.retry_after_ms)
                break
            except FetchError as e:
                logger.info(f"Stopped ancestor lookup at {parent_id}: {e}")
                break

            if not isinstance(raw, dict) or not raw.get("id"):
                break
            parent = normalize_status(raw, instance)
            if parent.account.id != author_id:
                break
            found.append(parent)
            known_ids.add(parent.id)
            cursor = parent

        found.reverse()
        return found, rate_limited_until

    async def _extend_descendants(
        self, posts: List[Post], instance: str, author_id: str, budget: int
    ) -> _Expansion:
        """Query the tail's context repeatedly, appending the earliest child chain."""
        growth = _Expansion()
        seen = {post.id for post in posts}
        tail = posts[-1]

        for _ in range(budget):
            try:
                context = await self.fetch_client.get_json(
                    f"{self._status_url(instance, tail.id)}/context"
                )
            except RateLimitError as e:
                logger.info(f"Descendant walk rate limited at {tail.id}")
                growth.has_more = True
                growth.rate_limited_until = resume_time(e.retry_after_ms)
                return growth
            except FetchError as e:
                logger.warning(f"Stopped descendant walk at {tail.id}: {e}")
                growth.has_more = False
                return growth

            descendants = context.get("descendants") if isinstance(context, dict) else None
            step = extend_from_tail(tail, self._same_author(descendants, instance, author_id), seen)
            growth.has_alternate_branches = (
                growth.has_alternate_branches or step.has_alternate_branches
            )
            if not step.posts:
                growth.has_more = False
                return growth

            growth.added.extend(step.posts)
            seen.update(post.id for post in step.posts)
            tail = step.posts[-1]

        growth.has_more = True
        return growth
