"""Thread models shared by every platform adapter.

Post: one platform-neutral post (a Mastodon status or a Bluesky post).
Thread: the reconstructed single-author mainline around a seed post.
ThreadResult: a Thread plus the pagination state of the call that produced it.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict, Field

Platform = Literal["mastodon", "bluesky"]
AttachmentType = Literal["image", "video", "gifv", "audio", "unknown"]

ATTACHMENT_TYPES = ("image", "video", "gifv", "audio", "unknown")


class Account(BaseModel):
    """Author identity. `id` is the key for the same-author filter."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    acct: str
    display_name: str = ""
    url: str = ""


class PostCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    replies: int = Field(default=0, ge=0)
    boosts: int = Field(default=0, ge=0)
    favourites: int = Field(default=0, ge=0)


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    type: AttachmentType = "unknown"
    url: str = ""
    preview_url: Optional[str] = None
    description: str = ""


class LinkEmbed(BaseModel):
    """Preview card for an external link."""

    model_config = ConfigDict(frozen=True)

    id: str
    url: str
    title: str = ""
    description: str = ""
    site_name: str = ""
    image_url: Optional[str] = None


class Post(BaseModel):
    """A single post, normalized from either wire format.

    `content_html` is untrusted markup; sanitizing it is the caller's job.
    `in_reply_to_id` may point at a post that was never fetched.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Platform-scoped id (status id or AT URI)")
    url: str = Field(..., description="Web link to the post")
    created_at: str = Field(default="", description="ISO 8601 timestamp as sent by the platform")
    content_html: str = ""
    spoiler_text: str = ""
    sensitive: bool = False
    in_reply_to_id: Optional[str] = None
    counts: PostCounts = Field(default_factory=PostCounts)
    account: Account
    attachments: List[Attachment] = Field(default_factory=list)
    link_embeds: List[LinkEmbed] = Field(default_factory=list)

    @property
    def timestamp(self) -> float:
        """Epoch seconds of `created_at`; 0.0 when missing or unparseable."""
        return as_timestamp(self.created_at)


class Thread(BaseModel):
    """The mainline of one author's posts around a seed.

    Never mutated in place: continuation builds a new value with
    `model_copy(update=...)` whose `posts` only ever grows at the end.
    """

    model_config = ConfigDict(frozen=True)

    platform: Platform
    instance: str
    seed_post_id: str
    source_url: str
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    has_alternate_branches: bool = False
    posts: List[Post] = Field(default_factory=list)
    author: Account

    @property
    def tail(self) -> Optional[Post]:
        return self.posts[-1] if self.posts else None


class ThreadResult(BaseModel):
    """Outcome of fetch_thread / continue_thread.

    has_more: the caller should call continue_thread again (after
        rate_limited_until when that is set).
    added_count: posts gained by expansion during this call.
    rate_limited_until: UTC time the upstream asked us to wait until.
    """

    thread: Thread
    has_more: bool = False
    added_count: int = 0
    rate_limited_until: Optional[datetime] = None


def as_timestamp(value: Optional[str]) -> float:
    """Parse an ISO 8601 string to epoch seconds, 0.0 on failure.

    Naive timestamps are read as UTC.
    """
    if not value:
        return 0.0
    try:
        parsed = isoparse(value)
    except (ValueError, TypeError, OverflowError):
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()
