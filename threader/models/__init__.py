"""Data models"""

from .thread import (
    Account,
    Attachment,
    LinkEmbed,
    Post,
    PostCounts,
    Thread,
    ThreadResult,
    as_timestamp,
)

__all__ = [
    "Account",
    "Attachment",
    "LinkEmbed",
    "Post",
    "PostCounts",
    "Thread",
    "ThreadResult",
    "as_timestamp",
]
