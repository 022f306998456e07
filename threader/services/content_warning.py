"""Content-warning presentation for posts in a thread."""

from pydantic import BaseModel

from threader.models.thread import Post


class ContentWarning(BaseModel):
    has_content_warning: bool
    text: str
    starts_collapsed: bool


def get_cw_presentation(post: Post, index: int) -> ContentWarning:
    """Only the first post of a thread starts collapsed behind its warning."""
    spoiler = (post.spoiler_text or "").strip()
    return ContentWarning(
        has_content_warning=bool(spoiler),
        text=spoiler,
        starts_collapsed=bool(spoiler) and index == 0,
    )
