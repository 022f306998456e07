"""Bluesky embed views -> attachments and link previews.

Embed views form a small tagged union keyed by `$type`:
  images            one attachment per image
  video             one attachment (gifv when presented as one)
  external          a link preview card
  recordWithMedia   a quote post wrapping one of the media kinds above

recordWithMedia is unwrapped with a worklist rather than recursion.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from threader.models.thread import Attachment, LinkEmbed
from threader.services.platforms import site_name_from_url

IMAGES_VIEW = "app.bsky.embed.images#view"
VIDEO_VIEW = "app.bsky.embed.video#view"
EXTERNAL_VIEW = "app.bsky.embed.external#view"
RECORD_WITH_MEDIA_VIEW = "app.bsky.embed.recordWithMedia#view"


@dataclass(frozen=True)
class ImagesEmbed:
    images: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class VideoEmbed:
    playlist: str = ""
    thumbnail: Optional[str] = None
    presentation: str = ""
    alt: str = ""


@dataclass(frozen=True)
class ExternalEmbed:
    uri: str = ""
    title: str = ""
    description: str = ""
    thumb: Optional[str] = None


@dataclass(frozen=True)
class RecordWithMediaEmbed:
    media: Any = None


Embed = Union[ImagesEmbed, VideoEmbed, ExternalEmbed, RecordWithMediaEmbed]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def parse_embed(raw: Any) -> Optional[Embed]:
    """Classify one embed view; None for kinds that carry no media or link."""
    if not isinstance(raw, dict):
        return None

    embed_type = raw.get("$type")
    if embed_type == IMAGES_VIEW:
        images = raw.get("images")
        return ImagesEmbed(
            images=[image for image in images if isinstance(image, dict)]
            if isinstance(images, list)
            else []
        )
    if embed_type == VIDEO_VIEW:
        return VideoEmbed(
            playlist=_text(raw.get("playlist")),
            thumbnail=_text(raw.get("thumbnail")) or None,
            presentation=_text(raw.get("presentation")),
            alt=_text(raw.get("alt")),
        )
    if embed_type == EXTERNAL_VIEW:
        external = raw.get("external") if isinstance(raw.get("external"), dict) else {}
        return ExternalEmbed(
            uri=_text(external.get("uri")),
            title=_text(external.get("title")),
            description=_text(external.get("description")),
            thumb=_text(external.get("thumb")) or None,
        )
    if embed_type == RECORD_WITH_MEDIA_VIEW:
        return RecordWithMediaEmbed(media=raw.get("media"))
    return None


def iter_embeds(raw: Any) -> Iterator[Embed]:
    """Yield every media/link embed reachable from `raw`, outermost first."""
    pending = [raw]
    while pending:
        embed = parse_embed(pending.pop())
        if embed is None:
            continue
        if isinstance(embed, RecordWithMediaEmbed):
            pending.append(embed.media)
            continue
        yield embed


def attachments_from_embed(raw: Any, post_id: str) -> List[Attachment]:
    attachments: List[Attachment] = []
    for embed in iter_embeds(raw):
        if isinstance(embed, ImagesEmbed):
            for number, image in enumerate(embed.images, start=1):
                full = _text(image.get("fullsize"))
                thumb = _text(image.get("thumb"))
                if not full and not thumb:
                    continue
                attachments.append(
                    Attachment(
                        id=f"{post_id}-img-{number}",
                        type="image",
                        url=full or thumb,
                        preview_url=thumb or full or None,
                        description=_text(image.get("alt")),
                    )
                )
        elif isinstance(embed, VideoEmbed):
            if not embed.playlist and not embed.thumbnail:
                continue
            attachments.append(
                Attachment(
                    id=f"{post_id}-video",
                    type="gifv" if embed.presentation == "gifv" else "video",
                    url=embed.playlist,
                    preview_url=embed.thumbnail,
                    description=embed.alt,
                )
            )
    return attachments


def link_embeds_from_embed(raw: Any, post_id: str) -> List[LinkEmbed]:
    links: List[LinkEmbed] = []
    for embed in iter_embeds(raw):
        if not isinstance(embed, ExternalEmbed) or not embed.uri:
            continue
        # A bare link with no card data is already in the post text.
        if not embed.title and not embed.description and not embed.thumb:
            continue
        links.append(
            LinkEmbed(
                id=f"{post_id}-external",
                url=embed.uri,
                title=embed.title,
                description=embed.description,
                site_name=site_name_from_url(embed.uri),
                image_url=embed.thumb,
            )
        )
    return links
