"""
Fakes and payload factories shared by the test suite.

- FakeUpstream: an httpx.MockTransport-backed stand-in for Mastodon/Bluesky
- FakeClock: deterministic clock + sleep for throttle and cache tests
- Post / status / thread-view builders
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx

from threader.models.thread import Account, Post
from threader.services.platforms.bluesky import THREAD_VIEW_POST

MASTODON_HOST = "mastodon.example"
ALICE_ID = "100"
ALICE_DID = "did:plc:alice"
ALICE_HANDLE = "alice.bsky.social"


# =============================================================================
# Fakes
# =============================================================================


def _route_key(url: httpx.URL) -> Tuple[str, str, Tuple[Tuple[str, str], ...]]:
    return (url.host, url.path, tuple(sorted(url.params.multi_items())))


class FakeUpstream:
    """Serves canned JSON per (host, path, query) and records every request."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple, Tuple[int, Any, Dict[str, str]]] = {}
        self.calls: List[str] = []

    def add(
        self,
        url: str,
        json: Any = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        key = _route_key(httpx.URL(url, params=params))
        self.routes[key] = (status, json, headers or {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        route = self.routes.get(_route_key(request.url))
        if route is None:
            return httpx.Response(404, json={"error": "Record not found"})
        status, body, headers = route
        return httpx.Response(status, json=body, headers=headers)

    def count(self, fragment: str) -> int:
        return sum(1 for call in self.calls if fragment in call)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeClock:
    """Monotonic clock whose sleep() advances time instead of waiting."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Factories
# =============================================================================


def make_post(
    post_id: str,
    parent: Optional[str] = None,
    created_at: str = "2024-01-01T00:00:00Z",
    author: str = ALICE_ID,
) -> Post:
    return Post(
        id=post_id,
        url=f"https://{MASTODON_HOST}/@alice/{post_id}",
        created_at=created_at,
        in_reply_to_id=parent,
        account=Account(id=author, username="alice", acct="alice"),
    )


def make_status(
    status_id: str,
    parent: Optional[str] = None,
    created_at: str = "2024-01-01T00:00:00.000Z",
    author: str = ALICE_ID,
    **extra: Any,
) -> Dict[str, Any]:
    username = "alice" if author == ALICE_ID else f"user{author}"
    status = {
        "id": status_id,
        "url": f"https://{MASTODON_HOST}/@{username}/{status_id}",
        "created_at": created_at,
        "content": f"<p>status {status_id}</p>",
        "spoiler_text": "",
        "sensitive": False,
        "in_reply_to_id": parent,
        "replies_count": 1,
        "reblogs_count": 0,
        "favourites_count": 2,
        "media_attachments": [],
        "card": None,
        "account": {
            "id": author,
            "username": username,
            "acct": username,
            "display_name": username.title(),
            "url": f"https://{MASTODON_HOST}/@{username}",
        },
    }
    status.update(extra)
    return status


def at_uri(rkey: str, did: str = ALICE_DID) -> str:
    return f"at://{did}/app.bsky.feed.post/{rkey}"


def make_post_view(
    rkey: str,
    parent_uri: Optional[str] = None,
    created_at: str = "2024-01-01T00:00:00.000Z",
    did: str = ALICE_DID,
    handle: str = ALICE_HANDLE,
    text: str = "",
    **extra: Any,
) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "$type": "app.bsky.feed.post",
        "text": text or f"post {rkey}",
        "createdAt": created_at,
    }
    if parent_uri:
        record["reply"] = {
            "parent": {"uri": parent_uri, "cid": "bafyparent"},
            "root": {"uri": parent_uri, "cid": "bafyroot"},
        }
    view = {
        "uri": at_uri(rkey, did),
        "cid": f"bafy{rkey}",
        "author": {"did": did, "handle": handle, "displayName": handle.split(".")[0].title()},
        "record": record,
        "replyCount": 0,
        "repostCount": 1,
        "likeCount": 3,
        "indexedAt": created_at,
    }
    view.update(extra)
    return view


def make_node(
    post: Dict[str, Any],
    parent: Optional[Dict[str, Any]] = None,
    replies: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    node: Dict[str, Any] = {"$type": THREAD_VIEW_POST, "post": post}
    if parent is not None:
        node["parent"] = parent
    if replies is not None:
        node["replies"] = replies
    return node
