"""Mainline builder - picks one linear path through a branching reply tree.

Both platform adapters feed their normalized, same-author posts through here.
Children of a parent are ordered by (created_at, id); the first child is the
mainline continuation and any siblings only raise `has_alternate_branches`.
"""

from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple

from threader.models.thread import Post

MIN_CONTEXT_BUDGET = 30
MAX_CONTEXT_BUDGET = 1000
BUDGET_SCALE = 120


class MainlineResult(NamedTuple):
    posts: List[Post]
    has_alternate_branches: bool


def mainline_sort_key(post: Post) -> Tuple[float, str]:
    """Oldest first; the id breaks ties (and orders unparseable dates)."""
    return (post.timestamp, post.id)


def context_budget(hint: Optional[int], default: int = 3) -> int:
    """Translate a caller's "context requests" hint into a request/depth budget."""
    budget = hint if hint else default
    return max(MIN_CONTEXT_BUDGET, min(MAX_CONTEXT_BUDGET, round(budget * BUDGET_SCALE)))


def index_by_parent(
    posts: Iterable[Post], parents: Optional[Set[str]] = None
) -> Dict[str, List[Post]]:
    """Group posts under the id they reply to, each group sorted by mainline order.

    When `parents` is given, replies to ids outside it are ignored.
    """
    children: Dict[str, List[Post]] = {}
    for post in posts:
        parent_id = post.in_reply_to_id
        if not parent_id:
            continue
        if parents is not None and parent_id not in parents:
            continue
        children.setdefault(parent_id, []).append(post)

    for bucket in children.values():
        bucket.sort(key=mainline_sort_key)
    return children


def has_branches(children: Dict[str, List[Post]]) -> bool:
    return any(len(bucket) > 1 for bucket in children.values())


def build_mainline(
    seed: Post, ancestors: Iterable[Post], descendants: Iterable[Post]
) -> MainlineResult:
    """Build the linear thread around `seed`.

    Args:
        seed: The post the caller asked for.
        ancestors: Candidate posts above the seed.
        descendants: Candidate posts below the seed.

    Returns:
        MainlineResult with ancestors (oldest first), the seed, then the
        chain of earliest children below it.
    """
    by_id: Dict[str, Post] = {}
    for post in ancestors:
        by_id[post.id] = post
    for post in descendants:
        by_id[post.id] = post
    by_id[seed.id] = seed

    children = index_by_parent(by_id.values(), parents=set(by_id))

    before: List[Post] = []
    visited_up = {seed.id}
    cursor = seed
    while cursor.in_reply_to_id and cursor.in_reply_to_id in by_id:
        parent = by_id[cursor.in_reply_to_id]
        if parent.id in visited_up:
            break
        before.append(parent)
        visited_up.add(parent.id)
        cursor = parent
    before.reverse()

    after: List[Post] = []
    visited_down = set(visited_up)
    cursor = seed
    while True:
        bucket = children.get(cursor.id)
        if not bucket:
            break
        child = bucket[0]
        if child.id in visited_down:
            break
        after.append(child)
        visited_down.add(child.id)
        cursor = child

    return MainlineResult(
        posts=before + [seed] + after,
        has_alternate_branches=has_branches(children),
    )


def extend_from_tail(
    tail: Post, candidates: Iterable[Post], seen_ids: Set[str]
) -> MainlineResult:
    """Walk down from `tail` through newly discovered posts.

    Picks the earliest unseen child at each step, the same rule
    build_mainline uses below the seed. `posts` holds only the additions;
    `seen_ids` is not modified.
    """
    children = index_by_parent(candidates)
    seen = set(seen_ids)
    seen.add(tail.id)

    additions: List[Post] = []
    cursor = tail
    while True:
        bucket = [post for post in children.get(cursor.id, []) if post.id not in seen]
        if not bucket:
            break
        child = bucket[0]
        additions.append(child)
        seen.add(child.id)
        cursor = child

    return MainlineResult(posts=additions, has_alternate_branches=has_branches(children))
