"""Feed ordering and featured-post derivation."""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import Iterable, List, Optional

from modules.community.posts import FeedPost

ALL_CATEGORIES = "all"


class SortMode(str, Enum):
    """Supported feed orderings."""

    RECENT = "recent"
    POPULAR = "popular"


def mark_featured(posts: Iterable[FeedPost]) -> List[FeedPost]:
    """Return copies flagged ``is_featured`` when holding the max like count.

    Nothing is featured while every post has zero likes.
    """
    items = list(posts)
    top_likes = max((post.likes for post in items), default=0)
    return [
        replace(post, is_featured=top_likes > 0 and post.likes == top_likes)
        for post in items
    ]


def _sort_key(sort_mode: SortMode):
    if sort_mode is SortMode.POPULAR:
        return lambda post: (post.likes, post.created_at, post.id)
    return lambda post: (post.created_at, post.id)


def rank(
    posts: Iterable[FeedPost],
    sort_mode: SortMode = SortMode.RECENT,
    category: str = ALL_CATEGORIES,
) -> List[FeedPost]:
    """Return the display order for ``posts``.

    Featured flags are computed over the whole input before filtering.
    ``category`` keeps posts whose category contains it, unless it is
    ``ALL_CATEGORIES``. Ties fall back to newest first, then to the id.
    """
    sort_mode = SortMode(sort_mode)
    flagged = mark_featured(posts)
    if category != ALL_CATEGORIES:
        flagged = [post for post in flagged if category in post.category]
    return sorted(flagged, key=_sort_key(sort_mode), reverse=True)


def featured_post(
    posts: Iterable[FeedPost],
    sort_mode: SortMode = SortMode.RECENT,
    category: str = ALL_CATEGORIES,
) -> Optional[FeedPost]:
    """Return the post to highlight, only in the default recent/all view."""
    if SortMode(sort_mode) is not SortMode.RECENT or category != ALL_CATEGORIES:
        return None
    for post in rank(posts):
        if post.is_featured:
            return post
    return None
