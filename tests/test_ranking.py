"""Feed ranking tests."""

from __future__ import annotations

from modules.community.posts import FeedPost
from modules.community.ranking import ALL_CATEGORIES, SortMode, featured_post, mark_featured, rank


def post(post_id: str, likes: int, created_at: float, category: str = "Cartoon") -> FeedPost:
    return FeedPost(id=post_id, image_bytes=b"img", category=category, created_at=created_at, likes=likes)


def test_popular_ties_break_by_newest_first():
    posts = [post("a", 5, 100), post("b", 5, 200)]

    ranked = rank(posts, SortMode.POPULAR, ALL_CATEGORIES)

    assert [item.created_at for item in ranked] == [200, 100]


def test_popular_orders_by_likes():
    posts = [post("a", 1, 300), post("b", 9, 100), post("c", 4, 200)]

    assert [item.id for item in rank(posts, SortMode.POPULAR)] == ["b", "c", "a"]


def test_recent_orders_by_timestamp():
    posts = [post("a", 9, 100), post("b", 0, 300), post("c", 4, 200)]

    assert [item.id for item in rank(posts)] == ["b", "c", "a"]


def test_ranking_is_deterministic_for_full_ties():
    posts = [post("x1", 2, 50), post("x3", 2, 50), post("x2", 2, 50)]

    first = [item.id for item in rank(posts, SortMode.POPULAR)]
    second = [item.id for item in rank(list(reversed(posts)), SortMode.POPULAR)]

    assert first == second == ["x3", "x2", "x1"]


def test_sort_mode_accepts_plain_strings():
    posts = [post("a", 1, 300), post("b", 9, 100)]

    assert [item.id for item in rank(posts, "popular")] == ["b", "a"]


def test_category_filter_uses_substring_match():
    posts = [post("a", 0, 1, "Pixel Art"), post("b", 0, 2, "Watercolor"), post("c", 0, 3, "Art Deco")]

    assert [item.id for item in rank(posts, SortMode.RECENT, "Art")] == ["c", "a"]
    assert len(rank(posts, SortMode.RECENT, ALL_CATEGORIES)) == 3


def test_featured_requires_positive_likes():
    flagged = mark_featured([post("a", 0, 1), post("b", 0, 2)])

    assert not any(item.is_featured for item in flagged)


def test_all_posts_sharing_the_max_are_featured():
    flagged = {item.id: item.is_featured for item in mark_featured([post("a", 3, 1), post("b", 3, 2), post("c", 1, 3)])}

    assert flagged == {"a": True, "b": True, "c": False}


def test_featured_is_computed_before_filtering():
    posts = [post("star", 7, 1, "Pixel"), post("other", 2, 2, "Watercolor")]

    ranked = rank(posts, SortMode.RECENT, "Watercolor")

    assert [(item.id, item.is_featured) for item in ranked] == [("other", False)]


def test_featured_post_only_in_default_view():
    posts = [post("a", 3, 1), post("b", 3, 2), post("c", 1, 3)]

    assert featured_post(posts).id == "b"
    assert featured_post(posts, SortMode.POPULAR) is None
    assert featured_post(posts, SortMode.RECENT, "Cartoon") is None
    assert featured_post([post("z", 0, 1)]) is None


def test_rank_does_not_mutate_input():
    posts = [post("a", 3, 1)]

    rank(posts)

    assert posts[0].is_featured is False
