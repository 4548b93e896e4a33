"""Per-viewer like state and the shared like counters it drives."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import replace
from typing import FrozenSet, List

from modules.community.posts import FeedPost
from modules.storage.medium import CapacityExceededError, StorageError, StorageMedium
from modules.storage.quota_store import CHANGE_NOT_SAVED, QuotaAwareStore, StorageExhaustedError

logger = logging.getLogger(__name__)


class PostNotFoundError(LookupError):
    """The post targeted by a like toggle is not in the feed."""


class LikeLedger:
    """Track which posts each viewer liked and keep post counters in step.

    The like-set of a viewer is persisted under ``<key_prefix>:<viewer>`` and
    is the only source of truth for :meth:`has_liked`.
    """

    def __init__(
        self,
        medium: StorageMedium,
        feed_store: QuotaAwareStore[FeedPost],
        key_prefix: str = "user_likes",
    ) -> None:
        self.medium = medium
        self.feed_store = feed_store
        self.key_prefix = key_prefix
        self._lock = threading.RLock()

    def _key(self, viewer: str) -> str:
        if not viewer:
            raise ValueError("Viewer id must not be empty")
        return f"{self.key_prefix}:{viewer}"

    def _load(self, viewer: str) -> List[str]:
        key = self._key(viewer)
        try:
            blob = self.medium.get(key)
        except StorageError as exc:
            logger.warning("Could not read likes for %s, assuming none: %s", viewer, exc)
            return []
        if not blob:
            return []
        try:
            data = json.loads(blob.decode("utf-8"))
        except ValueError as exc:
            logger.warning("Like record for %s is unreadable, resetting it: %s", viewer, exc)
            return []
        if not isinstance(data, list):
            logger.warning("Like record for %s has unexpected shape, resetting it", viewer)
            return []
        return [str(item) for item in data]

    def _save(self, viewer: str, liked: List[str]) -> None:
        self.medium.set(self._key(viewer), json.dumps(liked).encode("utf-8"))

    def liked_ids(self, viewer: str) -> FrozenSet[str]:
        """Return every post id ``viewer`` currently likes."""
        with self._lock:
            return frozenset(self._load(viewer))

    def has_liked(self, viewer: str, post_id: str) -> bool:
        """Return True when ``viewer``'s last toggle on ``post_id`` was a like."""
        return post_id in self.liked_ids(viewer)

    def toggle(self, viewer: str, post_id: str) -> int:
        """Flip ``viewer``'s like on ``post_id`` and return the new counter.

        The post counter is updated first; the like-set is only written once
        the counter change succeeded, and the counter is reverted if writing
        the like-set fails. Running out of space on either write raises
        ``StorageExhaustedError``.
        """
        with self._lock:
            liked = self._load(viewer)
            unliking = post_id in liked
            delta = -1 if unliking else 1

            previous: List[int] = []

            def apply(post: FeedPost) -> FeedPost:
                previous.append(post.likes)
                return _bump(post, delta)

            updated = self.feed_store.update(post_id, apply)
            if updated is None:
                raise PostNotFoundError(f"Post '{post_id}' is not in the feed")

            if unliking:
                liked = [item for item in liked if item != post_id]
            else:
                liked.append(post_id)

            try:
                self._save(viewer, liked)
            except StorageError as exc:
                logger.error("Could not persist likes for %s; reverting counter on %s", viewer, post_id)
                self.feed_store.update(post_id, lambda post: replace(post, likes=previous[0]))
                if isinstance(exc, CapacityExceededError):
                    raise StorageExhaustedError(CHANGE_NOT_SAVED) from exc
                raise

            logger.debug("Viewer %s %s %s (likes=%d)", viewer, "unliked" if unliking else "liked", post_id, updated.likes)
            return updated.likes


def _bump(post: FeedPost, delta: int) -> FeedPost:
    return replace(post, likes=max(0, post.likes + delta))
