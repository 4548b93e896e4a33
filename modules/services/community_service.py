"""Community feed publication, browsing and likes."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, FrozenSet, List, Optional

from config.settings import AppConfig
from modules.community.like_ledger import LikeLedger
from modules.community.posts import FeedPost
from modules.community.ranking import ALL_CATEGORIES, SortMode, featured_post, rank
from modules.moderation.gate import ModerationGate
from modules.services.library_service import ImageSubmission, StoredImage
from modules.storage.medium import StorageMedium
from modules.storage.quota_store import QuotaAwareStore, StorageExhaustedError
from modules.utils.identifiers import make_record_id
from modules.utils.image_utils import compress_image

logger = logging.getLogger(__name__)


class PublishOutcome(str, Enum):
    PUBLISHED = "published"
    REJECTED = "rejected"
    STORAGE_FULL = "storage_full"
    INVALID = "invalid"


@dataclass(slots=True)
class PublishResult:
    """Outcome of a publish attempt with the message shown to the user."""

    outcome: PublishOutcome
    message: str
    post: Optional[FeedPost] = None

    @property
    def success(self) -> bool:
        return self.outcome is PublishOutcome.PUBLISHED


MESSAGES = {
    PublishOutcome.PUBLISHED: "Artwork published to the community!",
    PublishOutcome.REJECTED: "Artwork not allowed. The community only accepts illustrations and vector art.",
    PublishOutcome.STORAGE_FULL: "Device storage is full. The artwork could not be published.",
    PublishOutcome.INVALID: "Invalid image.",
}


class CommunityService:
    """Moderated, size-bounded community feed of this device."""

    def __init__(
        self,
        config: AppConfig,
        medium: StorageMedium,
        gate: Optional[ModerationGate] = None,
        ledger: Optional[LikeLedger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.clock = clock
        self.store: QuotaAwareStore[FeedPost] = QuotaAwareStore(
            medium,
            key=config.community_key,
            record_type=FeedPost,
            max_items=config.community_max_items,
        )
        self.gate = gate or ModerationGate(config)
        self.ledger = ledger or LikeLedger(medium, self.store, key_prefix=config.likes_key_prefix)

    # Reads -------------------------------------------------------------------
    def feed(self) -> List[FeedPost]:
        """Return all posts newest first, with featured flags."""
        return rank(self.store.list())

    def browse(self, sort_mode: SortMode = SortMode.RECENT, category: str = ALL_CATEGORIES) -> List[FeedPost]:
        return rank(self.store.list(), sort_mode, category)

    def featured(self, sort_mode: SortMode = SortMode.RECENT, category: str = ALL_CATEGORIES) -> Optional[FeedPost]:
        return featured_post(self.store.list(), sort_mode, category)

    # Publication -------------------------------------------------------------
    def publish(self, submission: ImageSubmission) -> PublishResult:
        """Compress, moderate and store a freshly generated image."""
        if not submission.image_bytes:
            return self._result(PublishOutcome.INVALID)
        encoded = compress_image(
            submission.image_bytes,
            max_dimension=self.config.community_max_dimension,
            quality=self.config.image_quality,
        )
        return self._publish_encoded(encoded, submission.style)

    def publish_stored(self, image: StoredImage) -> PublishResult:
        """Publish a library image, re-using its already encoded bytes."""
        if not image.image_bytes:
            return self._result(PublishOutcome.INVALID)
        return self._publish_encoded(image.image_bytes, image.style)

    def _publish_encoded(self, encoded: bytes, style: Optional[str]) -> PublishResult:
        if not self.gate.evaluate(encoded):
            return self._result(PublishOutcome.REJECTED)

        now = self.clock()
        post = FeedPost(
            id=make_record_id("post", now),
            image_bytes=encoded,
            category=style or self.config.default_category,
            created_at=now,
        )
        try:
            self.store.insert(post)
        except StorageExhaustedError:
            return self._result(PublishOutcome.STORAGE_FULL)

        logger.info("Published %s in category %s", post.id, post.category)
        return self._result(PublishOutcome.PUBLISHED, post)

    def remove(self, post_id: str) -> bool:
        return self.store.remove(post_id)

    # Likes -------------------------------------------------------------------
    def toggle_like(self, post_id: str, viewer: Optional[str] = None) -> int:
        """Like or unlike ``post_id`` and return its new like count."""
        return self.ledger.toggle(viewer or self.config.viewer_id, post_id)

    def has_liked(self, post_id: str, viewer: Optional[str] = None) -> bool:
        return self.ledger.has_liked(viewer or self.config.viewer_id, post_id)

    def liked_post_ids(self, viewer: Optional[str] = None) -> FrozenSet[str]:
        return self.ledger.liked_ids(viewer or self.config.viewer_id)

    @staticmethod
    def _result(outcome: PublishOutcome, post: Optional[FeedPost] = None) -> PublishResult:
        return PublishResult(outcome=outcome, message=MESSAGES[outcome], post=post)
