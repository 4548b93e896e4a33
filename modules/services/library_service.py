"""Private image library."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from config.settings import AppConfig
from modules.storage.medium import StorageMedium
from modules.storage.quota_store import QuotaAwareStore
from modules.utils.identifiers import make_record_id
from modules.utils.image_utils import compress_image, from_data_url, to_data_url

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ImageSubmission:
    """Raw image handed over by the image source, plus its metadata."""

    image_bytes: bytes
    prompt: str = ""
    style: Optional[str] = None
    id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class StoredImage:
    """An image kept in the private library."""

    id: str
    image_bytes: bytes
    prompt: str
    style: Optional[str]
    created_at: float
    is_favorite: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.image_bytes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "image": to_data_url(self.image_bytes),
            "prompt": self.prompt,
            "style": self.style,
            "created_at": self.created_at,
            "is_favorite": self.is_favorite,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredImage":
        style = data.get("style")
        return cls(
            id=str(data["id"]),
            image_bytes=from_data_url(data["image"]),
            prompt=str(data.get("prompt") or ""),
            style=str(style) if style else None,
            created_at=float(data.get("created_at", 0.0)),
            is_favorite=bool(data.get("is_favorite", False)),
        )


class LibraryService:
    """Compress and keep the most recent images of this device."""

    def __init__(
        self,
        config: AppConfig,
        medium: StorageMedium,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.clock = clock
        self.store: QuotaAwareStore[StoredImage] = QuotaAwareStore(
            medium,
            key=config.library_key,
            record_type=StoredImage,
            max_items=config.library_max_items,
        )

    def list(self) -> List[StoredImage]:
        """Return library images, newest first."""
        return self.store.list()

    def get(self, image_id: str) -> Optional[StoredImage]:
        return self.store.get(image_id)

    def favorites(self) -> List[StoredImage]:
        return [image for image in self.store.list() if image.is_favorite]

    def save(self, submission: ImageSubmission) -> StoredImage:
        """Compress ``submission`` and store it at the top of the library.

        Raises ``StorageExhaustedError`` when the device cannot hold even
        this single image.
        """
        if not submission.image_bytes:
            raise ValueError("Cannot save an empty image")

        encoded = compress_image(
            submission.image_bytes,
            max_dimension=self.config.library_max_dimension,
            quality=self.config.image_quality,
        )
        now = self.clock()
        image = StoredImage(
            id=submission.id or make_record_id("img", now),
            image_bytes=encoded,
            prompt=submission.prompt,
            style=submission.style,
            created_at=now,
        )
        self.store.insert(image)
        logger.info("Saved %s to the library (%d bytes)", image.id, image.size_bytes)
        return image

    def remove(self, image_id: str) -> bool:
        """Delete an image; unknown ids are ignored."""
        return self.store.remove(image_id)

    def toggle_favorite(self, image_id: str) -> Optional[StoredImage]:
        """Flip the favorite flag; ``None`` when the image is gone."""
        return self.store.update(image_id, lambda image: replace(image, is_favorite=not image.is_favorite))
