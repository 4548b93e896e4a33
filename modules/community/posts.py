"""Community feed records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from modules.utils.image_utils import from_data_url, to_data_url


@dataclass(slots=True, frozen=True)
class FeedPost:
    """A shared, likeable image in the community feed.

    ``is_featured`` is derived at read time and never persisted.
    """

    id: str
    image_bytes: bytes
    category: str
    created_at: float
    likes: int = 0
    is_featured: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.image_bytes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "image": to_data_url(self.image_bytes),
            "category": self.category,
            "likes": self.likes,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedPost":
        likes = int(data.get("likes", 0))
        return cls(
            id=str(data["id"]),
            image_bytes=from_data_url(data["image"]),
            category=str(data.get("category") or ""),
            created_at=float(data.get("created_at", 0.0)),
            likes=max(0, likes),
        )
