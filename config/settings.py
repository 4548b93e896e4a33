"""Configuration helpers for the Stamp Gallery project."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    storage_capacity_bytes: int = 5 * 1024 * 1024
    library_key: str = "library_v4"
    community_key: str = "community_v2"
    likes_key_prefix: str = "user_likes"
    library_max_items: int = 15
    community_max_items: int = 12
    library_max_dimension: int = 600
    community_max_dimension: int = 500
    image_quality: float = 0.5
    default_category: str = "General"
    viewer_id: str = "local"
    moderation_backend: Optional[str] = None
    moderation_timeout: float = 20.0
    anthropic_key: Optional[str] = None
    openai_key: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ[key.strip()] = value.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    data_dir = Path(os.getenv("DATA_DIR", "data")).expanduser().resolve()
    log_dir = Path(os.getenv("LOG_DIR", "logs")).expanduser()

    quality = _env_float("IMAGE_QUALITY", 0.5)
    if not 0 < quality <= 1:
        quality = 0.5

    metadata: dict[str, Any] = {}
    openai_base_url = os.getenv("OPENAI_BASE_URL")
    openai_model = os.getenv("OPENAI_MODEL")
    anthropic_model = os.getenv("ANTHROPIC_MODEL")
    if openai_base_url:
        metadata["openai_base_url"] = openai_base_url
    if openai_model:
        metadata["openai_model"] = openai_model
    if anthropic_model:
        metadata["anthropic_model"] = anthropic_model

    backend = (os.getenv("MODERATION_BACKEND") or "").strip().lower() or None

    return AppConfig(
        data_dir=data_dir,
        log_dir=log_dir,
        log_level=os.getenv("LOG_LEVEL", "INFO") or "INFO",
        storage_capacity_bytes=_env_int("STORAGE_CAPACITY_BYTES", 5 * 1024 * 1024),
        image_quality=quality,
        viewer_id=os.getenv("VIEWER_ID", "local") or "local",
        moderation_backend=backend,
        moderation_timeout=_env_float("MODERATION_TIMEOUT", 20.0),
        anthropic_key=os.getenv("ANTHROPIC_API_KEY"),
        openai_key=os.getenv("OPENAI_API_KEY"),
        metadata=metadata,
    )
