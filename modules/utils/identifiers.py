"""Record identifier helpers."""

from __future__ import annotations

import secrets
import string

_ALPHABET = string.ascii_lowercase + string.digits


def make_record_id(prefix: str, timestamp: float, suffix_length: int = 9) -> str:
    """Return ``<prefix>_<millis>_<random base-36 suffix>``."""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(suffix_length))
    return f"{prefix}_{int(timestamp * 1000)}_{suffix}"
