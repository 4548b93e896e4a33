"""Utility helpers for image re-encoding and payload conversion."""

from __future__ import annotations

import base64
import binascii
import io
import logging

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255)
_DATA_URL_PREFIX = "data:"


def _flatten(image: Image.Image) -> Image.Image:
    """Composite any transparency onto an opaque white background."""
    if image.mode == "P" and "transparency" in image.info:
        image = image.convert("RGBA")
    if image.mode in ("RGBA", "LA", "PA", "RGBa", "La"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, WHITE)
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def _scaled_size(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    scale = max_dimension / longest
    return max(1, round(width * scale)), max(1, round(height * scale))


def compress_image(source: bytes, max_dimension: int = 600, quality: float = 0.5) -> bytes:
    """Re-encode an image as an opaque JPEG bounded by ``max_dimension``.

    The longer edge is scaled down to ``max_dimension`` (never up) and
    transparency is flattened onto white. ``quality`` is a fraction in
    ``(0, 1]``. Undecodable input is returned unchanged.
    """
    if max_dimension <= 0:
        raise ValueError("max_dimension must be positive")
    if not 0 < quality <= 1:
        raise ValueError("quality must be within (0, 1]")
    if not source:
        logger.warning("Received an empty image payload; nothing to compress.")
        return source

    try:
        with Image.open(io.BytesIO(source)) as image:
            image.load()
            source_format = image.format
            had_alpha = image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info
            width, height = image.size
            target_size = _scaled_size(width, height, max_dimension)

            flattened = _flatten(image)
            if target_size != (width, height):
                flattened = flattened.resize(target_size, Image.Resampling.LANCZOS)

            buffer = io.BytesIO()
            flattened.save(
                buffer,
                format="JPEG",
                quality=max(1, round(quality * 100)),
                optimize=True,
            )
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        logger.warning("Image decode failed, keeping original payload: %s", exc)
        return source

    encoded = buffer.getvalue()
    untouched_jpeg = (
        source_format == "JPEG" and not had_alpha and target_size == (width, height)
    )
    if untouched_jpeg and len(encoded) >= len(source):
        return source

    logger.debug(
        "Compressed image %dx%d -> %dx%d (%d -> %d bytes)",
        width,
        height,
        target_size[0],
        target_size[1],
        len(source),
        len(encoded),
    )
    return encoded


def sniff_mime_type(payload: bytes) -> str:
    """Guess the MIME type of an encoded image from its magic bytes."""
    if payload.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if payload.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if payload[:4] == b"RIFF" and payload[8:12] == b"WEBP":
        return "image/webp"
    if payload[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return "application/octet-stream"


def to_data_url(payload: bytes) -> str:
    """Encode image bytes as a ``data:`` URL."""
    encoded = base64.b64encode(payload).decode("ascii")
    return f"data:{sniff_mime_type(payload)};base64,{encoded}"


def from_data_url(value: str) -> bytes:
    """Decode a ``data:`` URL (or a bare base64 string) into bytes."""
    payload = value
    if value.startswith(_DATA_URL_PREFIX):
        _, _, payload = value.partition(",")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 image payload: {exc}") from exc
