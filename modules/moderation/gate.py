"""Community publication gate backed by an external image classifier."""

from __future__ import annotations

import base64
import importlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from config.settings import AppConfig
from modules.utils.image_utils import sniff_mime_type, to_data_url

logger = logging.getLogger(__name__)

MODERATION_POLICY = (
    "Review this image. Is it a safe, appropriate illustration, vector art or sticker design? "
    "It must not be a real-world photo containing people, and it must not contain explicit, "
    "violent or hateful content. Return JSON with an 'allowed' boolean."
)


@dataclass(slots=True)
class ClassifierRequest:
    """Payload handed to classifier backends."""

    image_bytes: bytes
    mime_type: str
    policy: str
    metadata: Dict[str, Any] = field(default_factory=dict)


ClassifierCallable = Callable[[ClassifierRequest], bool | Dict[str, Any] | str]


class ModerationGate:
    """Allow/deny verdicts for community uploads.

    Classifier failures of any kind are treated as ``allowed``: publishing
    stays available when the classifier is down or answers garbage.
    """

    def __init__(self, config: AppConfig, policy: str = MODERATION_POLICY) -> None:
        self.config = config
        self.policy = policy
        self._backends: Dict[str, ClassifierCallable] = {}
        self.warnings: list[str] = []
        self._auto_register_backends()

    def register_backend(self, name: str, backend: ClassifierCallable) -> None:
        """Register a classifier backend."""
        self._backends[name.lower()] = backend

    def clear_backends(self) -> None:
        """Remove all backends (mainly for tests)."""
        self._backends.clear()

    def has_backend(self, name: str) -> bool:
        """Return True when backend exists."""
        return name.lower() in self._backends

    def available_backends(self) -> list[str]:
        """Return registered backends ordered by preference."""
        priority = {"gpt": 0, "claude": 1}
        return sorted(self._backends, key=lambda item: (priority.get(item, 99), item))

    def active_backend(self) -> Optional[str]:
        """Return the backend used by :meth:`evaluate`, if any."""
        preferred = self.config.moderation_backend
        if preferred and self.has_backend(preferred):
            return preferred.lower()
        choices = self.available_backends()
        return choices[0] if choices else None

    def evaluate(self, image_bytes: bytes) -> bool:
        """Return False only when the classifier explicitly denies the image."""
        name = self.active_backend()
        if name is None:
            logger.info("No moderation backend configured; allowing upload.")
            return True

        request = ClassifierRequest(
            image_bytes=image_bytes,
            mime_type=sniff_mime_type(image_bytes),
            policy=self.policy,
            metadata=self.config.metadata,
        )
        try:
            payload = self._backends[name](request)
        except Exception as exc:  # noqa: BLE001 - fail-open on any classifier error
            logger.warning("Moderation backend '%s' failed, allowing upload: %s", name, exc)
            return True

        verdict = self._normalize_verdict(payload)
        if verdict is None:
            logger.warning("Moderation backend '%s' returned an unusable verdict %r; allowing upload.", name, payload)
            return True
        if not verdict:
            logger.info("Moderation backend '%s' rejected an upload.", name)
        return verdict

    # Internal helpers ---------------------------------------------------------
    def _normalize_verdict(self, payload: bool | Dict[str, Any] | str) -> Optional[bool]:
        """Coerce backend outputs into a boolean, or None when malformed."""
        if isinstance(payload, bool):
            return payload
        if isinstance(payload, str):
            payload = self._parse_backend_text(payload)
        if isinstance(payload, dict):
            allowed = payload.get("allowed")
            if isinstance(allowed, bool):
                return allowed
        return None

    def _parse_backend_text(self, text: str) -> Optional[Dict[str, Any]]:
        """Extract the JSON object from raw classifier text."""
        cleaned = (text or "").strip()
        if cleaned.startswith("```"):
            lines = cleaned.splitlines()
            if lines and lines[0].startswith("```"):
                lines = lines[1:]
            if lines and lines[-1].startswith("```"):
                lines = lines[:-1]
            cleaned = "\n".join(lines).strip()
        if not cleaned:
            return None
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def _auto_register_backends(self) -> None:
        """Register backends automatically when dependencies are available."""
        self._register_claude_backend()
        self._register_openai_backend()

    def _register_claude_backend(self) -> None:
        if not self.config.anthropic_key:
            return
        try:
            anthropic_module = importlib.import_module("anthropic")
        except ImportError as exc:  # pragma: no cover - optional dependency
            self.warnings.append(f"Cannot import anthropic: {exc}")
            return

        client = anthropic_module.Anthropic(
            api_key=self.config.anthropic_key,
            timeout=self.config.moderation_timeout,
        )

        def _claude_backend(request: ClassifierRequest) -> str:
            message = client.messages.create(
                model=request.metadata.get("anthropic_model", "claude-3-5-haiku-latest"),
                max_tokens=64,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": request.mime_type,
                                    "data": base64.b64encode(request.image_bytes).decode("ascii"),
                                },
                            },
                            {"type": "text", "text": request.policy + " Reply with JSON only."},
                        ],
                    }
                ],
            )
            return message.content[0].text if message.content else ""

        self.register_backend("claude", _claude_backend)

    def _register_openai_backend(self) -> None:
        if not self.config.openai_key:
            return
        try:
            openai_module = importlib.import_module("openai")
        except ImportError as exc:
            self.warnings.append(f"Cannot import openai: {exc}")
            return

        base_url = self.config.metadata.get("openai_base_url")
        client_kwargs: Dict[str, Any] = {
            "api_key": self.config.openai_key,
            "timeout": self.config.moderation_timeout,
        }
        if base_url:
            client_kwargs["base_url"] = base_url
        client = openai_module.OpenAI(**client_kwargs)

        def _gpt_backend(request: ClassifierRequest) -> str:
            completion = client.chat.completions.create(
                model=request.metadata.get("openai_model", "gpt-4o-mini"),
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": request.policy},
                            {"type": "image_url", "image_url": {"url": to_data_url(request.image_bytes)}},
                        ],
                    }
                ],
                response_format={"type": "json_object"},
                max_tokens=64,
            )
            if not completion.choices:
                return ""
            return (completion.choices[0].message.content or "").strip()

        self.register_backend("gpt", _gpt_backend)
