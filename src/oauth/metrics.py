"""
Authentication metrics.

Emits one structured line per event through the ``src.oauth.metrics``
logger, in the form::

    AUTH_METRIC event=refresh_success duration=120 type=proactive

Set ``AUTH_METRICS=off`` (or ``false``/``0``) to disable collection.
"""

import logging
import os
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")


def sanitize_value(value: str) -> str:
    """Reduce a string to characters safe for key=value output."""
    if not value:
        return value
    value = _UNSAFE_CHARS.sub("_", value)
    value = _REPEATED_UNDERSCORES.sub("_", value)
    return value.strip("_")


class AuthMetrics:
    """Authentication metrics emitter with environment opt-out."""

    def __init__(self, enabled: Optional[bool] = None):
        """
        Args:
            enabled: Force metrics on/off; reads AUTH_METRICS when omitted
        """
        if enabled is None:
            setting = os.environ.get("AUTH_METRICS", "").strip().lower()
            enabled = setting not in ("off", "false", "0")
        self.enabled = enabled

    def emit_refresh_success(
        self,
        duration_ms: int,
        refresh_type: Optional[str] = None,
        time_until_expiry_ms: Optional[int] = None,
    ) -> None:
        if not self.enabled:
            return
        self._emit(
            "refresh_success",
            duration=duration_ms,
            type=refresh_type,
            time_until_expiry=time_until_expiry_ms,
        )

    def emit_refresh_failure(
        self, error: str, duration_ms: int, refresh_type: Optional[str] = None
    ) -> None:
        if not self.enabled:
            return
        self._emit(
            "refresh_failure",
            error=sanitize_value(error),
            duration=duration_ms,
            type=refresh_type,
        )

    def emit_refresh_proactive(self, time_until_expiry_ms: int, threshold_ms: int) -> None:
        if not self.enabled:
            return
        self._emit(
            "refresh_proactive",
            time_until_expiry=time_until_expiry_ms,
            threshold=threshold_ms,
        )

    def emit_cache_corrupted(self, source: str, corruption_type: str) -> None:
        if not self.enabled:
            return
        self._emit("cache_corrupted", source=source, corruption_type=corruption_type)

    def _emit(self, event: str, **fields: Any) -> None:
        pairs = [f"event={event}"]
        for key, value in fields.items():
            if value is None:
                continue
            text = sanitize_value(value) if isinstance(value, str) else str(value)
            pairs.append(f"{key}={text}")
        logger.info("AUTH_METRIC " + " ".join(pairs))


auth_metrics = AuthMetrics()
