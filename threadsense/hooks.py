"""Lifecycle hooks around context assembly and feedback handling."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class HookName(str, Enum):
    BEFORE_CRAWL = "before_crawl"
    AFTER_CRAWL = "after_crawl"
    BEFORE_SERIALIZE = "before_serialize"
    AFTER_SERIALIZE = "after_serialize"
    AFTER_FEEDBACK = "after_feedback"
    ON_ERROR = "on_error"


HookCallback = Callable[[dict[str, Any], dict[str, Any]], dict[str, Any] | None]


class HookManager:
    """Runs callbacks in registration order; each may patch the envelope."""

    def __init__(self) -> None:
        self._callbacks: dict[HookName, list[HookCallback]] = defaultdict(list)

    def register(self, name: HookName, callback: HookCallback) -> None:
        self._callbacks[name].append(callback)

    def registered(self, name: HookName) -> int:
        return len(self._callbacks[name])

    def emit(self, name: HookName, context: dict[str, Any], envelope: dict[str, Any]) -> dict[str, Any]:
        result = dict(envelope)
        for callback in self._callbacks[name]:
            try:
                patch = callback(context, dict(result))
            except Exception as exc:
                logger.warning("Hook %s callback failed: %s", name.value, exc)
                self._emit_error(exc, {"hook": name.value, **context})
                continue
            if patch:
                result.update(patch)
        return result

    def _emit_error(self, exc: Exception, context: dict[str, Any]) -> None:
        for callback in self._callbacks[HookName.ON_ERROR]:
            callback({"exception": exc, **context}, {})
