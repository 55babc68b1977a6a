"""Outward messaging boundary: progress strings and review payloads."""
from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Protocol, Tuple

MESSAGE = "message"
TEST_SCRIPT_UPDATE = "testscriptupdate"
TEST_CASES = "testcases"
MOBILE_DEVICES = "mobileDevices"


class MessageEmitter(Protocol):
    """Anything that can push an event to the connected client."""

    def emit(self, event: str, payload: Any) -> None:
        ...


class LoggingEmitter:
    """Emitter that only logs outward traffic (CLI runs)."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("transport")

    def emit(self, event: str, payload: Any) -> None:
        if event == MESSAGE:
            self.logger.info(f"[{event}] {payload}")
        else:
            self.logger.info(f"[{event}] {_preview(payload)}")


class HistoryEmitter:
    """
    Emitter that keeps a bounded window of recent events for polling clients.

    Only the newest `history` events are kept.
    """

    def __init__(self, history: int = 200):
        self._history: Deque[Dict[str, Any]] = deque(maxlen=history)

    def emit(self, event: str, payload: Any) -> None:
        item = {
            "event": event,
            "payload": payload,
            "timestamp": datetime.utcnow().isoformat(),
        }
        self._history.append(item)

    def history(self, event: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        items = [i for i in self._history if event is None or i["event"] == event]
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def messages(self, limit: Optional[int] = None) -> List[str]:
        return [str(i["payload"]) for i in self.history(MESSAGE, limit)]


def _preview(payload: Any, limit: int = 300) -> str:
    try:
        text = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    except (TypeError, ValueError):
        text = repr(payload)
    return text if len(text) <= limit else text[:limit] + "..."


class RecordingEmitter:
    """Keeps every emitted event and optionally forwards to another emitter."""

    def __init__(self, inner: Optional[MessageEmitter] = None):
        self.inner = inner
        self.events: List[Tuple[str, Any]] = []

    def emit(self, event: str, payload: Any) -> None:
        self.events.append((event, payload))
        if self.inner is not None:
            self.inner.emit(event, payload)

    def payloads(self, event: str) -> List[Any]:
        return [p for e, p in self.events if e == event]

    @property
    def messages(self) -> List[str]:
        return [str(p) for p in self.payloads(MESSAGE)]
