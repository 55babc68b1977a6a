"""Typed records for test session requests and their outcomes."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from status import SessionStatus


@dataclass
class SessionRequest:
    """One natural-language test case to run on one device."""

    id: str
    test_case: str
    url: str
    device_name: str
    user_info: Optional[str] = None
    notes: Optional[str] = None
    login_required: bool = False
    user_name: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    def describe(self) -> str:
        return f"{self.id} on {self.device_name} ({self.url})"


@dataclass
class SessionResult:
    """Outcome of a session run."""

    request: SessionRequest
    status: SessionStatus
    started_at: datetime
    finished_at: datetime
    reason: Optional[str] = None
    final_response_id: Optional[str] = None
    messages: List[str] = field(default_factory=list)
    engine: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is SessionStatus.PASS

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    def to_dict(self) -> dict:
        return {
            "id": self.request.id,
            "device": self.request.device_name,
            "url": self.request.url,
            "login_required": self.request.login_required,
            "status": self.status.value,
            "reason": self.reason,
            "engine": self.engine,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 2),
            "final_response_id": self.final_response_id,
            "messages": list(self.messages),
        }
