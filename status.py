"""Shared pass/fail/pending cell gating the execution loop."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional


class SessionStatus(str, Enum):
    """Session status values."""

    PENDING = "pending"
    PASS = "pass"
    FAIL = "fail"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.PENDING


class StatusArbiter:
    """
    Single mutable status cell for one session.

    Written by the loop (mark_done, safety checks) and by the reviewer task.
    Only pending -> pass and pending -> fail are honored; once terminal the
    value is frozen and later writes are logged and ignored.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("status")
        self._status = SessionStatus.PENDING
        self._source: Optional[str] = None
        self._reason: Optional[str] = None
        self._terminal = asyncio.Event()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        return self._status.is_terminal

    @property
    def source(self) -> Optional[str]:
        return self._source

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def set(
        self,
        status: SessionStatus | str,
        *,
        source: str,
        reason: Optional[str] = None,
    ) -> bool:
        """Write a new status. Returns True if the write was honored."""
        status = SessionStatus(status)
        if self._status.is_terminal:
            if status is not self._status:
                self.logger.debug(
                    f"Ignoring status {status.value} from {source}; already {self._status.value}"
                )
            return False
        if status is SessionStatus.PENDING:
            return False

        self._status = status
        self._source = source
        self._reason = reason
        self._terminal.set()
        self.logger.info(f"Test case status set to {status.value} by {source}" + (f": {reason}" if reason else ""))
        return True

    async def wait_terminal(self, timeout: Optional[float] = None) -> SessionStatus:
        """Wait until a terminal value is written (for external observers)."""
        await asyncio.wait_for(self._terminal.wait(), timeout=timeout)
        return self._status
