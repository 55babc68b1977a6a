"""Per-session state shared by the execution loop and the reviewer."""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Awaitable, Deque, List, Optional, Set

from playwright.async_api import Page

from devices import DeviceProfile
from session import Session
from status import SessionStatus, StatusArbiter
from transport import MESSAGE, TEST_SCRIPT_UPDATE, LoggingEmitter, MessageEmitter


class MessageInbox:
    """Client chat messages waiting for the next decision-service turn."""

    def __init__(self) -> None:
        self._messages: Deque[str] = deque()

    def post(self, text: str) -> None:
        self._messages.append(text)

    def drain(self) -> List[str]:
        messages = list(self._messages)
        self._messages.clear()
        return messages

    def __len__(self) -> int:
        return len(self._messages)


class SessionContext:
    """
    Everything one running session needs to share across tasks.

    The loop owns the active page and the correlation tokens; the reviewer
    only reads the page and writes into the arbiter.
    """

    def __init__(
        self,
        session: Session,
        emitter: Optional[MessageEmitter] = None,
        arbiter: Optional[StatusArbiter] = None,
        session_id: Optional[str] = None,
        inbox: Optional[MessageInbox] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.session = session
        self.emitter = emitter or LoggingEmitter()
        self.arbiter = arbiter or StatusArbiter()
        self.inbox = inbox if inbox is not None else MessageInbox()
        self.logger = logger or logging.getLogger("cua_loop")
        self.previous_response_id: Optional[str] = None
        self.last_call_id: Optional[str] = None
        self.pending_reviews: Set[asyncio.Task] = set()

    @property
    def profile(self) -> DeviceProfile:
        return self.session.profile

    @property
    def page(self) -> Page:
        """The target the loop is currently driving."""
        return self.session.page

    @page.setter
    def page(self, page: Page) -> None:
        self.session.page = page

    @property
    def review_label(self) -> str:
        """Prefix for every screenshot sent to the reviewer."""
        return f"Device: {self.profile.name}"

    @property
    def status(self) -> SessionStatus:
        return self.arbiter.status

    @property
    def closed(self) -> bool:
        return self.session.closed

    def emit_message(self, text: str) -> None:
        self.emitter.emit(MESSAGE, text)

    def emit_review(self, payload: Any) -> None:
        self.emitter.emit(TEST_SCRIPT_UPDATE, payload)

    def track(self, coro: Awaitable[Any], name: Optional[str] = None) -> asyncio.Task:
        """Run a fire-and-forget coroutine and keep a reference until it finishes."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self.pending_reviews.add(task)
        task.add_done_callback(self.pending_reviews.discard)
        return task

    async def drain_reviews(self) -> None:
        """Cancel outstanding background reviews at session end."""
        tasks = [t for t in self.pending_reviews if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.logger.debug(f"Cancelled {len(tasks)} pending review(s)")
        self.pending_reviews.clear()
