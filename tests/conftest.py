"""Pytest fixtures for the CUA harness tests."""
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import LoopConfig
from devices import default_catalog
from response_types import DecisionResponse
from session import Session, SessionManager
from session_context import SessionContext
from status import StatusArbiter
from transport import RecordingEmitter

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


def make_page(screenshot: Any = PNG_BYTES) -> MagicMock:
    """Mock Playwright page with every primitive the harness touches."""
    page = MagicMock()
    page.touchscreen.tap = AsyncMock()
    page.mouse.move = AsyncMock()
    page.mouse.down = AsyncMock()
    page.mouse.up = AsyncMock()
    page.mouse.wheel = AsyncMock()
    page.mouse.click = AsyncMock()
    page.mouse.dblclick = AsyncMock()
    page.keyboard.type = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.focus = AsyncMock()
    page.fill = AsyncMock()
    page.click = AsyncMock()
    page.goto = AsyncMock()
    page.go_back = AsyncMock()
    page.go_forward = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.set_viewport_size = AsyncMock()
    if isinstance(screenshot, list):
        page.screenshot = AsyncMock(side_effect=screenshot)
    else:
        page.screenshot = AsyncMock(return_value=screenshot)
    return page


def make_session(device: str = "iPhone 14", page: Optional[MagicMock] = None) -> Session:
    """Live-looking session whose engine objects are mocks."""
    page = page or make_page()
    context = MagicMock()
    context.pages = [page]
    context.close = AsyncMock()
    browser = MagicMock()
    browser.close = AsyncMock()
    playwright = MagicMock()
    playwright.stop = AsyncMock()
    manager = SessionManager(catalog=default_catalog)
    profile = default_catalog.get(device)
    engine = "webkit" if profile.platform == "ios" else "chromium"
    return Session(manager, profile, engine, playwright, browser, context, page)


def make_playwright(page: Optional[MagicMock] = None, launch_error: Optional[Exception] = None):
    """async_playwright() replacement whose engines hand out mock objects."""
    page = page or make_page()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.pages = [page]
    context.close = AsyncMock()
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.stop = AsyncMock()
    for engine in ("webkit", "chromium"):
        launcher = getattr(playwright, engine)
        launcher.launch = AsyncMock(return_value=browser, side_effect=launch_error)

    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return MagicMock(return_value=starter), playwright, browser, context


def make_response(response_id: str, *items: Dict[str, Any]) -> DecisionResponse:
    return DecisionResponse.from_api({"id": response_id, "output": list(items)})


def computer_call(call_id: str, action: Dict[str, Any], safety_checks: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    return {
        "type": "computer_call",
        "call_id": call_id,
        "action": action,
        "pending_safety_checks": safety_checks or [],
    }


def function_call(name: str, call_id: str, arguments: str = "{}") -> Dict[str, Any]:
    return {"type": "function_call", "name": name, "call_id": call_id, "arguments": arguments}


def message(text: str, call_id: Optional[str] = None) -> Dict[str, Any]:
    item: Dict[str, Any] = {"type": "message", "content": [{"type": "output_text", "text": text}]}
    if call_id:
        item["call_id"] = call_id
    return item


def reasoning(*texts: str) -> Dict[str, Any]:
    return {"type": "reasoning", "summary": [{"type": "summary_text", "text": t} for t in texts]}


class FakeDecisionService:
    """Scripted decision service that records every request."""

    def __init__(self, responses: List[DecisionResponse], start_response: Optional[DecisionResponse] = None):
        self.responses = list(responses)
        self.start_response = start_response
        self.calls: List[tuple] = []

    def _next(self) -> DecisionResponse:
        if not self.responses:
            return make_response("resp-final")
        return self.responses.pop(0)

    async def start(self, instructions, screenshot_b64=None, user_info=None):
        self.calls.append(("start", instructions, screenshot_b64, user_info))
        return self.start_response or self._next()

    async def submit(self, screenshot_b64, previous_response_id=None, last_call_id=None, hint=None):
        self.calls.append(("submit", screenshot_b64, previous_response_id, last_call_id, hint))
        return self._next()

    async def submit_function_output(self, call_id, previous_response_id, output):
        self.calls.append(("function_output", call_id, previous_response_id, output))
        return self._next()

    def calls_named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_page() -> MagicMock:
    return make_page()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def mobile_session() -> Session:
    return make_session("iPhone 14")


@pytest.fixture
def desktop_session() -> Session:
    return make_session("Desktop Chrome")


@pytest.fixture
def mobile_context(mobile_session: Session, emitter: RecordingEmitter) -> SessionContext:
    return SessionContext(mobile_session, emitter, StatusArbiter(), session_id="test-session")


@pytest.fixture
def fast_loop_config() -> LoopConfig:
    """Loop timings with no real waiting between capture attempts."""
    return LoopConfig(capture_backoff_seconds=0)


@pytest.fixture
def sample_request_yaml() -> str:
    return """
id: checkout
test_case:
  - Open the product list
  - Tap the first product
  - Add it to the cart
url: https://shop.example.com
device: iPhone 14
user_info:
  name: Test User
  email: test@example.com
"""
