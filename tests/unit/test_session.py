"""Unit tests for device session launch and cleanup."""
from __future__ import annotations

from unittest.mock import patch

import pytest

from config import BrowserConfig
from exceptions import LaunchFailure, ProfileNotFound
from session import SessionManager, select_engine
from conftest import make_playwright as fake_playwright


class TestSelectEngine:
    """Tests for platform to engine mapping."""

    def test_platform_engines(self):
        assert select_engine("ios") == "webkit"
        assert select_engine("android") == "chromium"
        assert select_engine("desktop") == "chromium"

    def test_unknown_platform(self):
        with pytest.raises(LaunchFailure):
            select_engine("symbian")


class TestLaunch:
    """Tests for SessionManager.launch."""

    @pytest.mark.asyncio
    async def test_ios_launches_webkit_with_profile(self):
        factory, playwright, browser, context = fake_playwright()
        manager = SessionManager(BrowserConfig(headless=True))

        with patch("session.async_playwright", factory):
            session = await manager.launch("iPhone 14")

        assert session.engine == "webkit"
        playwright.webkit.launch.assert_awaited_once_with(headless=True)
        playwright.chromium.launch.assert_not_awaited()
        options = browser.new_context.await_args.kwargs
        assert options["viewport"] == {"width": 390, "height": 844}
        assert options["is_mobile"] is True
        assert options["has_touch"] is True
        assert options["device_scale_factor"] == 3
        assert "iPhone" in options["user_agent"]
        assert session.page is context.pages[0]
        assert session.closed is False

    @pytest.mark.asyncio
    async def test_android_launches_chromium_with_args(self):
        factory, playwright, browser, _ = fake_playwright()
        manager = SessionManager(BrowserConfig(chromium_args=["--no-sandbox"]))

        with patch("session.async_playwright", factory):
            session = await manager.launch("Samsung Galaxy S24")

        assert session.engine == "chromium"
        playwright.chromium.launch.assert_awaited_once_with(headless=True, args=["--no-sandbox"])

    @pytest.mark.asyncio
    async def test_unknown_profile_does_not_start_engine(self):
        factory, _, _, _ = fake_playwright()

        with patch("session.async_playwright", factory):
            with pytest.raises(ProfileNotFound):
                await SessionManager().launch("Nokia 3310")

        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_engine_failure_raises_launch_failure(self):
        factory, playwright, _, _ = fake_playwright(launch_error=RuntimeError("Executable doesn't exist"))

        with patch("session.async_playwright", factory):
            with pytest.raises(LaunchFailure) as exc_info:
                await SessionManager().launch("iPhone 14")

        assert exc_info.value.engine == "webkit"
        assert exc_info.value.device_name == "iPhone 14"
        assert "Executable doesn't exist" in exc_info.value.message
        playwright.stop.assert_awaited_once()


class TestCleanup:
    """Tests for idempotent teardown."""

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self):
        factory, playwright, browser, context = fake_playwright()
        manager = SessionManager()
        with patch("session.async_playwright", factory):
            session = await manager.launch("iPhone 14")

        await manager.cleanup(session)
        await session.release()
        await manager.cleanup(session)

        assert session.closed is True
        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cleanup_continues_past_close_errors(self):
        factory, playwright, browser, context = fake_playwright()
        context.close.side_effect = RuntimeError("Target closed")
        manager = SessionManager()
        with patch("session.async_playwright", factory):
            session = await manager.launch("iPhone 14")

        await manager.cleanup(session)

        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_scoped_session_cleans_up_on_error(self):
        factory, playwright, _, context = fake_playwright()
        manager = SessionManager()

        with patch("session.async_playwright", factory):
            with pytest.raises(RuntimeError):
                async with manager.session("Desktop Chrome") as session:
                    assert session.profile.platform == "desktop"
                    raise RuntimeError("boom")

        context.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()

    def test_pages_snapshot(self, mobile_session):
        pages = mobile_session.pages()
        pages.append(object())
        assert len(mobile_session.context.pages) == 1
