"""Device session lifecycle: engine selection, launch and guaranteed cleanup."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from config import BrowserConfig
from devices import DeviceCatalog, DeviceProfile, Platform, default_catalog
from exceptions import LaunchFailure

EngineName = str

ENGINE_BY_PLATFORM: Dict[Platform, EngineName] = {
    "ios": "webkit",
    "android": "chromium",
    "desktop": "chromium",
}


def select_engine(platform: Platform) -> EngineName:
    """Pick the browser engine that matches a device platform."""
    try:
        return ENGINE_BY_PLATFORM[platform]
    except KeyError:
        raise LaunchFailure(f"No engine registered for platform {platform!r}") from None


class Session:
    """One live browsing context under automated control."""

    def __init__(
        self,
        manager: "SessionManager",
        profile: DeviceProfile,
        engine: EngineName,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
    ):
        self.manager = manager
        self.profile = profile
        self.engine = engine
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.closed = False

    def pages(self) -> List[Page]:
        """Open top-level pages, oldest first."""
        return list(self.context.pages)

    async def release(self) -> None:
        await self.manager.cleanup(self)


class SessionManager:
    """Owns launch and teardown of device sessions."""

    def __init__(
        self,
        browser_config: Optional[BrowserConfig] = None,
        catalog: Optional[DeviceCatalog] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser_config = browser_config or BrowserConfig()
        self.catalog = catalog or default_catalog
        self.logger = logger or logging.getLogger("session")

    def _launch_options(self, engine: EngineName) -> Dict[str, Any]:
        options: Dict[str, Any] = {"headless": self.browser_config.headless}
        if self.browser_config.slow_mo > 0:
            options["slow_mo"] = self.browser_config.slow_mo
        if engine == "chromium" and self.browser_config.chromium_args:
            options["args"] = list(self.browser_config.chromium_args)
        return options

    def _context_options(self, profile: DeviceProfile) -> Dict[str, Any]:
        cfg = self.browser_config
        return {
            "user_agent": profile.user_agent,
            "viewport": profile.viewport,
            "device_scale_factor": profile.device_scale_factor,
            "is_mobile": profile.is_mobile,
            "has_touch": profile.has_touch,
            "locale": cfg.locale,
            "timezone_id": cfg.timezone_id,
            "permissions": list(cfg.permissions),
            "geolocation": dict(cfg.geolocation),
            "color_scheme": cfg.color_scheme,
        }

    async def launch(self, profile_name: str) -> Session:
        """Start an isolated browsing context configured for the named device."""
        profile = self.catalog.get(profile_name)
        engine = select_engine(profile.platform)
        self.logger.info(f"Launching device: {profile.name} ({profile.platform}, {engine})")

        playwright: Optional[Playwright] = None
        browser: Optional[Browser] = None
        context: Optional[BrowserContext] = None
        try:
            playwright = await async_playwright().start()
            launcher = getattr(playwright, engine)
            browser = await launcher.launch(**self._launch_options(engine))
            context = await browser.new_context(**self._context_options(profile))
            page = await context.new_page()
        except Exception as exc:
            await self._close_quietly(context, browser, playwright)
            raise LaunchFailure(
                f"Failed to launch {engine} for {profile.name}: {exc}",
                engine=engine,
                device_name=profile.name,
            ) from exc

        self.logger.info(f"Device session started: {profile.name} (headless={self.browser_config.headless})")
        return Session(self, profile, engine, playwright, browser, context, page)

    async def cleanup(self, session: Session) -> None:
        """Close context, browser and driver. Safe to call more than once."""
        if session.closed:
            return
        # Mark first so concurrent callers become no-ops
        session.closed = True
        await self._close_quietly(session.context, session.browser, session.playwright)
        self.logger.info(f"Device session closed: {session.profile.name}")

    async def _close_quietly(
        self,
        context: Optional[BrowserContext],
        browser: Optional[Browser],
        playwright: Optional[Playwright],
    ) -> None:
        if context is not None:
            try:
                await context.close()
            except Exception as e:
                self.logger.warning(f"Context close failed: {e}")
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                self.logger.warning(f"Browser close failed: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                self.logger.warning(f"Playwright stop failed: {e}")

    @asynccontextmanager
    async def session(self, profile_name: str) -> AsyncIterator[Session]:
        """Scoped acquisition: the session is always cleaned up on exit."""
        session = await self.launch(profile_name)
        try:
            yield session
        finally:
            await self.cleanup(session)
