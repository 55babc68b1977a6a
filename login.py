"""Login step run before the computer-use loop when a request asks for one."""
from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import Page

from config import LoginConfig
from exceptions import LoginFailure


class LoginService:
    """Fills and submits a plain user name / password form."""

    def __init__(self, config: Optional[LoginConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or LoginConfig()
        self.logger = logger or logging.getLogger("login")

    async def fill_credentials(self, page: Page, user_name: str, password: str) -> None:
        fields = (
            ("user name", self.config.username_selector, user_name),
            ("password", self.config.password_selector, password),
        )
        for label, selector, value in fields:
            try:
                await page.fill(selector, value)
            except Exception as e:
                raise LoginFailure(f"Could not fill the {label} field: {e}", selector=selector) from e
        self.logger.debug("Login credentials filled")

    async def submit(self, page: Page) -> None:
        selector = self.config.submit_selector
        try:
            await page.click(selector)
        except Exception as e:
            raise LoginFailure(f"Could not click the login button: {e}", selector=selector) from e
        self.logger.debug("Login form submitted")
