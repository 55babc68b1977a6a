"""Execution loop: decision-service output in, input primitives out."""
from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import Page
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_fixed

from actions import ActionTranslator, describe_action
from config import LoopConfig
from cua_client import DecisionService
from exceptions import CaptureFailure, SafetyCheckTriggered
from response_types import ComputerCall, DecisionResponse, FunctionCall
from review_agent import TestScriptReviewAgent, deliver_review
from screenshots import ScreenshotStore, encode_png_base64
from session_context import SessionContext
from status import SessionStatus

MARK_DONE = "mark_done"
CONTINUE_HINT = "continue"


class ComputerUseLoop:
    """
    Drives one session until it reaches a terminal state.

    Each iteration samples the status arbiter, acts on at most one computer
    call, waits for the UI to settle, and resubmits a fresh screenshot.
    There is no iteration bound; callers enforce session-wide timeouts.
    """

    def __init__(
        self,
        decision: DecisionService,
        translator: ActionTranslator,
        context: SessionContext,
        config: Optional[LoopConfig] = None,
        review_agent: Optional[TestScriptReviewAgent] = None,
        screenshot_store: Optional[ScreenshotStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.decision = decision
        self.translator = translator
        self.context = context
        self.config = config or LoopConfig()
        self.review_agent = review_agent
        self.screenshot_store = screenshot_store
        self.logger = logger or logging.getLogger("cua_loop")

    @property
    def settle_ms(self) -> int:
        if self.context.profile.touch_capable:
            return self.config.mobile_settle_ms
        return self.config.desktop_settle_ms

    async def run(self, response: DecisionResponse, page: Optional[Page] = None) -> DecisionResponse:
        """Run until terminal; returns the last decision-service response."""
        if page is not None:
            self.context.page = page

        while True:
            status = self.context.arbiter.status
            if status is SessionStatus.FAIL:
                self.logger.debug("Test case failed. Exiting the computer use loop.")
                return response
            if status is SessionStatus.PASS:
                self.logger.debug("Test case passed. Exiting the computer use loop.")
                return response

            mark_done = response.find_function_call(MARK_DONE)
            if mark_done is not None:
                return await self._finish(response, mark_done)

            self.context.previous_response_id = response.id

            call = response.first_computer_call()
            if call is None:
                if not response.messages:
                    self.logger.debug("Response is neither a computer_call nor a message. Returning the response.")
                    return response
                response = await self._continue_after_message(response)
                continue

            self._forward_reasoning(response)

            if call.pending_safety_checks:
                self._fail_on_safety_check(call)
                return response

            self.context.last_call_id = call.call_id
            response = await self._act(response, call)

    async def _finish(self, response: DecisionResponse, call: FunctionCall) -> DecisionResponse:
        response = await self.decision.submit_function_output(call.call_id, response.id, {"status": "done"})
        self.context.emit_message("✅ Test case finished.")
        self.context.arbiter.set(SessionStatus.PASS, source=MARK_DONE)
        await self.context.session.release()
        return response

    async def _continue_after_message(self, response: DecisionResponse) -> DecisionResponse:
        message = response.messages[0]
        self.logger.debug(f"Message from the model: {message.text}")
        if message.text:
            self.context.emit_message(message.text)
        if not message.call_id:
            self.logger.debug("No call id found in message; continuing without one.")
        return await self.decision.submit(
            None,
            previous_response_id=response.id,
            last_call_id=message.call_id,
            hint=self._user_hint() or CONTINUE_HINT,
        )

    def _user_hint(self) -> Optional[str]:
        """Client chat messages waiting to ride along with the next submission."""
        texts = self.context.inbox.drain()
        if not texts:
            return None
        self.logger.debug(f"Forwarding {len(texts)} user message(s) to the model")
        return "\n\n".join(texts)

    def _forward_reasoning(self, response: DecisionResponse) -> None:
        icon = "📱" if self.context.profile.touch_capable else "🖥️"
        for item in response.reasoning:
            self.context.emit_message(f"{icon} {item.summary_text}")
            self.logger.debug(f"Model reasoning: {item.summary_text}")

    def _fail_on_safety_check(self, call: ComputerCall) -> None:
        check = call.pending_safety_checks[0]
        error = SafetyCheckTriggered(check.message, code=check.code, call_id=call.call_id)
        self.logger.error(str(error))
        for pending in call.pending_safety_checks:
            self.context.emit_message(f"Safety check detected: {pending.message}")
        self.context.emit_message("Test case failed. Exiting the computer use loop.")
        self.context.arbiter.set(SessionStatus.FAIL, source="safety check", reason=error.message)

    async def _act(self, response: DecisionResponse, call: ComputerCall) -> DecisionResponse:
        page = self.context.page

        if self.review_agent is not None and self.translator.should_review(call.action):
            await self._review_before(page, call)

        outcome = await self.translator.apply(page, call.action)
        if not outcome.ok:
            self.context.emit_message(f"Action {outcome.description} failed: {outcome.error}; continuing")

        if self.settle_ms > 0:
            try:
                await page.wait_for_timeout(self.settle_ms)
            except Exception as e:
                self.logger.warning(f"Settle wait interrupted: {e}")

        pages = self.context.session.pages()
        if pages and pages[-1] is not page:
            return await self._retarget(pages[-1], response, call)

        shot = await self.capture(page, label=call.action_type or "step")
        return await self.decision.submit(
            shot,
            previous_response_id=response.id,
            last_call_id=call.call_id,
            hint=self._user_hint(),
        )

    async def _review_before(self, page: Page, call: ComputerCall) -> None:
        try:
            shot = await page.screenshot(full_page=True)
        except Exception as e:
            self.logger.warning(f"Pre-action screenshot failed, skipping review: {e}")
            self.context.emit_message(f"Pre-action screenshot failed, skipping review: {e}")
            return
        label = f"{self.context.review_label} - {describe_action(call.action)}"
        self.context.track(
            deliver_review(self.review_agent, self.context, encode_png_base64(shot), label),
            name=f"review-{call.call_id}",
        )

    async def _retarget(self, new_page: Page, response: DecisionResponse, call: ComputerCall) -> DecisionResponse:
        """Switch to a newly opened tab; the old one is left open."""
        self.logger.info("New tab detected. Switching context to the new tab.")
        await new_page.set_viewport_size(self.context.profile.viewport)
        shot = await self.capture(new_page, label="new-tab")
        self.context.page = new_page
        return await self.decision.submit(
            shot,
            previous_response_id=response.id,
            last_call_id=call.call_id,
            hint=self._user_hint(),
        )

    async def capture(self, page: Page, label: str = "step") -> str:
        """Full-page screenshot with bounded retry; raises CaptureFailure when exhausted."""
        attempts = self.config.capture_attempts

        def _log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            self.logger.error(f"Screenshot attempt {state.attempt_number} failed: {error}")
            self.context.emit_message(
                f"Screenshot attempt {state.attempt_number} of {attempts} failed: {error}; retrying"
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_fixed(self.config.capture_backoff_seconds),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    data = await page.screenshot(full_page=True)
        except Exception as e:
            raise CaptureFailure(f"Failed to capture screenshot after {attempts} attempts: {e}", attempts=attempts) from e

        if self.screenshot_store is not None:
            self.screenshot_store.save(data, label)
        return encode_png_base64(data)
