"""Reviewer agent: tracks per-step test progress from screenshots."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError
from tenacity import retry, stop_after_attempt, wait_exponential

from config import ReviewConfig
from exceptions import ReviewError
from prompts import REVIEW_SYSTEM_PROMPT
from response_types import DecisionResponse, json_object_text
from screenshots import data_url, encode_png_base64
from status import SessionStatus, StatusArbiter

if TYPE_CHECKING:
    from session_context import SessionContext

StepStatus = Literal["pending", "pass", "fail"]


class ReviewStep(BaseModel):
    step_number: int
    step_instructions: str = ""
    status: StepStatus = "pending"
    step_reasoning: str = ""


class ReviewResult(BaseModel):
    """Reviewer's view of every test step at one point in time."""

    steps: List[ReviewStep] = Field(default_factory=list)

    @property
    def verdict(self) -> SessionStatus:
        if any(s.status == "fail" for s in self.steps):
            return SessionStatus.FAIL
        if self.steps and all(s.status == "pass" for s in self.steps):
            return SessionStatus.PASS
        return SessionStatus.PENDING

    @property
    def failed_steps(self) -> List[ReviewStep]:
        return [s for s in self.steps if s.status == "fail"]


def parse_review(text: str) -> ReviewResult:
    """Parse the reviewer's JSON answer, tolerating markdown code fences."""
    body = json_object_text(text)
    if body is None:
        raise ReviewError("Reviewer returned no JSON object", {"response_preview": text[:200]})
    try:
        return ReviewResult.model_validate(json.loads(body))
    except (ValueError, ValidationError) as e:
        raise ReviewError(f"Invalid reviewer response: {e}", {"response_preview": text[:200]}) from e


def apply_verdict(arbiter: StatusArbiter, result: ReviewResult, source: str = "reviewer") -> bool:
    """Write a terminal verdict into the arbiter; pending verdicts are not written."""
    verdict = result.verdict
    if verdict is SessionStatus.PENDING:
        return False
    reason = None
    if verdict is SessionStatus.FAIL:
        reason = "; ".join(
            f"Step {s.step_number} failed: {s.step_reasoning or s.step_instructions}" for s in result.failed_steps
        )
    return arbiter.set(verdict, source=source, reason=reason)


class TestScriptReviewAgent:
    """
    Conversation with a vision model that grades test steps.

    The conversation is seeded once with the test steps; each review adds a
    screenshot and chains on the previous response id. Calls are serialised
    because every review depends on the previous one.
    """

    __test__ = False

    def __init__(
        self,
        config: ReviewConfig,
        client: Optional[AsyncOpenAI] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.client = client or AsyncOpenAI()
        self.logger = logger or logging.getLogger("review_agent")
        self.previous_response_id: Optional[str] = None
        self.latest: Optional[ReviewResult] = None
        self._lock = asyncio.Lock()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2.0, min=2.0, max=10),
        reraise=True,
    )
    async def _call_model(self, content: List[Dict[str, Any]]) -> ReviewResult:
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "instructions": REVIEW_SYSTEM_PROMPT,
            "input": [{"role": "user", "content": content}],
            "text": {"format": {"type": "json_object"}},
        }
        if self.previous_response_id:
            payload["previous_response_id"] = self.previous_response_id
        try:
            raw = await self.client.responses.create(**payload)
        except Exception as e:
            raise ReviewError(f"Reviewer call failed: {e}") from e
        response = DecisionResponse.from_api(raw)
        result = parse_review("\n".join(response.output_text()))
        self.previous_response_id = response.id
        self.latest = result
        return result

    async def instantiate(self, instructions: str) -> ReviewResult:
        """Seed the conversation with the test steps. Call once per session."""
        async with self._lock:
            self.previous_response_id = None
            result = await self._call_model([{"type": "input_text", "text": instructions}])
        self.logger.debug(f"Review agent initialised with {len(result.steps)} step(s)")
        return result

    async def review(self, screenshot_b64: str, context_label: str) -> ReviewResult:
        """Grade the steps against a new screenshot."""
        async with self._lock:
            self.logger.debug(f"Reviewing screenshot: {context_label}")
            return await self._call_model(
                [
                    {"type": "input_text", "text": context_label},
                    {"type": "input_image", "image_url": data_url(screenshot_b64)},
                ]
            )


class ReviewWatcher:
    """Periodic reviewer running alongside the loop; writes verdicts into the arbiter."""

    def __init__(self, agent: TestScriptReviewAgent, logger: Optional[logging.Logger] = None):
        self.agent = agent
        self.logger = logger or logging.getLogger("review_agent")

    async def run(self, context: "SessionContext", interval: float) -> None:
        while not context.arbiter.is_terminal and not context.closed:
            await asyncio.sleep(interval)
            if context.arbiter.is_terminal or context.closed:
                break
            try:
                shot = await context.page.screenshot(full_page=True)
                result = await self.agent.review(
                    encode_png_base64(shot), f"{context.review_label} - Periodic check"
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Periodic review failed: {e}")
                context.emit_review({"error": "Review processing failed."})
                continue

            context.emit_review(result.model_dump())
            if apply_verdict(context.arbiter, result, source="review watcher"):
                context.emit_message(f"Reviewer set test case status to {context.arbiter.status.value}.")
        self.logger.debug("Review watcher stopped")


async def deliver_review(
    agent: TestScriptReviewAgent,
    context: "SessionContext",
    screenshot_b64: str,
    context_label: str,
) -> Optional[ReviewResult]:
    """Review one screenshot and emit the outcome; failures are emitted, never raised."""
    try:
        result = await agent.review(screenshot_b64, context_label)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        agent.logger.error(f"Error during test script review: {e}")
        context.emit_review({"error": "Review processing failed."})
        return None
    context.emit_review(result.model_dump())
    return result
