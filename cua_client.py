"""Decision-service client for the OpenAI Responses API computer-use tool."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

from openai import AsyncOpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from config import DecisionConfig
from devices import DeviceProfile
from exceptions import DecisionServiceError
from prompts import MARK_DONE_TOOL, build_user_turn
from response_types import DecisionResponse
from screenshots import data_url


class DecisionService(Protocol):
    """What the execution loop needs from the decision oracle."""

    async def start(
        self,
        instructions: str,
        screenshot_b64: Optional[str] = None,
        user_info: Optional[str] = None,
    ) -> DecisionResponse:
        ...

    async def submit(
        self,
        screenshot_b64: Optional[str],
        previous_response_id: Optional[str] = None,
        last_call_id: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> DecisionResponse:
        ...

    async def submit_function_output(
        self,
        call_id: str,
        previous_response_id: Optional[str],
        output: Dict[str, Any],
    ) -> DecisionResponse:
        ...


class OpenAICUAClient:
    """Computer-use model client; one instance per session."""

    def __init__(
        self,
        config: DecisionConfig,
        profile: DeviceProfile,
        client: Optional[AsyncOpenAI] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.profile = profile
        self.logger = logger or logging.getLogger("cua_client")
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.request_timeout,
        )

    def _tools(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": "computer_use_preview",
                "display_width": self.profile.viewport_width,
                "display_height": self.profile.viewport_height,
                "environment": self.config.environment,
            },
            MARK_DONE_TOOL,
        ]

    def _payload(self, input_items: List[Dict[str, Any]], previous_response_id: Optional[str] = None, instructions: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "tools": self._tools(),
            "input": input_items,
            "reasoning": {"summary": "concise"},
            "truncation": "auto",
        }
        if previous_response_id:
            payload["previous_response_id"] = previous_response_id
        if instructions:
            payload["instructions"] = instructions
        return payload

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2.0, min=2.0, max=10),
        reraise=True,
    )
    async def _create(self, payload: Dict[str, Any]) -> DecisionResponse:
        """Call the Responses API with retry logic."""
        try:
            self.logger.debug(f"Calling {payload['model']} (previous_response_id={payload.get('previous_response_id')})")
            raw = await self.client.responses.create(**payload)
            response = DecisionResponse.from_api(raw)
        except DecisionServiceError:
            raise
        except Exception as e:
            raise DecisionServiceError(f"Model call failed: {e}") from e
        self.logger.debug(f"Response {response.id}: {[item.type for item in response.output]}")
        return response

    async def start(
        self,
        instructions: str,
        screenshot_b64: Optional[str] = None,
        user_info: Optional[str] = None,
    ) -> DecisionResponse:
        """Open the conversation with the test instructions and the first screen."""
        content: List[Dict[str, Any]] = [{"type": "input_text", "text": build_user_turn(user_info)}]
        if screenshot_b64:
            content.append({"type": "input_image", "image_url": data_url(screenshot_b64)})
        return await self._create(
            self._payload([{"role": "user", "content": content}], instructions=instructions)
        )

    async def submit(
        self,
        screenshot_b64: Optional[str],
        previous_response_id: Optional[str] = None,
        last_call_id: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> DecisionResponse:
        """Send the next observation: a screenshot for the last call and/or a text hint."""
        items: List[Dict[str, Any]] = []
        if screenshot_b64 and last_call_id:
            items.append(
                {
                    "type": "computer_call_output",
                    "call_id": last_call_id,
                    "output": {
                        "type": "computer_screenshot",
                        "image_url": data_url(screenshot_b64),
                    },
                }
            )
        elif screenshot_b64:
            items.append(
                {
                    "role": "user",
                    "content": [{"type": "input_image", "image_url": data_url(screenshot_b64)}],
                }
            )
        if hint:
            items.append({"role": "user", "content": [{"type": "input_text", "text": hint}]})
        if not items:
            raise DecisionServiceError("Nothing to submit: neither screenshot nor hint given")
        return await self._create(self._payload(items, previous_response_id))

    async def submit_function_output(
        self,
        call_id: str,
        previous_response_id: Optional[str],
        output: Dict[str, Any],
    ) -> DecisionResponse:
        item = {
            "type": "function_call_output",
            "call_id": call_id,
            "output": json.dumps(output),
        }
        return await self._create(self._payload([item], previous_response_id))
