"""Typed view over decision-service responses."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from exceptions import DecisionResponseError

logger = logging.getLogger("cua_client")


@dataclass
class SafetyCheck:
    id: str
    code: Optional[str] = None
    message: str = ""


@dataclass
class ComputerCall:
    """One requested action plus its correlation id."""

    call_id: str
    action: Dict[str, Any]
    pending_safety_checks: List[SafetyCheck] = field(default_factory=list)
    type: str = "computer_call"

    @property
    def action_type(self) -> Optional[str]:
        value = self.action.get("type")
        return str(value) if value is not None else None


@dataclass
class FunctionCall:
    name: str
    call_id: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    type: str = "function_call"


@dataclass
class MessageItem:
    text: str
    call_id: Optional[str] = None
    type: str = "message"


@dataclass
class ReasoningItem:
    summary: List[str] = field(default_factory=list)
    type: str = "reasoning"

    @property
    def summary_text(self) -> str:
        return " ".join(s for s in self.summary if s) or "No reasoning provided"


OutputItem = Union[ComputerCall, FunctionCall, MessageItem, ReasoningItem]


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    raise DecisionResponseError(f"Unsupported response type: {type(obj).__name__}")


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {"raw": raw}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, dict) and block.get("text"):
            parts.append(str(block["text"]))
    return "\n".join(parts)


def parse_output_item(item: Dict[str, Any]) -> Optional[OutputItem]:
    """Convert one raw output item; unknown item types yield None."""
    item_type = item.get("type")
    if item_type == "computer_call":
        checks = [
            SafetyCheck(
                id=str(c.get("id", "")),
                code=c.get("code"),
                message=str(c.get("message") or ""),
            )
            for c in item.get("pending_safety_checks") or []
        ]
        return ComputerCall(
            call_id=str(item.get("call_id") or ""),
            action=dict(item.get("action") or {}),
            pending_safety_checks=checks,
        )
    if item_type == "function_call":
        return FunctionCall(
            name=str(item.get("name") or ""),
            call_id=str(item.get("call_id") or ""),
            arguments=_parse_arguments(item.get("arguments")),
        )
    if item_type == "message":
        return MessageItem(text=_message_text(item.get("content")), call_id=item.get("call_id"))
    if item_type == "reasoning":
        summary = [
            s.get("text", "") if isinstance(s, dict) else str(s)
            for s in item.get("summary") or []
        ]
        return ReasoningItem(summary=summary)
    logger.debug(f"Skipping output item of type {item_type!r}")
    return None


@dataclass
class DecisionResponse:
    """Ordered output items returned by one decision-service turn."""

    id: Optional[str]
    output: List[OutputItem] = field(default_factory=list)

    @classmethod
    def from_api(cls, response: Any) -> "DecisionResponse":
        data = _as_dict(response)
        items = []
        for raw in data.get("output") or []:
            parsed = parse_output_item(_as_dict(raw))
            if parsed is not None:
                items.append(parsed)
        return cls(id=data.get("id"), output=items)

    @property
    def computer_calls(self) -> List[ComputerCall]:
        return [i for i in self.output if isinstance(i, ComputerCall)]

    @property
    def function_calls(self) -> List[FunctionCall]:
        return [i for i in self.output if isinstance(i, FunctionCall)]

    @property
    def messages(self) -> List[MessageItem]:
        return [i for i in self.output if isinstance(i, MessageItem)]

    @property
    def reasoning(self) -> List[ReasoningItem]:
        return [i for i in self.output if isinstance(i, ReasoningItem)]

    def first_computer_call(self) -> Optional[ComputerCall]:
        calls = self.computer_calls
        return calls[0] if calls else None

    def find_function_call(self, name: str) -> Optional[FunctionCall]:
        return next((c for c in self.function_calls if c.name == name), None)

    def output_text(self) -> List[str]:
        return [m.text for m in self.messages if m.text]


def json_object_text(text: str) -> Optional[str]:
    """The outermost JSON object in a model answer, tolerating markdown code fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        return None
    return cleaned[start : end + 1]
