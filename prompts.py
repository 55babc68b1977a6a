"""Instruction builders and tool definitions for the computer-use model and the reviewer"""
import re
from typing import Any, Dict, List, Optional

from devices import DeviceProfile

MARK_DONE_TOOL: Dict[str, Any] = {
    "type": "function",
    "name": "mark_done",
    "description": "Call this once every test step has been executed and the test case is complete.",
    "parameters": {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    },
}

_STEP_PREFIX = re.compile(r"^\s*(?:step\s*)?\d+\s*[.):-]\s*|^\s*[-*•]\s+", re.IGNORECASE)


def split_test_case(test_case: str) -> List[Dict[str, Any]]:
    """
    Split a free-form test case into numbered steps.

    One step per non-empty line; list markers ("1.", "Step 2:", "-") are
    stripped. A single-line test case is split on sentence boundaries.
    """
    lines = [line.strip() for line in test_case.splitlines() if line.strip()]
    if len(lines) == 1:
        lines = [s.strip() for s in re.split(r"(?<=[.!?])\s+", lines[0]) if s.strip()]

    steps = []
    for line in lines:
        text = _STEP_PREFIX.sub("", line).strip()
        if text:
            steps.append(
                {
                    "step_number": len(steps) + 1,
                    "step_instructions": text,
                    "status": "pending",
                }
            )
    return steps


def convert_test_case_to_steps(test_case: Dict[str, Any]) -> str:
    """Render {"steps": [...]} as the numbered script the computer-use model follows."""
    steps = test_case.get("steps") or []
    return "\n".join(
        f"Step {step.get('step_number', i)}: {step.get('step_instructions', '')}"
        for i, step in enumerate(steps, 1)
    )


def device_hint(profile: DeviceProfile) -> str:
    if profile.touch_capable:
        return (
            f"IMPORTANT: You are testing on a mobile device ({profile.name}). "
            "Use mobile-appropriate interactions like tap, swipe, and scroll. "
            "Consider mobile UI patterns and responsive design."
        )
    return (
        f"IMPORTANT: You are testing on a desktop browser ({profile.name}). "
        "Use pointer and keyboard interactions such as click, scroll and keypress."
    )


def build_session_instructions(test_script: str, url: str, profile: DeviceProfile) -> str:
    """System instructions for the computer-use model."""
    return f"""You are a meticulous QA tester operating a real browser on {profile.name} ({profile.platform}).

The screen's resolution is {profile.viewport_width}x{profile.viewport_height} pixels.
The application under test is already open at {url}.

Execute the following test script step by step:
{test_script}

Core testing rules:
- Perform one action at a time and look at the new screenshot before deciding the next one.
- Never ask for confirmation; carry out each step directly.
- Do not invent data; use the values given in the test script or user info.
- When every step has been executed, call the `mark_done` function.

{device_hint(profile)}"""


def build_user_turn(user_info: Optional[str]) -> str:
    text = "Start executing the test script now."
    if user_info:
        text += f"\n\nUSER INFO:\n{user_info}"
    return text


def build_review_instructions(test_case_json: str, profile: DeviceProfile) -> str:
    """Seed message for the reviewer conversation."""
    heading = "MOBILE TESTING INSTRUCTIONS" if profile.touch_capable else "TESTING INSTRUCTIONS"
    return f"{heading}:\n{test_case_json}\nDevice: {profile.name} ({profile.platform})"


REVIEW_SYSTEM_PROMPT = """You review the progress of an automated UI test.

You receive the list of test steps once, then a sequence of screenshots of the
application taken while the test runs. For every screenshot, decide for each
step whether it is still pending, has visibly passed, or has visibly failed.

Rules:
- Mark a step "pass" only when the screenshot clearly shows its expected outcome.
- Mark a step "fail" only when the screenshot clearly shows an error or an outcome that contradicts the step.
- Otherwise keep the step "pending". Never move a step back to "pending" once decided.

Respond with JSON only, in this shape:
{"steps": [{"step_number": 1, "step_instructions": "...", "status": "pending|pass|fail", "step_reasoning": "..."}]}"""


def build_test_case_message(
    test_case: str,
    url: str,
    profile: DeviceProfile,
    user_name: Optional[str] = None,
    user_info: Optional[str] = None,
) -> str:
    """First user turn for the test case agent. The password is always masked."""
    text = f"{test_case} URL: {url}"
    if user_name:
        text += f" User Name: {user_name} Password: *********"
    return f"{text}\n USER INFO:\n{user_info or ''}\n DEVICE: {profile.name} ({profile.platform})"


def build_test_case_agent_prompt(login_required: bool) -> str:
    """System instructions for turning a free-form test case into steps."""
    if login_required:
        login_rule = (
            "- The harness fills in the login form before the test starts. Make the first step "
            "\"Log in with the provided user name and password\" and never spell out credentials."
        )
    else:
        login_rule = "- No login is needed. Do not add login steps."
    return f"""You turn a free-form UI test case into an ordered list of small, checkable test steps.

Rules:
- One user-visible action or check per step, in the order they must happen.
- Keep the wording of the test case; do not invent pages, data or expectations.
- Use the user info only where a step needs it.
{login_rule}

Respond with JSON only, in this shape:
{{"steps": [{{"step_number": 1, "step_instructions": "...", "status": "pending"}}]}}"""
