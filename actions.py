"""Action translation: abstract action descriptors to Playwright input primitives.

Two closed vocabularies are supported. Touch-capable devices get the mobile
gesture set (tap, swipe, pinch, ...) and also accept the computer-use tool's
pointer shapes, which are delivered as touch gestures. Pointer devices get the
computer-use shapes only (click, drag, keypress, ...). Descriptors arrive as
untyped dicts and are validated here; anything that fails validation or
execution is logged and reported back as a failed outcome so the loop can
re-plan.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, FrozenSet, List, Literal, Mapping, Optional, Type

from playwright.async_api import Page
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from devices import DeviceProfile
from exceptions import ActionTranslationError, UnknownActionVariant

DOUBLE_TAP_PAUSE_MS = 100
SWIPE_STEPS = 10
PINCH_START_DISTANCE = 100.0
LANDSCAPE_VIEWPORT = {"width": 852, "height": 393}
PORTRAIT_VIEWPORT = {"width": 393, "height": 852}

CUA_KEY_TO_PLAYWRIGHT_KEY = {
    "ENTER": "Enter",
    "RETURN": "Enter",
    "ESC": "Escape",
    "ESCAPE": "Escape",
    "TAB": "Tab",
    "SPACE": "Space",
    "BACKSPACE": "Backspace",
    "DELETE": "Delete",
    "DEL": "Delete",
    "HOME": "Home",
    "END": "End",
    "PAGEUP": "PageUp",
    "PAGEDOWN": "PageDown",
    "ARROWUP": "ArrowUp",
    "ARROWDOWN": "ArrowDown",
    "ARROWLEFT": "ArrowLeft",
    "ARROWRIGHT": "ArrowRight",
    "UP": "ArrowUp",
    "DOWN": "ArrowDown",
    "LEFT": "ArrowLeft",
    "RIGHT": "ArrowRight",
    "CTRL": "Control",
    "CONTROL": "Control",
    "ALT": "Alt",
    "OPTION": "Alt",
    "SHIFT": "Shift",
    "META": "Meta",
    "CMD": "Meta",
    "COMMAND": "Meta",
    "SUPER": "Meta",
    "CAPSLOCK": "CapsLock",
}


def normalize_key(key: str) -> str:
    """Map a computer-use key token to Playwright's key name."""
    token = key.strip()
    upper = token.upper()
    if upper in CUA_KEY_TO_PLAYWRIGHT_KEY:
        return CUA_KEY_TO_PLAYWRIGHT_KEY[upper]
    if upper.startswith("F") and upper[1:].isdigit():
        return upper
    if len(token) == 1:
        return token
    return token.capitalize()


class ActionDescriptor(BaseModel):
    """Base for one validated input operation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    type: str

    async def perform(self, page: Page) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return self.type


# ─────────────────────────────────────────────────────────────────────────
# Shared descriptors
# ─────────────────────────────────────────────────────────────────────────


class TypeTextAction(ActionDescriptor):
    type: Literal["type"]
    text: str

    async def perform(self, page: Page) -> None:
        await page.keyboard.type(self.text)

    def describe(self) -> str:
        return f"type text '{self.text}'"


class FocusAction(ActionDescriptor):
    type: Literal["focus"]
    selector: str = Field(min_length=1)

    async def perform(self, page: Page) -> None:
        await page.focus(self.selector)

    def describe(self) -> str:
        return f"focus on '{self.selector}'"


class WaitAction(ActionDescriptor):
    type: Literal["wait"]
    duration: int = Field(default=2000, ge=0, validation_alias=AliasChoices("duration", "ms"))

    async def perform(self, page: Page) -> None:
        await page.wait_for_timeout(self.duration)

    def describe(self) -> str:
        return f"wait for {self.duration}ms"


class ScreenshotAction(ActionDescriptor):
    """Capture belongs to the loop; nothing to do here."""

    type: Literal["screenshot"]

    async def perform(self, page: Page) -> None:
        return None


# ─────────────────────────────────────────────────────────────────────────
# Mobile (touch) vocabulary
# ─────────────────────────────────────────────────────────────────────────


class TapAction(ActionDescriptor):
    type: Literal["tap"]
    x: float
    y: float

    async def perform(self, page: Page) -> None:
        await page.touchscreen.tap(self.x, self.y)

    def describe(self) -> str:
        return f"tap at ({self.x}, {self.y})"


class DoubleTapAction(ActionDescriptor):
    """Two discrete taps, not a native double-tap gesture."""

    type: Literal["double_tap"]
    x: float
    y: float

    async def perform(self, page: Page) -> None:
        await page.touchscreen.tap(self.x, self.y)
        await page.wait_for_timeout(DOUBLE_TAP_PAUSE_MS)
        await page.touchscreen.tap(self.x, self.y)

    def describe(self) -> str:
        return f"double tap at ({self.x}, {self.y})"


class LongPressAction(ActionDescriptor):
    """Pointer down, hold, pointer up (touch primitives have no hold)."""

    type: Literal["long_press"]
    x: float
    y: float
    duration: int = Field(default=1000, ge=0)

    async def perform(self, page: Page) -> None:
        await page.mouse.move(self.x, self.y)
        await page.mouse.down()
        await page.wait_for_timeout(self.duration)
        await page.mouse.up()

    def describe(self) -> str:
        return f"long press at ({self.x}, {self.y}) for {self.duration}ms"


class SwipeAction(ActionDescriptor):
    type: Literal["swipe"]
    start_x: float = Field(alias="startX")
    start_y: float = Field(alias="startY")
    end_x: float = Field(alias="endX")
    end_y: float = Field(alias="endY")
    # Accepted for compatibility; the path always uses SWIPE_STEPS moves
    duration: int = Field(default=300, ge=0)

    async def perform(self, page: Page) -> None:
        await page.mouse.move(self.start_x, self.start_y)
        await page.mouse.down()
        await page.mouse.move(self.end_x, self.end_y, steps=SWIPE_STEPS)
        await page.mouse.up()

    def describe(self) -> str:
        return f"swipe from ({self.start_x}, {self.start_y}) to ({self.end_x}, {self.end_y})"


class PinchAction(ActionDescriptor):
    """
    Two-point pinch approximated with the primary and secondary mouse buttons.

    The fingers start PINCH_START_DISTANCE apart on a horizontal line through
    the center and end PINCH_START_DISTANCE * scale apart. Only the end points
    are visited, there is no intermediate interpolation.
    """

    type: Literal["pinch"]
    center_x: float = Field(alias="centerX")
    center_y: float = Field(alias="centerY")
    scale: float = Field(ge=0)

    def points(self) -> tuple[tuple[float, float], tuple[float, float], tuple[float, float], tuple[float, float]]:
        start_half = PINCH_START_DISTANCE / 2
        end_half = PINCH_START_DISTANCE * self.scale / 2
        return (
            (self.center_x - start_half, self.center_y),
            (self.center_x + start_half, self.center_y),
            (self.center_x - end_half, self.center_y),
            (self.center_x + end_half, self.center_y),
        )

    async def perform(self, page: Page) -> None:
        p1_start, p2_start, p1_end, p2_end = self.points()
        await page.mouse.move(*p1_start)
        await page.mouse.down()
        await page.mouse.move(*p2_start)
        await page.mouse.down(button="right")

        await page.mouse.move(*p1_end)
        await page.mouse.move(*p2_end)

        await page.mouse.up()
        await page.mouse.up(button="right")

    def describe(self) -> str:
        return f"pinch at ({self.center_x}, {self.center_y}) with scale {self.scale}"


class MobileScrollAction(ActionDescriptor):
    type: Literal["scroll"]
    x: float
    y: float
    delta_x: float = Field(default=0, validation_alias=AliasChoices("deltaX", "delta_x", "scroll_x"))
    delta_y: float = Field(default=0, validation_alias=AliasChoices("deltaY", "delta_y", "scroll_y"))

    async def perform(self, page: Page) -> None:
        await page.mouse.move(self.x, self.y)
        await page.mouse.wheel(self.delta_x, self.delta_y)

    def describe(self) -> str:
        return f"scroll at ({self.x}, {self.y}) with delta ({self.delta_x}, {self.delta_y})"


class KeyAction(ActionDescriptor):
    type: Literal["key"]
    key: str = Field(min_length=1)

    async def perform(self, page: Page) -> None:
        await page.keyboard.press(self.key)

    def describe(self) -> str:
        return f"press key '{self.key}'"


class RotateAction(ActionDescriptor):
    """Fixed phone-sized viewport regardless of the active device."""

    type: Literal["rotate"]
    orientation: Literal["landscape", "portrait"]

    async def perform(self, page: Page) -> None:
        if self.orientation == "landscape":
            await page.set_viewport_size(LANDSCAPE_VIEWPORT)
        else:
            await page.set_viewport_size(PORTRAIT_VIEWPORT)

    def describe(self) -> str:
        return f"rotate to {self.orientation}"


# ─────────────────────────────────────────────────────────────────────────
# Desktop (pointer + keyboard) vocabulary
# ─────────────────────────────────────────────────────────────────────────


class ClickAction(ActionDescriptor):
    type: Literal["click"]
    x: float
    y: float
    button: Literal["left", "right", "wheel", "middle", "back", "forward"] = "left"

    async def perform(self, page: Page) -> None:
        if self.button == "back":
            await page.go_back()
        elif self.button == "forward":
            await page.go_forward()
        else:
            button = "middle" if self.button in ("wheel", "middle") else self.button
            await page.mouse.click(self.x, self.y, button=button)

    def describe(self) -> str:
        return f"{self.button} click at ({self.x}, {self.y})"


class DoubleClickAction(ActionDescriptor):
    type: Literal["double_click"]
    x: float
    y: float

    async def perform(self, page: Page) -> None:
        await page.mouse.dblclick(self.x, self.y)

    def describe(self) -> str:
        return f"double click at ({self.x}, {self.y})"


class MoveAction(ActionDescriptor):
    type: Literal["move"]
    x: float
    y: float

    async def perform(self, page: Page) -> None:
        await page.mouse.move(self.x, self.y)

    def describe(self) -> str:
        return f"move to ({self.x}, {self.y})"


class PathPoint(BaseModel):
    x: float
    y: float


class DragAction(ActionDescriptor):
    type: Literal["drag"]
    path: List[PathPoint] = Field(min_length=2)

    async def perform(self, page: Page) -> None:
        first, *rest = self.path
        await page.mouse.move(first.x, first.y)
        await page.mouse.down()
        for point in rest:
            await page.mouse.move(point.x, point.y)
        await page.mouse.up()

    def describe(self) -> str:
        start, end = self.path[0], self.path[-1]
        return f"drag from ({start.x}, {start.y}) to ({end.x}, {end.y})"


class DesktopScrollAction(ActionDescriptor):
    type: Literal["scroll"]
    x: float
    y: float
    scroll_x: float = 0
    scroll_y: float = 0

    async def perform(self, page: Page) -> None:
        await page.mouse.move(self.x, self.y)
        await page.mouse.wheel(self.scroll_x, self.scroll_y)

    def describe(self) -> str:
        return f"scroll at ({self.x}, {self.y}) by ({self.scroll_x}, {self.scroll_y})"


class KeypressAction(ActionDescriptor):
    """Keys pressed together as one chord (e.g. CTRL + A)."""

    type: Literal["keypress"]
    keys: List[str] = Field(min_length=1)

    async def perform(self, page: Page) -> None:
        await page.keyboard.press("+".join(normalize_key(k) for k in self.keys))

    def describe(self) -> str:
        return f"press keys {'+'.join(self.keys)}"


# ─────────────────────────────────────────────────────────────────────────
# Computer-use shapes on touch devices
# ─────────────────────────────────────────────────────────────────────────


class TouchClickAction(TapAction):
    """A computer-use click delivered as a tap; the button is ignored."""

    type: Literal["click"]
    button: str = "left"


class TouchDoubleClickAction(DoubleTapAction):
    type: Literal["double_click"]


class TouchDragAction(DragAction):
    """A computer-use drag path delivered as a swipe between its end points."""

    async def perform(self, page: Page) -> None:
        start, end = self.path[0], self.path[-1]
        await page.mouse.move(start.x, start.y)
        await page.mouse.down()
        await page.mouse.move(end.x, end.y, steps=SWIPE_STEPS)
        await page.mouse.up()

    def describe(self) -> str:
        start, end = self.path[0], self.path[-1]
        return f"swipe from ({start.x}, {start.y}) to ({end.x}, {end.y})"


# ─────────────────────────────────────────────────────────────────────────
# Translators
# ─────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ActionOutcome:
    """What happened to one descriptor; error is set when it was a no-op."""

    ok: bool
    description: str
    error: Optional[str] = None


class ActionTranslator:
    """Validates a raw descriptor against one vocabulary and executes it."""

    vocabulary: ClassVar[str] = "base"
    ACTIONS: ClassVar[Mapping[str, Type[ActionDescriptor]]] = {}
    # Actions whose pre-action screen is sent to the reviewer
    REVIEW_BEFORE: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("actions")

    def parse(self, payload: Mapping[str, Any]) -> ActionDescriptor:
        """Validate a raw payload into a descriptor of this vocabulary."""
        if not isinstance(payload, Mapping):
            raise ActionTranslationError(f"Action payload must be a mapping, got {type(payload).__name__}")
        action_type = payload.get("type")
        model = self.ACTIONS.get(action_type) if isinstance(action_type, str) else None
        if model is None:
            raise UnknownActionVariant(action_type, self.vocabulary)
        try:
            return model.model_validate(dict(payload))
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise ActionTranslationError(f"Invalid {action_type} action: {errors}", dict(payload)) from exc

    def should_review(self, payload: Mapping[str, Any]) -> bool:
        return isinstance(payload, Mapping) and payload.get("type") in self.REVIEW_BEFORE

    async def apply(self, page: Page, payload: Mapping[str, Any]) -> ActionOutcome:
        """
        Execute one descriptor against the page.

        Never raises: unknown variants, invalid fields and target errors are
        logged with the offending descriptor and reported as a failed outcome
        carrying the reason.
        """
        self.logger.debug(f"Handling {self.vocabulary} action: {payload}")
        action_type = payload.get("type") if isinstance(payload, Mapping) else None
        label = str(action_type or "action")
        try:
            action = self.parse(payload)
        except UnknownActionVariant as exc:
            self.logger.error(f"Unrecognized {self.vocabulary} action: {payload}")
            return ActionOutcome(False, label, exc.message)
        except ActionTranslationError as exc:
            self.logger.error(f"Rejected {self.vocabulary} action: {exc}")
            return ActionOutcome(False, label, exc.message)

        description = action.describe()
        try:
            self.logger.debug(f"{self.vocabulary.capitalize()} action: {description}")
            await action.perform(page)
        except Exception as exc:
            self.logger.error(f"Error handling {self.vocabulary} action: {payload}, error: {exc}")
            return ActionOutcome(False, description, str(exc) or type(exc).__name__)
        return ActionOutcome(True, description)


class MobileActionTranslator(ActionTranslator):
    vocabulary = "mobile"
    ACTIONS = {
        "tap": TapAction,
        "double_tap": DoubleTapAction,
        "long_press": LongPressAction,
        "swipe": SwipeAction,
        "pinch": PinchAction,
        "scroll": MobileScrollAction,
        "type": TypeTextAction,
        "key": KeyAction,
        "focus": FocusAction,
        "wait": WaitAction,
        "screenshot": ScreenshotAction,
        "rotate": RotateAction,
        "click": TouchClickAction,
        "double_click": TouchDoubleClickAction,
        "drag": TouchDragAction,
        "keypress": KeypressAction,
        "move": MoveAction,
    }
    REVIEW_BEFORE = frozenset({"tap", "swipe", "long_press", "click", "double_click", "drag"})


class DesktopActionTranslator(ActionTranslator):
    vocabulary = "desktop"
    ACTIONS = {
        "click": ClickAction,
        "double_click": DoubleClickAction,
        "move": MoveAction,
        "drag": DragAction,
        "scroll": DesktopScrollAction,
        "type": TypeTextAction,
        "keypress": KeypressAction,
        "focus": FocusAction,
        "wait": WaitAction,
        "screenshot": ScreenshotAction,
    }
    REVIEW_BEFORE = frozenset({"click", "double_click", "drag"})


def translator_for(profile: DeviceProfile, logger: Optional[logging.Logger] = None) -> ActionTranslator:
    """Touch-capable devices speak the mobile vocabulary, the rest the desktop one."""
    if profile.touch_capable:
        return MobileActionTranslator(logger=logger)
    return DesktopActionTranslator(logger=logger)


def describe_action(payload: Mapping[str, Any]) -> str:
    """Short label for the reviewer, e.g. 'Before tap'."""
    action_type = payload.get("type") if isinstance(payload, Mapping) else None
    return f"Before {action_type or 'action'}"

