"""Unit tests for actions module."""
from __future__ import annotations

from unittest.mock import call

import pytest

from actions import (
    DesktopActionTranslator,
    MobileActionTranslator,
    PinchAction,
    SwipeAction,
    describe_action,
    normalize_key,
    translator_for,
)
from devices import default_catalog
from exceptions import ActionTranslationError, UnknownActionVariant
from conftest import make_page


def parse_mobile(payload):
    return MobileActionTranslator().parse(payload)


def parse_desktop(payload):
    return DesktopActionTranslator().parse(payload)

MOBILE_SAMPLES = [
    {"type": "tap", "x": 10, "y": 20},
    {"type": "double_tap", "x": 10, "y": 20},
    {"type": "long_press", "x": 10, "y": 20},
    {"type": "swipe", "startX": 0, "startY": 400, "endX": 0, "endY": 100},
    {"type": "pinch", "centerX": 200, "centerY": 300, "scale": 2},
    {"type": "scroll", "x": 100, "y": 100, "deltaY": 300},
    {"type": "type", "text": "hello"},
    {"type": "key", "key": "Enter"},
    {"type": "focus", "selector": "#search"},
    {"type": "wait"},
    {"type": "screenshot"},
    {"type": "rotate", "orientation": "landscape"},
]

DESKTOP_SAMPLES = [
    {"type": "click", "x": 10, "y": 20},
    {"type": "double_click", "x": 10, "y": 20},
    {"type": "move", "x": 10, "y": 20},
    {"type": "drag", "path": [{"x": 0, "y": 0}, {"x": 50, "y": 50}]},
    {"type": "scroll", "x": 10, "y": 20, "scroll_x": 0, "scroll_y": 200},
    {"type": "type", "text": "hello"},
    {"type": "keypress", "keys": ["CTRL", "A"]},
    {"type": "focus", "selector": "input"},
    {"type": "wait", "ms": 100},
    {"type": "screenshot"},
]


class TestNormalizeKey:
    """Tests for key name normalisation."""

    def test_named_keys_are_mapped(self):
        assert normalize_key("ENTER") == "Enter"
        assert normalize_key("ctrl") == "Control"
        assert normalize_key("ArrowLeft") == "ArrowLeft"
        assert normalize_key("ESC") == "Escape"

    def test_function_keys_are_uppercased(self):
        assert normalize_key("f5") == "F5"

    def test_single_characters_kept(self):
        assert normalize_key("a") == "a"
        assert normalize_key("/") == "/"


class TestParseAction:
    """Tests for descriptor validation."""

    def test_camel_case_aliases_accepted(self):
        action = parse_mobile({"type": "swipe", "startX": 1, "startY": 2, "endX": 3, "endY": 4})
        assert isinstance(action, SwipeAction)
        assert (action.start_x, action.end_y) == (1, 4)
        assert action.duration == 300

    def test_snake_case_names_accepted(self):
        action = parse_mobile({"type": "swipe", "start_x": 1, "start_y": 2, "end_x": 3, "end_y": 4})
        assert action.end_x == 3

    def test_defaults_applied(self):
        assert parse_mobile({"type": "long_press", "x": 1, "y": 1}).duration == 1000
        assert parse_mobile({"type": "wait"}).duration == 2000

    def test_unknown_type_rejected(self):
        with pytest.raises(UnknownActionVariant):
            parse_mobile({"type": "teleport"})

    def test_vocabularies_are_closed(self):
        with pytest.raises(UnknownActionVariant):
            parse_desktop({"type": "tap", "x": 1, "y": 1})
        with pytest.raises(UnknownActionVariant):
            parse_desktop({"type": "rotate", "orientation": "portrait"})

    def test_missing_fields_rejected(self):
        with pytest.raises(ActionTranslationError):
            parse_mobile({"type": "tap", "x": 1})

    def test_negative_pinch_scale_rejected(self):
        with pytest.raises(ActionTranslationError):
            parse_mobile({"type": "pinch", "centerX": 1, "centerY": 1, "scale": -0.5})

    def test_closed_pinch_accepted(self):
        assert parse_mobile({"type": "pinch", "centerX": 1, "centerY": 1, "scale": 0}).scale == 0


class TestMobileGestures:
    """Tests for the touch vocabulary primitives."""

    @pytest.mark.asyncio
    async def test_tap(self):
        page = make_page()
        assert (await MobileActionTranslator().apply(page, {"type": "tap", "x": 100, "y": 200})).ok is True
        page.touchscreen.tap.assert_awaited_once_with(100, 200)

    @pytest.mark.asyncio
    async def test_double_tap_is_two_taps_with_pause(self):
        page = make_page()
        await MobileActionTranslator().apply(page, {"type": "double_tap", "x": 5, "y": 6})

        relevant = [c for c in page.mock_calls if c[0] in ("touchscreen.tap", "wait_for_timeout")]
        assert relevant == [
            call.touchscreen.tap(5, 6),
            call.wait_for_timeout(100),
            call.touchscreen.tap(5, 6),
        ]

    @pytest.mark.asyncio
    async def test_long_press_holds_pointer(self):
        page = make_page()
        await MobileActionTranslator().apply(page, {"type": "long_press", "x": 1, "y": 2, "duration": 750})
        page.mouse.move.assert_awaited_once_with(1, 2)
        page.mouse.down.assert_awaited_once()
        page.wait_for_timeout.assert_awaited_once_with(750)
        page.mouse.up.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_swipe_uses_ten_steps(self):
        page = make_page()
        await MobileActionTranslator().apply(
            page, {"type": "swipe", "startX": 10, "startY": 500, "endX": 10, "endY": 100, "duration": 900}
        )
        assert page.mouse.move.await_args_list == [call(10, 500), call(10, 100, steps=10)]
        page.mouse.down.assert_awaited_once()
        page.mouse.up.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pinch_scale_one_is_net_zero(self):
        page = make_page()
        outcome = await MobileActionTranslator().apply(page, {"type": "pinch", "centerX": 200, "centerY": 300, "scale": 1})

        assert outcome.ok is True
        p1_start, p2_start, p1_end, p2_end = PinchAction(type="pinch", centerX=200, centerY=300, scale=1).points()
        assert p2_start[0] - p1_start[0] == p2_end[0] - p1_end[0] == 100
        page.mouse.down.assert_has_awaits([call(), call(button="right")])
        page.mouse.up.assert_has_awaits([call(), call(button="right")])

    @pytest.mark.asyncio
    async def test_pinch_end_separation_scales(self):
        page = make_page()
        await MobileActionTranslator().apply(page, {"type": "pinch", "centerX": 200, "centerY": 300, "scale": 2})
        assert page.mouse.move.await_args_list == [
            call(150, 300),
            call(250, 300),
            call(100, 300),
            call(300, 300),
        ]

    @pytest.mark.asyncio
    async def test_scroll_moves_then_wheels(self):
        page = make_page()
        await MobileActionTranslator().apply(page, {"type": "scroll", "x": 50, "y": 60, "deltaY": 400})
        page.mouse.move.assert_awaited_once_with(50, 60)
        page.mouse.wheel.assert_awaited_once_with(0, 400)

    @pytest.mark.asyncio
    async def test_rotate_uses_fixed_viewports(self):
        page = make_page()
        translator = MobileActionTranslator()
        await translator.apply(page, {"type": "rotate", "orientation": "landscape"})
        await translator.apply(page, {"type": "rotate", "orientation": "portrait"})
        assert page.set_viewport_size.await_args_list == [
            call({"width": 852, "height": 393}),
            call({"width": 393, "height": 852}),
        ]

    @pytest.mark.asyncio
    async def test_screenshot_is_noop(self):
        page = make_page()
        assert (await MobileActionTranslator().apply(page, {"type": "screenshot"})).ok is True
        page.screenshot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_text_key_and_focus(self):
        page = make_page()
        translator = MobileActionTranslator()
        await translator.apply(page, {"type": "type", "text": "hi"})
        await translator.apply(page, {"type": "key", "key": "Enter"})
        await translator.apply(page, {"type": "focus", "selector": "#q"})
        page.keyboard.type.assert_awaited_once_with("hi")
        page.keyboard.press.assert_awaited_once_with("Enter")
        page.focus.assert_awaited_once_with("#q")


class TestComputerUseShapesOnTouch:
    """Computer-use pointer actions are delivered as touch gestures on mobile devices."""

    @pytest.mark.asyncio
    async def test_click_becomes_tap(self):
        page = make_page()
        translator = translator_for(default_catalog.get("iPhone 14"))

        outcome = await translator.apply(page, {"type": "click", "x": 100, "y": 200, "button": "left"})

        assert outcome.ok is True
        page.touchscreen.tap.assert_awaited_once_with(100, 200)
        page.mouse.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_double_click_becomes_double_tap(self):
        page = make_page()
        await MobileActionTranslator().apply(page, {"type": "double_click", "x": 5, "y": 6})
        assert page.touchscreen.tap.await_args_list == [call(5, 6), call(5, 6)]
        page.wait_for_timeout.assert_awaited_once_with(100)

    @pytest.mark.asyncio
    async def test_drag_becomes_swipe(self):
        page = make_page()
        await MobileActionTranslator().apply(
            page, {"type": "drag", "path": [{"x": 10, "y": 500}, {"x": 10, "y": 300}, {"x": 10, "y": 100}]}
        )
        assert page.mouse.move.await_args_list == [call(10, 500), call(10, 100, steps=10)]
        page.mouse.down.assert_awaited_once()
        page.mouse.up.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_scroll_accepts_computer_use_deltas(self):
        page = make_page()
        await MobileActionTranslator().apply(page, {"type": "scroll", "x": 3, "y": 4, "scroll_x": 0, "scroll_y": 250})
        page.mouse.wheel.assert_awaited_once_with(0, 250)

    @pytest.mark.asyncio
    async def test_keypress_is_chord(self):
        page = make_page()
        await MobileActionTranslator().apply(page, {"type": "keypress", "keys": ["ENTER"]})
        page.keyboard.press.assert_awaited_once_with("Enter")


class TestDesktopActions:
    """Tests for the pointer and keyboard vocabulary."""

    @pytest.mark.asyncio
    async def test_click_buttons(self):
        page = make_page()
        translator = DesktopActionTranslator()
        await translator.apply(page, {"type": "click", "x": 1, "y": 2})
        await translator.apply(page, {"type": "click", "x": 1, "y": 2, "button": "wheel"})
        await translator.apply(page, {"type": "click", "x": 1, "y": 2, "button": "back"})
        assert page.mouse.click.await_args_list == [
            call(1, 2, button="left"),
            call(1, 2, button="middle"),
        ]
        page.go_back.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_drag_follows_path(self):
        page = make_page()
        await DesktopActionTranslator().apply(
            page, {"type": "drag", "path": [{"x": 0, "y": 0}, {"x": 5, "y": 5}, {"x": 10, "y": 10}]}
        )
        assert page.mouse.move.await_args_list == [call(0, 0), call(5, 5), call(10, 10)]
        page.mouse.down.assert_awaited_once()
        page.mouse.up.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_keypress_is_normalised_chord(self):
        page = make_page()
        await DesktopActionTranslator().apply(page, {"type": "keypress", "keys": ["CTRL", "a"]})
        page.keyboard.press.assert_awaited_once_with("Control+a")

    @pytest.mark.asyncio
    async def test_scroll_uses_scroll_deltas(self):
        page = make_page()
        await DesktopActionTranslator().apply(page, {"type": "scroll", "x": 3, "y": 4, "scroll_y": -200})
        page.mouse.wheel.assert_awaited_once_with(0, -200)


class TestApplyNeverRaises:
    """apply() absorbs every failure and reports it in the outcome."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", MOBILE_SAMPLES)
    async def test_mobile_variants_survive_target_errors(self, payload):
        page = make_page()
        for primitive in (
            page.touchscreen.tap,
            page.mouse.move,
            page.mouse.wheel,
            page.keyboard.type,
            page.keyboard.press,
            page.focus,
            page.wait_for_timeout,
            page.set_viewport_size,
        ):
            primitive.side_effect = RuntimeError("Target closed")
        result = await MobileActionTranslator().apply(page, payload)
        assert result.ok is (payload["type"] == "screenshot")
        if not result.ok:
            assert result.error == "Target closed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", DESKTOP_SAMPLES)
    async def test_desktop_variants_succeed(self, payload):
        assert (await DesktopActionTranslator().apply(make_page(), payload)).ok is True

    @pytest.mark.asyncio
    async def test_unknown_variant_is_noop(self, caplog):
        page = make_page()
        outcome = await MobileActionTranslator().apply(page, {"type": "teleport", "x": 1})
        assert outcome.ok is False
        assert outcome.description == "teleport"
        assert outcome.error == "Unrecognized action type: 'teleport'"
        assert "Unrecognized mobile action" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_fields_are_noop(self):
        page = make_page()
        outcome = await MobileActionTranslator().apply(page, {"type": "tap"})
        assert outcome.ok is False
        assert outcome.error.startswith("Invalid tap action: x: Field required")
        page.touchscreen.tap.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.asyncio
    async def test_target_error_is_reported_with_description(self):
        page = make_page()
        page.touchscreen.tap.side_effect = RuntimeError("Target closed")

        outcome = await MobileActionTranslator().apply(page, {"type": "tap", "x": 1, "y": 2})

        assert outcome.ok is False
        assert outcome.description == "tap at (1.0, 2.0)"
        assert outcome.error == "Target closed"

    @pytest.mark.asyncio
    async def test_non_mapping_payload_is_noop(self):
        assert (await MobileActionTranslator().apply(make_page(), None)).ok is False


class TestTranslatorSelection:
    """Tests for translator_for and review sets."""

    def test_touch_devices_get_mobile_vocabulary(self):
        assert isinstance(translator_for(default_catalog.get("iPhone 14")), MobileActionTranslator)
        assert isinstance(translator_for(default_catalog.get("Google Pixel 8")), MobileActionTranslator)

    def test_pointer_devices_get_desktop_vocabulary(self):
        assert isinstance(translator_for(default_catalog.get("Desktop Chrome")), DesktopActionTranslator)

    def test_review_sets(self):
        assert MobileActionTranslator.REVIEW_BEFORE == {"tap", "swipe", "long_press", "click", "double_click", "drag"}
        assert MobileActionTranslator().should_review({"type": "swipe"})
        assert not MobileActionTranslator().should_review({"type": "type", "text": "x"})
        assert DesktopActionTranslator().should_review({"type": "click", "x": 1, "y": 1})

    def test_describe_action(self):
        assert describe_action({"type": "tap", "x": 1, "y": 2}) == "Before tap"
        assert describe_action({}) == "Before action"
