"""Tests for the secure input engine against fake pages with hostile fields.

Run: python -m pytest worker/tests/test_secure_input.py -v
"""

from __future__ import annotations

import pytest

from worker.input.secure_input import (
    NOTIFY_EVENTS,
    PASTE,
    insert_text_legacy,
    paste_via_clipboard,
    secure_input,
    secure_select,
    type_natively,
)
from worker.profile import FAST
from worker.tests.fakes import FakeField, FakePage

SEL = "#ownerName"


def _page(field: FakeField, **kwargs) -> FakePage:
    return FakePage({SEL: field}, **kwargs)


# ---------------------------------------------------------------------------
# auto mode
# ---------------------------------------------------------------------------


class TestAutoMode:

    @pytest.mark.asyncio
    async def test_paste_only_field_succeeds_on_first_strategy(self) -> None:
        """Script wipes assigned/typed values; only paste events stick."""
        field = FakeField(accepts_typing=False, accepts_fill=False, accepts_insert=False)
        page = _page(field)

        assert await secure_input(page, SEL, "홍길동", profile=FAST) is True
        assert field.value == "홍길동"
        assert PASTE in page.keyboard.pressed
        # Strategy 2 never ran: no Tab, no synthetic events
        assert "Tab" not in page.keyboard.pressed
        assert field.events == []

    @pytest.mark.asyncio
    async def test_only_third_strategy_can_fill(self) -> None:
        field = FakeField(accepts_paste=False, accepts_typing=False, accepts_fill=False)
        page = _page(field)

        assert await secure_input(page, SEL, "12가3456", profile=FAST) is True
        assert field.value == "12가3456"
        # Strategies 1 and 2 were attempted first
        assert PASTE in page.keyboard.pressed
        assert "Tab" in page.keyboard.pressed
        for event in NOTIFY_EVENTS:
            assert event in field.events

    @pytest.mark.asyncio
    async def test_typing_used_when_clipboard_blocked(self) -> None:
        field = FakeField(accepts_paste=False)
        page = _page(field, clipboard_blocked=True)

        assert await secure_input(page, SEL, "abc", profile=FAST) is True
        assert field.value == "abc"
        assert PASTE not in page.keyboard.pressed

    @pytest.mark.asyncio
    async def test_all_strategies_fail_leaves_field_cleared(self) -> None:
        field = FakeField(
            value="previous",
            accepts_paste=False,
            accepts_typing=False,
            accepts_fill=False,
            accepts_insert=False,
        )
        page = _page(field)

        assert await secure_input(page, SEL, "new value", profile=FAST) is False
        assert field.value == ""

    @pytest.mark.asyncio
    async def test_invisible_field_is_not_filled(self) -> None:
        field = FakeField(visible=False)
        page = _page(field)

        assert await secure_input(page, SEL, "x", profile=FAST) is False
        assert field.clicks == 0

    @pytest.mark.asyncio
    async def test_missing_selector_returns_false(self) -> None:
        page = FakePage({})
        assert await secure_input(page, "#nope", "x", profile=FAST) is False


# ---------------------------------------------------------------------------
# Forced strategies
# ---------------------------------------------------------------------------


class TestForcedMethods:

    @pytest.mark.asyncio
    async def test_unknown_method_raises(self) -> None:
        page = _page(FakeField())
        with pytest.raises(ValueError):
            await secure_input(page, SEL, "x", method="telepathy")

    @pytest.mark.asyncio
    async def test_forced_paste_does_not_fall_through(self) -> None:
        field = FakeField(accepts_paste=False)
        page = _page(field)

        assert await secure_input(page, SEL, "x", method="paste", profile=FAST) is False
        assert "Tab" not in page.keyboard.pressed

    @pytest.mark.asyncio
    async def test_fill_method_uses_one_shot_fill(self) -> None:
        field = FakeField(accepts_typing=False)
        page = _page(field)

        assert await secure_input(page, SEL, "filled", method="fill", profile=FAST) is True
        assert field.value == "filled"
        assert field.events[:3] == list(NOTIFY_EVENTS)

    @pytest.mark.asyncio
    async def test_type_method_fires_validation_events(self) -> None:
        field = FakeField()
        page = _page(field)

        assert await secure_input(page, SEL, "typed", method="type", profile=FAST) is True
        assert field.value == "typed"
        for event in NOTIFY_EVENTS:
            assert event in field.events


# ---------------------------------------------------------------------------
# Individual strategies
# ---------------------------------------------------------------------------


class TestStrategies:

    @pytest.mark.asyncio
    async def test_paste_replaces_existing_value(self) -> None:
        field = FakeField(value="old")
        page = _page(field)

        assert await paste_via_clipboard(page, SEL, "new", FAST) is True
        assert field.value == "new"

    @pytest.mark.asyncio
    async def test_blocked_clipboard_reports_failure(self) -> None:
        page = _page(FakeField(), clipboard_blocked=True)
        assert await paste_via_clipboard(page, SEL, "x", FAST) is False

    @pytest.mark.asyncio
    async def test_native_typing_clears_before_entry(self) -> None:
        field = FakeField(value="stale")
        page = _page(field)

        assert await type_natively(page, SEL, "fresh", True, FAST) is True
        assert field.value == "fresh"

    @pytest.mark.asyncio
    async def test_insert_falls_back_to_keyboard_insert(self) -> None:
        """execCommand refused but insert_text works."""
        field = FakeField(accepts_paste=False)
        page = _page(field)

        async def refuse(script, arg=None):
            return False

        field.evaluate = refuse
        assert await insert_text_legacy(page, SEL, "inserted", FAST) is True
        assert field.value == "inserted"


# ---------------------------------------------------------------------------
# secure_select
# ---------------------------------------------------------------------------


OPTIONS = [
    {"label": "선택", "text": "선택", "value": ""},
    {"label": "서울특별시", "text": "서울특별시", "value": "11"},
    {"label": "부산광역시", "text": "부산광역시", "value": "26"},
]


class TestSecureSelect:

    @pytest.mark.asyncio
    async def test_exact_label(self) -> None:
        field = FakeField(options=OPTIONS)
        assert await secure_select(_page(field), SEL, "부산광역시") is True
        assert field.value == "26"

    @pytest.mark.asyncio
    async def test_exact_value(self) -> None:
        field = FakeField(options=OPTIONS)
        assert await secure_select(_page(field), SEL, "11") is True
        assert field.value == "11"

    @pytest.mark.asyncio
    async def test_substring_match_fires_change(self) -> None:
        field = FakeField(options=OPTIONS)
        assert await secure_select(_page(field), SEL, "서울") is True
        assert field.value == "11"
        assert "change" in field.events

    @pytest.mark.asyncio
    async def test_no_match(self) -> None:
        field = FakeField(options=OPTIONS)
        assert await secure_select(_page(field), SEL, "제주") is False
        assert field.value == ""

    @pytest.mark.asyncio
    async def test_empty_value_selects_nothing(self) -> None:
        field = FakeField(value="11", options=OPTIONS)
        assert await secure_select(_page(field), SEL, "") is False
        assert field.value == "11"
        assert field.events == []
