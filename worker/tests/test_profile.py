"""Tests for HumanProfile presets.

Run: python -m pytest worker/tests/test_profile.py -v
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError

import pytest

from worker.profile import CAUTIOUS, FAST, NORMAL, PROFILES, HumanProfile


class TestPresets:

    def test_fast_has_no_delays(self) -> None:
        assert FAST.mouse_fast is True
        assert FAST.type_delay == (0.0, 0.0)
        assert FAST.micro_delay == (0.0, 0.0)
        assert FAST.click_delay == (0.0, 0.0)

    def test_normal_matches_defaults(self) -> None:
        assert NORMAL == HumanProfile()
        assert NORMAL.mouse_fast is False

    def test_cautious_is_slower_than_normal(self) -> None:
        assert CAUTIOUS.type_delay[1] > NORMAL.type_delay[1]
        assert CAUTIOUS.click_delay[0] > NORMAL.click_delay[0]

    @pytest.mark.parametrize("profile", [FAST, NORMAL, CAUTIOUS])
    def test_ranges_ordered(self, profile: HumanProfile) -> None:
        for low, high in (profile.type_delay, profile.micro_delay, profile.click_delay):
            assert 0 <= low <= high

    def test_registry(self) -> None:
        assert PROFILES == {'fast': FAST, 'normal': NORMAL, 'cautious': CAUTIOUS}

    def test_frozen(self) -> None:
        with pytest.raises(FrozenInstanceError):
            NORMAL.click_jitter_px = 10.0  # type: ignore[misc]
