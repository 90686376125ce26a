"""Human behavioral profile: consolidated timing parameters for page interaction.

Bundles typing cadence, micro delays around focus/select/clear, keypad click
spacing and positional jitter into a single object. Presets available for
testing (fast) and production (normal, cautious).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class HumanProfile:
    """All behavioral parameters for human-like interaction (seconds / pixels)."""

    type_delay: tuple[float, float] = (0.03, 0.13)    # between typed characters
    micro_delay: tuple[float, float] = (0.05, 0.20)   # around focus / select / clear
    click_delay: tuple[float, float] = (0.08, 0.25)   # before each keypad click
    click_jitter_px: float = 3.0                       # max offset from a key centre
    mouse_fast: bool = False


# -- Presets ----------------------------------------------------------------

FAST = HumanProfile(
    type_delay=(0.0, 0.0),
    micro_delay=(0.0, 0.0),
    click_delay=(0.0, 0.0),
    mouse_fast=True,
)

NORMAL = HumanProfile()

CAUTIOUS = HumanProfile(
    type_delay=(0.08, 0.22),
    micro_delay=(0.15, 0.40),
    click_delay=(0.20, 0.45),
    click_jitter_px=2.0,
)

PROFILES = {
    'fast': FAST,
    'normal': NORMAL,
    'cautious': CAUTIOUS,
}
