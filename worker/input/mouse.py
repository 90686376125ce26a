"""
Human-like pointer movement on a Playwright page.

Coordinates are CSS pixels in the page viewport (Playwright's mouse space).
The cursor remembers where it last was so each move starts from the real
position instead of teleporting from (0, 0).
"""

from __future__ import annotations

import asyncio
import math
import random

from playwright.async_api import Page

from worker.input import humanize
from worker.profile import NORMAL, HumanProfile


class HumanCursor:
    """Bezier-path pointer controller bound to one page."""

    def __init__(
        self,
        page: Page,
        profile: HumanProfile = NORMAL,
        start: tuple[float, float] = (0.0, 0.0),
    ) -> None:
        self._page = page
        self._profile = profile
        self.position = start

    async def move_to(self, x: float, y: float) -> None:
        """Move along a curved, eased path and stop exactly on (x, y)."""
        sx, sy = self.position
        distance = math.hypot(x - sx, y - sy)
        if distance < 2:
            await self._page.mouse.move(x, y)
            self.position = (x, y)
            return

        n_points = humanize.waypoint_count(distance)
        duration = humanize.travel_time(distance)
        if self._profile.mouse_fast:
            duration = 0.0
            n_points = max(n_points // 3, 2)

        points = humanize.bezier_curve((sx, sy), (x, y), num_points=n_points)
        if not self._profile.mouse_fast:
            points = humanize.wobble(points, magnitude=0.15 + distance * 0.0003)

        delays = humanize.ease_delays(len(points), duration)
        for (px, py), delay in zip(points, delays):
            await self._page.mouse.move(px, py)
            if delay > 0:
                await asyncio.sleep(delay)
        self.position = (x, y)

    async def click(self, x: float, y: float) -> None:
        """Move to (x, y), hover briefly, then press and release."""
        await self.move_to(x, y)
        press_ms = 0
        if not self._profile.mouse_fast:
            await asyncio.sleep(random.uniform(0.05, 0.15))
            press_ms = random.randint(40, 110)
        await self._page.mouse.click(x, y, delay=press_ms)
