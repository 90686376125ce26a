"""
Math primitives for human-like page interaction.

Randomized delays, click jitter, Bezier pointer paths and easing.
No browser dependency: pure math only.
"""

from __future__ import annotations

import math
import random


def pause_seconds(bounds: tuple[float, float]) -> float:
    """Uniform random pause inside (low, high). Zero-width bounds return low."""
    low, high = bounds
    if high <= low:
        return max(0.0, low)
    return random.uniform(low, high)


def jitter_point(x: float, y: float, max_offset: float) -> tuple[float, float]:
    """Offset (x, y) by at most max_offset pixels on each axis."""
    if max_offset <= 0:
        return (x, y)
    return (
        x + random.uniform(-max_offset, max_offset),
        y + random.uniform(-max_offset, max_offset),
    )


def bezier_curve(
    start: tuple[float, float],
    end: tuple[float, float],
    num_points: int = 30,
    curvature: float = 0.25,
) -> list[tuple[float, float]]:
    """
    Cubic Bezier waypoints from start to end.

    Control points sit at 1/3 and 2/3 of the straight line, pushed sideways
    by a random fraction of the distance (scaled by curvature). The first and
    last points are exactly start and end.
    """
    sx, sy = start
    ex, ey = end
    dx = ex - sx
    dy = ey - sy
    dist = math.hypot(dx, dy)

    if dist < 1 or num_points < 2:
        return [start, end]

    perp_x = -dy / dist
    perp_y = dx / dist
    bend1 = random.uniform(-curvature, curvature) * dist
    bend2 = random.uniform(-curvature, curvature) * dist
    c1 = (sx + dx / 3 + perp_x * bend1, sy + dy / 3 + perp_y * bend1)
    c2 = (sx + 2 * dx / 3 + perp_x * bend2, sy + 2 * dy / 3 + perp_y * bend2)

    points = []
    for i in range(num_points + 1):
        t = i / num_points
        u = 1 - t
        x = u**3 * sx + 3 * u**2 * t * c1[0] + 3 * u * t**2 * c2[0] + t**3 * ex
        y = u**3 * sy + 3 * u**2 * t * c1[1] + 3 * u * t**2 * c2[1] + t**3 * ey
        points.append((x, y))
    points[-1] = end
    return points


def wobble(
    points: list[tuple[float, float]],
    magnitude: float = 0.6,
) -> list[tuple[float, float]]:
    """Gaussian noise on interior points; endpoints stay exact."""
    if len(points) <= 2:
        return points
    inner = [
        (x + random.gauss(0, magnitude), y + random.gauss(0, magnitude))
        for x, y in points[1:-1]
    ]
    return [points[0], *inner, points[-1]]


def ease_delays(num_points: int, total: float) -> list[float]:
    """
    Per-step delays that sum to roughly `total`, slow at both ends.

    Sine easing: the pointer accelerates mid-path and settles on arrival.
    """
    if num_points <= 1 or total <= 0:
        return [0.0] * max(num_points, 0)

    weights = []
    for i in range(num_points):
        progress = i / (num_points - 1)
        speed = 0.5 + 0.5 * math.sin(math.pi * progress)
        weights.append(1.0 / max(speed, 0.1))
    scale = total / sum(weights)
    return [w * scale for w in weights]


def travel_time(distance: float) -> float:
    """
    Pointer travel time in seconds, loosely after Fitts's law.
    ~0.18s for 50px, ~0.45s for 1000px, with 15% gaussian noise.
    """
    if distance < 1:
        return 0.0
    base = 0.10 + 0.08 * math.log2(1 + distance / 50)
    return max(0.05, base * random.gauss(1.0, 0.15))


def waypoint_count(distance: float) -> int:
    """Number of Bezier waypoints for a move of this length."""
    if distance < 10:
        return 4
    if distance < 100:
        return 12
    if distance < 500:
        return 24
    return 40
