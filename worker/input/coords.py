"""
Coordinate translation between element-screenshot pixels and page coordinates.

An element screenshot is captured in device pixels; with a devicePixelRatio of
2 the PNG is twice the element's CSS size. OCR returns boxes in that image
space. This module maps them back to page (CSS pixel) coordinates using the
element's on-page bounding box as the anchor.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle: x, y is the top-left corner."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def has_area(self) -> bool:
        return self.width > 0 and self.height > 0

    @staticmethod
    def from_dict(d: dict | None) -> BoundingBox | None:
        """Build from Playwright's bounding_box() dict (None when detached/hidden)."""
        if not d:
            return None
        return BoundingBox(
            x=float(d['x']), y=float(d['y']),
            width=float(d['width']), height=float(d['height']),
        )


def image_scale(image_width: int, anchor: BoundingBox) -> float:
    """Device pixels per CSS pixel, derived from screenshot width vs element width."""
    if anchor.width <= 0 or image_width <= 0:
        return 1.0
    return image_width / anchor.width


def image_to_page(
    img_x: float,
    img_y: float,
    anchor: BoundingBox,
    scale_factor: float = 1.0,
) -> tuple[float, float]:
    """
    Convert element-screenshot pixel coordinates to page coordinates.

    anchor: the screenshotted element's bounding box in page coordinates.
    scale_factor: device pixels per CSS pixel (see image_scale).
    """
    if scale_factor <= 0:
        scale_factor = 1.0
    return (anchor.x + img_x / scale_factor, anchor.y + img_y / scale_factor)
