"""
Virtual keypad solver.

Resolves where each digit 0-9 is drawn on an obfuscated on-screen keypad and
clicks out a digit sequence. Resolution tiers, first complete map wins:

  1. attributes  aria-label / alt / title / data-* / text / value on key elements
  2. ocr         element screenshot -> DigitRecognizer -> page coordinates
  3. grid        conventional 1-2-3 / 4-5-6 / 7-8-9 / _-0-_ layout over the container

A DigitMap is built fresh per attempt and never reused: keypad layouts are
reshuffled on every render.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass

from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from worker.input import humanize
from worker.input.coords import BoundingBox, image_scale, image_to_page
from worker.input.mouse import HumanCursor
from worker.ocr import DigitRecognizer
from worker.profile import NORMAL, HumanProfile

log = logging.getLogger(__name__)

DEFAULT_KEYPAD_SELECTOR = '.keypad, .virtualKeypad, .security-keypad, #keypad'

BUTTON_SELECTORS = (
    'button',
    '[role="button"]',
    '.key',
    '.btn-key',
    'td',
    'img',
    'a',
)

ALL_DIGITS = frozenset('0123456789')

GRID_LAYOUT = (
    ('1', '2', '3'),
    ('4', '5', '6'),
    ('7', '8', '9'),
    (None, '0', None),
)

VISIBLE_TIMEOUT_MS = 3000
ACTION_TIMEOUT_MS = 5000

TIER_ATTRIBUTES = 'attributes'
TIER_OCR = 'ocr'
TIER_GRID = 'grid'

# First single digit found, in priority order, wins for each element.
DIGIT_FROM_ATTRS_JS = """
(el) => {
  const single = (v) => (v && /^\\d$/.test(v.trim())) ? v.trim() : null;
  const candidates = [
    el.getAttribute('aria-label'),
    el.getAttribute('alt'),
    el.getAttribute('title'),
    el.getAttribute('data-value'),
    el.getAttribute('data-key'),
    el.getAttribute('data-num'),
    el.getAttribute('data-number'),
    el.textContent,
    el.getAttribute('value'),
  ];
  for (const c of candidates) {
    const d = single(c);
    if (d !== null) return d;
  }
  return null;
}
"""


@dataclass(frozen=True)
class KeyPoint:
    """Click target for one digit, in page coordinates."""

    x: float
    y: float
    box: BoundingBox | None = None


class DigitMap(Mapping):
    """Read-only digit -> KeyPoint mapping tagged with the tier that built it."""

    def __init__(self, points: Mapping[str, KeyPoint], source: str) -> None:
        self._points = dict(points)
        self.source = source

    def __getitem__(self, digit: str) -> KeyPoint:
        return self._points[digit]

    def __iter__(self) -> Iterator[str]:
        return iter(self._points)

    def __len__(self) -> int:
        return len(self._points)

    @property
    def complete(self) -> bool:
        return ALL_DIGITS <= self._points.keys()

    @property
    def missing(self) -> list[str]:
        return sorted(ALL_DIGITS - self._points.keys())

    def __repr__(self) -> str:
        return f'DigitMap(source={self.source!r}, digits={"".join(sorted(self))!r})'


# ---------------------------------------------------------------------------
# Resolution tiers
# ---------------------------------------------------------------------------

async def solve_by_attributes(
    page: Page,
    keypad_selector: str = DEFAULT_KEYPAD_SELECTOR,
) -> DigitMap | None:
    """Tier 1: read digits from semantic attributes of key-like elements."""
    container = page.locator(keypad_selector).first
    try:
        await container.wait_for(state='visible', timeout=VISIBLE_TIMEOUT_MS)
    except PlaywrightError:
        log.info('Keypad container not visible: %s', keypad_selector)
        return None

    points: dict[str, KeyPoint] = {}
    for button_selector in BUTTON_SELECTORS:
        try:
            buttons = await container.locator(button_selector).all()
        except PlaywrightError as exc:
            log.warning('Attribute scan failed on %s: %s', button_selector, exc)
            continue
        if len(buttons) < len(ALL_DIGITS):
            continue

        for button in buttons:
            # Keys can detach or re-render mid-scan; skip just that one
            try:
                box = BoundingBox.from_dict(
                    await button.bounding_box(timeout=ACTION_TIMEOUT_MS)
                )
                if box is None:
                    continue
                digit = await button.evaluate(DIGIT_FROM_ATTRS_JS)
            except PlaywrightError as exc:
                log.debug('Skipping unreadable key element: %s', exc)
                continue
            if digit is not None and digit not in points:
                cx, cy = box.center
                points[digit] = KeyPoint(cx, cy, box)

        if ALL_DIGITS <= points.keys():
            break

    if not points:
        log.info('Attribute scan found no digit keys')
        return None
    log.info('Attribute scan resolved %d/10 digits', len(points))
    return DigitMap(points, TIER_ATTRIBUTES)


async def solve_by_ocr(
    page: Page,
    recognizer: DigitRecognizer,
    keypad_selector: str = DEFAULT_KEYPAD_SELECTOR,
) -> DigitMap | None:
    """Tier 2: screenshot the keypad and map recognized digits to the page."""
    container = page.locator(keypad_selector).first
    try:
        await container.wait_for(state='visible', timeout=VISIBLE_TIMEOUT_MS)
        anchor = BoundingBox.from_dict(
            await container.bounding_box(timeout=ACTION_TIMEOUT_MS)
        )
        if anchor is None or not anchor.has_area:
            return None
        png = await container.screenshot(timeout=ACTION_TIMEOUT_MS)
    except PlaywrightError as exc:
        log.warning('Keypad screenshot failed: %s', exc)
        return None

    try:
        symbols = await asyncio.to_thread(recognizer.recognize_digits, png)
    except Exception as exc:
        log.warning('OCR engine failed: %s', exc)
        return None

    with Image.open(io.BytesIO(png)) as image:
        scale = image_scale(image.width, anchor)

    points: dict[str, KeyPoint] = {}
    for symbol in symbols:
        if symbol.char in points:
            continue
        img_x, img_y = symbol.box.center
        x, y = image_to_page(img_x, img_y, anchor, scale)
        page_box = BoundingBox(
            x=anchor.x + symbol.box.x / scale,
            y=anchor.y + symbol.box.y / scale,
            width=symbol.box.width / scale,
            height=symbol.box.height / scale,
        )
        points[symbol.char] = KeyPoint(x, y, page_box)

    if not points:
        log.info('OCR recognized no digits')
        return None
    log.info('OCR resolved %d/10 digits', len(points))
    return DigitMap(points, TIER_OCR)


def grid_digit_map(box: BoundingBox) -> DigitMap:
    """Digit centres for a uniform 4-row x 3-column telephone keypad inside box."""
    rows = len(GRID_LAYOUT)
    cols = len(GRID_LAYOUT[0])
    cell_w = box.width / cols
    cell_h = box.height / rows

    points = {}
    for row, keys in enumerate(GRID_LAYOUT):
        for col, digit in enumerate(keys):
            if digit is None:
                continue
            points[digit] = KeyPoint(
                box.x + cell_w * col + cell_w / 2,
                box.y + cell_h * row + cell_h / 2,
            )
    return DigitMap(points, TIER_GRID)


async def solve_by_grid(
    page: Page,
    keypad_selector: str = DEFAULT_KEYPAD_SELECTOR,
) -> DigitMap | None:
    """Tier 3: geometric guess. Structurally complete, never verified."""
    container = page.locator(keypad_selector).first
    try:
        box = BoundingBox.from_dict(
            await container.bounding_box(timeout=ACTION_TIMEOUT_MS)
        )
    except PlaywrightError as exc:
        log.warning('Keypad bounding box unavailable: %s', exc)
        return None
    if box is None or not box.has_area:
        return None

    log.warning('Using grid guess for keypad %s (low accuracy)', keypad_selector)
    return grid_digit_map(box)


async def resolve_digit_map(
    page: Page,
    keypad_selector: str = DEFAULT_KEYPAD_SELECTOR,
    recognizer: DigitRecognizer | None = None,
) -> DigitMap | None:
    """Run the tiers in order. A partial map is used only if every tier falls short."""
    partials: list[DigitMap] = []

    by_attrs = await solve_by_attributes(page, keypad_selector)
    if by_attrs is not None:
        if by_attrs.complete:
            return by_attrs
        partials.append(by_attrs)

    if recognizer is not None:
        log.info('Attribute scan incomplete, trying OCR')
        by_ocr = await solve_by_ocr(page, recognizer, keypad_selector)
        if by_ocr is not None:
            if by_ocr.complete:
                return by_ocr
            partials.append(by_ocr)

    by_grid = await solve_by_grid(page, keypad_selector)
    if by_grid is not None:
        return by_grid

    if partials:
        best = max(partials, key=len)
        log.warning(
            'Falling back to partial %s map (missing %s)',
            best.source, ''.join(best.missing),
        )
        return best
    return None


# ---------------------------------------------------------------------------
# Clicking
# ---------------------------------------------------------------------------

async def click_digits(
    page: Page,
    cursor: HumanCursor | None,
    digits: str,
    digit_map: DigitMap,
    profile: HumanProfile = NORMAL,
) -> bool:
    """Click each digit's key in order. Stops at the first unresolved digit."""
    for index, digit in enumerate(digits):
        point = digit_map.get(digit)
        if point is None:
            log.warning(
                'Digit at position %d not on %s keypad map', index, digit_map.source,
            )
            return False

        await asyncio.sleep(humanize.pause_seconds(profile.click_delay))
        x, y = humanize.jitter_point(point.x, point.y, profile.click_jitter_px)

        if cursor is not None:
            try:
                await cursor.click(x, y)
                continue
            except PlaywrightError as exc:
                log.debug('Pointer move failed, clicking directly: %s', exc)
        await page.mouse.click(x, y)

    return True


async def _confirm_length(page: Page, confirm_selector: str, expected: int) -> bool:
    """Read back a (usually masked) field and compare its length."""
    try:
        value = await page.locator(confirm_selector).first.input_value(
            timeout=ACTION_TIMEOUT_MS,
        )
    except PlaywrightError as exc:
        log.warning('Keypad confirmation field unreadable: %s', exc)
        return False
    if len(value) != expected:
        log.warning(
            'Keypad confirmation mismatch: field has %d chars, expected %d',
            len(value), expected,
        )
        return False
    return True


async def type_on_keypad(
    page: Page,
    cursor: HumanCursor | None,
    digits: str,
    keypad_selector: str = DEFAULT_KEYPAD_SELECTOR,
    recognizer: DigitRecognizer | None = None,
    profile: HumanProfile = NORMAL,
    confirm_selector: str | None = None,
) -> bool:
    """Enter `digits` on a virtual keypad. True only once every digit was clicked.

    confirm_selector: optional field that mirrors the entry (often masked);
    when given, its value length must equal len(digits) afterwards.
    """
    digit_map = await resolve_digit_map(page, keypad_selector, recognizer)
    if digit_map is None:
        log.error('Keypad could not be resolved: %s', keypad_selector)
        return False

    if not await click_digits(page, cursor, digits, digit_map, profile):
        return False

    log.info('Entered %d digits via %s keypad map', len(digits), digit_map.source)

    if confirm_selector:
        return await _confirm_length(page, confirm_selector, len(digits))
    return True
