"""
Secure text input for fields that resist programmatic value assignment.

Three independently verifiable strategies, tried in order by `secure_input`:

  paste   clipboard write (Clipboard API, hidden-textarea copy fallback) + paste chord
  type    native keyboard typing with human cadence (or one-shot fill), then
          explicit input/change/blur events
  insert  execCommand('insertText') / keyboard.insert_text, then
          input/change/blur events

Every strategy waits a bounded time for the field to become visible, sleeps a
small random interval around focus/select/clear, verifies by reading the
field's value back, and returns a bool. Strategy errors are logged and
swallowed here; only exhaustion of all strategies is reported (as False).
"""

from __future__ import annotations

import asyncio
import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from worker.input import humanize
from worker.profile import NORMAL, HumanProfile

log = logging.getLogger(__name__)

VISIBLE_TIMEOUT_MS = 3000
ACTION_TIMEOUT_MS = 5000

SELECT_ALL = 'ControlOrMeta+A'
PASTE = 'ControlOrMeta+V'

METHODS = ('auto', 'paste', 'type', 'fill', 'insert')

CLIPBOARD_WRITE_JS = """
async (value) => {
  try {
    await navigator.clipboard.writeText(value);
    return true;
  } catch (e) {
    const area = document.createElement('textarea');
    area.value = value;
    area.style.position = 'fixed';
    area.style.opacity = '0';
    document.body.appendChild(area);
    area.select();
    const copied = document.execCommand('copy');
    document.body.removeChild(area);
    return copied;
  }
}
"""

INSERT_TEXT_JS = """
(el, value) => {
  el.focus();
  if (el.tagName === 'INPUT' || el.tagName === 'TEXTAREA') {
    el.value = '';
  }
  return document.execCommand('insertText', false, value);
}
"""

SELECT_OPTIONS_JS = """
(el) => Array.from(el.options || []).map(o => ({label: o.label, text: o.text, value: o.value}))
"""

SELECT_SET_VALUE_JS = """
(el, value) => {
  el.value = value;
  el.dispatchEvent(new Event('change', { bubbles: true }));
  return el.value === value;
}
"""

NOTIFY_EVENTS = ('input', 'change', 'blur')


async def _micro_delay(profile: HumanProfile) -> None:
    await asyncio.sleep(humanize.pause_seconds(profile.micro_delay))


async def _visible_field(page: Page, selector: str) -> Locator | None:
    """Return the first match once visible, or None if it never shows up."""
    field = page.locator(selector).first
    try:
        await field.wait_for(state='visible', timeout=VISIBLE_TIMEOUT_MS)
    except PlaywrightError:
        return None
    return field


async def _read_value(field: Locator) -> str | None:
    try:
        return await field.input_value(timeout=ACTION_TIMEOUT_MS)
    except PlaywrightError:
        return None


async def _focus_and_select(page: Page, field: Locator, profile: HumanProfile) -> None:
    await field.click(timeout=ACTION_TIMEOUT_MS)
    await _micro_delay(profile)
    await page.keyboard.press(SELECT_ALL)
    await _micro_delay(profile)


async def _notify(field: Locator) -> None:
    """Fire the events client-side validators listen for."""
    for event in NOTIFY_EVENTS:
        await field.dispatch_event(event, timeout=ACTION_TIMEOUT_MS)


async def _clear_quietly(page: Page, field: Locator) -> None:
    """Leave a field empty after a failed attempt. Best effort."""
    try:
        await field.click(timeout=ACTION_TIMEOUT_MS)
        await page.keyboard.press(SELECT_ALL)
        await page.keyboard.press('Delete')
    except PlaywrightError as exc:
        log.debug('Could not clear field after failed attempt: %s', exc)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

async def paste_via_clipboard(
    page: Page,
    selector: str,
    text: str,
    profile: HumanProfile = NORMAL,
) -> bool:
    """Strategy 1: clipboard write + paste chord, verified by read-back."""
    field = await _visible_field(page, selector)
    if field is None:
        return False

    try:
        await _focus_and_select(page, field, profile)
        copied = await page.evaluate(CLIPBOARD_WRITE_JS, text)
        if not copied:
            log.info('Clipboard write blocked for %s', selector)
            return False

        await page.keyboard.press(PASTE)
        await _micro_delay(profile)

        if await _read_value(field) == text:
            log.info('Clipboard paste succeeded: %s', selector)
            return True
    except PlaywrightError as exc:
        log.warning('Clipboard paste failed for %s: %s', selector, exc)
        return False

    await _clear_quietly(page, field)
    return False


async def type_natively(
    page: Page,
    selector: str,
    text: str,
    human_like: bool = True,
    profile: HumanProfile = NORMAL,
) -> bool:
    """Strategy 2: per-character typing (or one-shot fill) plus input/change/blur."""
    field = await _visible_field(page, selector)
    if field is None:
        return False

    try:
        if human_like:
            await _focus_and_select(page, field, profile)
            await page.keyboard.press('Delete')
            for char in text:
                await page.keyboard.type(char)
                await asyncio.sleep(humanize.pause_seconds(profile.type_delay))
        else:
            await field.click(timeout=ACTION_TIMEOUT_MS)
            await _micro_delay(profile)
            await field.fill(text, timeout=ACTION_TIMEOUT_MS)

        await _notify(field)
        # Move focus on; some validators only run on a real blur.
        await page.keyboard.press('Tab')
        await _micro_delay(profile)

        if await _read_value(field) == text:
            log.info(
                'Native %s succeeded: %s', 'typing' if human_like else 'fill', selector,
            )
            return True
    except PlaywrightError as exc:
        log.warning('Native input failed for %s: %s', selector, exc)
        return False

    await _clear_quietly(page, field)
    return False


async def insert_text_legacy(
    page: Page,
    selector: str,
    text: str,
    profile: HumanProfile = NORMAL,
) -> bool:
    """Strategy 3: execCommand('insertText'), falling back to keyboard.insert_text."""
    field = await _visible_field(page, selector)
    if field is None:
        return False

    try:
        await _focus_and_select(page, field, profile)
        inserted = await field.evaluate(INSERT_TEXT_JS, text)
        if not inserted:
            await page.keyboard.insert_text(text)
        await _notify(field)
        await _micro_delay(profile)

        if await _read_value(field) == text:
            log.info('Text insertion succeeded: %s', selector)
            return True
    except PlaywrightError as exc:
        log.warning('Text insertion failed for %s: %s', selector, exc)
        return False

    await _clear_quietly(page, field)
    return False


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def secure_input(
    page: Page,
    selector: str,
    text: str,
    method: str = 'auto',
    profile: HumanProfile = NORMAL,
) -> bool:
    """Put `text` into the field at `selector` despite input protection.

    method: 'auto' (paste, then type, then insert; first success wins),
            or one of 'paste', 'type', 'fill', 'insert' to force a strategy.
    Returns False if the field could not be filled.
    """
    if method not in METHODS:
        raise ValueError(f'Unknown input method: {method!r}')

    if method == 'paste':
        return await paste_via_clipboard(page, selector, text, profile)
    if method == 'type':
        return await type_natively(page, selector, text, True, profile)
    if method == 'fill':
        return await type_natively(page, selector, text, False, profile)
    if method == 'insert':
        return await insert_text_legacy(page, selector, text, profile)

    if await paste_via_clipboard(page, selector, text, profile):
        return True
    log.info('Paste did not stick for %s, trying native typing', selector)

    if await type_natively(page, selector, text, True, profile):
        return True
    log.info('Native typing did not stick for %s, trying text insertion', selector)

    if await insert_text_legacy(page, selector, text, profile):
        return True

    log.error('All input strategies failed for %s (%d chars)', selector, len(text))
    return False


async def secure_select(page: Page, selector: str, value: str) -> bool:
    """Choose a dropdown option by exact label, exact value, then substring.

    Returns False only when no option matches in any of the three passes
    (or the control never becomes visible).
    """
    if not value:
        log.warning('Empty value for select %s', selector)
        return False

    field = await _visible_field(page, selector)
    if field is None:
        return False

    try:
        options = await field.evaluate(SELECT_OPTIONS_JS)

        by_label = next(
            (o for o in options if o['label'] == value or o['text'] == value), None,
        )
        if by_label is not None:
            await field.select_option(value=by_label['value'], timeout=ACTION_TIMEOUT_MS)
            log.info('Select by label succeeded: %s = %s', selector, value)
            return True

        if any(o['value'] == value for o in options):
            await field.select_option(value=value, timeout=ACTION_TIMEOUT_MS)
            log.info('Select by value succeeded: %s = %s', selector, value)
            return True

        for option in options:
            if value in option['text'] or value in option['value']:
                await field.evaluate(SELECT_SET_VALUE_JS, option['value'])
                log.info(
                    'Select by partial match succeeded: %s = %s (%s)',
                    selector, value, option['text'],
                )
                return True
    except PlaywrightError as exc:
        log.warning('Select failed for %s: %s', selector, exc)
        return False

    log.warning('No option matches %r in %s', value, selector)
    return False
