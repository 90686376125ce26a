"""Input engine against real Chromium: page scripts run, events are real.

Skipped when no Chromium build is installed (`playwright install chromium`).

Run: python -m pytest worker/tests/test_live_browser.py -v -m browser
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from playwright.async_api import Error as PlaywrightError

from worker.browser import launch_session
from worker.input.keypad import type_on_keypad
from worker.input.mouse import HumanCursor
from worker.input.secure_input import secure_input
from worker.profile import FAST

pytestmark = pytest.mark.browser

PORTAL = "https://portal.test/form"

# Typing, fill and execCommand all arrive as insertText and get wiped.
PASTE_ONLY_FORM = """<!doctype html>
<html><body>
<label for="ownerName">Owner</label>
<input id="ownerName" autocomplete="off">
<script>
  const field = document.getElementById('ownerName');
  field.addEventListener('keydown', (e) => {
    const chord = (e.ctrlKey || e.metaKey) && ['a', 'v'].includes(e.key.toLowerCase());
    if (!chord && e.key !== 'Tab') e.preventDefault();
  });
  field.addEventListener('input', (e) => {
    if (e.inputType !== 'insertFromPaste') field.value = '';
  });
</script>
</body></html>
"""

# Keys carry no visible text; only aria-label names the digit.
ARIA_KEYPAD_FORM = """<!doctype html>
<html><head><style>
  .keypad { display: grid; grid-template-columns: repeat(3, 48px); gap: 6px; margin: 40px; }
  .keypad button { width: 48px; height: 48px; }
</style></head>
<body>
<input type="hidden" id="pin" value="">
<div class="keypad">
  <button aria-label="7"></button><button aria-label="2"></button><button aria-label="9"></button>
  <button aria-label="0"></button><button aria-label="4"></button><button aria-label="1"></button>
  <button aria-label="8"></button><button aria-label="5"></button><button aria-label="3"></button>
  <button aria-label="delete"></button><button aria-label="6"></button>
</div>
<script>
  const pin = document.getElementById('pin');
  document.querySelectorAll('.keypad button').forEach((key) => {
    key.addEventListener('click', () => {
      const label = key.getAttribute('aria-label');
      pin.value = label === 'delete' ? pin.value.slice(0, -1) : pin.value + label;
    });
  });
</script>
</body></html>
"""


@pytest_asyncio.fixture
async def session(config):
    """Headless Chromium from the worker's own launcher."""
    try:
        browser_session = await launch_session(config, FAST)
    except PlaywrightError as exc:
        pytest.skip(f"Chromium not available: {exc}")
    yield browser_session
    await browser_session.close()


async def _open(session, html: str):
    async def serve(route) -> None:
        await route.fulfill(status=200, content_type="text/html", body=html)

    # A routed https origin is a secure context, so the clipboard API is live.
    await session.page.route("https://portal.test/**", serve)
    await session.page.goto(PORTAL)
    return session.page


class TestPasteOnlyField:

    @pytest.mark.asyncio
    async def test_auto_mode_fills_by_paste(self, session) -> None:
        page = await _open(session, PASTE_ONLY_FORM)

        assert await secure_input(page, "#ownerName", "홍길동 Hong", "auto", FAST) is True
        assert await page.input_value("#ownerName") == "홍길동 Hong"

    @pytest.mark.asyncio
    async def test_typing_is_rejected_by_the_page(self, session) -> None:
        page = await _open(session, PASTE_ONLY_FORM)

        assert await secure_input(page, "#ownerName", "Hong", "type", FAST) is False
        assert await page.input_value("#ownerName") == ""


class TestAriaKeypad:

    @pytest.mark.asyncio
    async def test_digits_land_in_order(self, session) -> None:
        page = await _open(session, ARIA_KEYPAD_FORM)
        cursor = HumanCursor(page, FAST)

        entered = await type_on_keypad(
            page, cursor, "4815", ".keypad", profile=FAST, confirm_selector="#pin",
        )

        assert entered is True
        assert await page.input_value("#pin") == "4815"
