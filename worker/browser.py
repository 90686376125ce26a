"""Stealth Chromium sessions for task execution.

One BrowserSession per job: its own Playwright driver, browser, context and
page, closed unconditionally when the job ends. User agent and viewport are
drawn from small pools per launch, navigator.webdriver is hidden and the
context is localized to ko-KR / Asia/Seoul like a regular visitor.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from pathlib import Path

from playwright.async_api import Browser, BrowserContext, Dialog, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from worker.config import WorkerConfig
from worker.input.mouse import HumanCursor
from worker.profile import NORMAL, HumanProfile

log = logging.getLogger(__name__)

USER_AGENTS = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36',
)

VIEWPORTS = (
    {'width': 1920, 'height': 1080},
    {'width': 1366, 'height': 768},
    {'width': 1536, 'height': 864},
    {'width': 1440, 'height': 900},
    {'width': 1280, 'height': 720},
)

LAUNCH_ARGS = (
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-blink-features=AutomationControlled',
)

STEALTH_INIT_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['ko-KR', 'ko', 'en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', {
  get: () => [1, 2, 3, 4, 5].map(() => ({ name: 'Chrome Plugin' })),
});
window.chrome = { runtime: {}, loadTimes: () => {}, csi: () => {} };
"""

# Seoul
GEOLOCATION = {'latitude': 37.5665, 'longitude': 126.9780}


@dataclass
class BrowserSession:
    """Everything a routine drives for one job."""

    page: Page
    cursor: HumanCursor
    context: BrowserContext | None = None
    browser: Browser | None = None
    playwright: Playwright | None = None

    async def screenshot(self, directory: str, label: str) -> str | None:
        """Full-page PNG for post-mortem debugging. Returns the path or None."""
        out_dir = Path(directory)
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            path = out_dir / f'{label}_{int(time.time() * 1000)}.png'
            await self.page.screenshot(path=str(path), full_page=True, timeout=10000)
        except (PlaywrightError, OSError) as exc:
            log.warning('Screenshot %s failed: %s', label, exc)
            return None
        log.info('Saved screenshot: %s', path)
        return str(path)

    async def close(self) -> None:
        """Close context, browser and driver. Never raises."""
        for name, closer in (
            ('context', self.context.close if self.context else None),
            ('browser', self.browser.close if self.browser else None),
            ('playwright', self.playwright.stop if self.playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except PlaywrightError as exc:
                log.debug('Ignoring %s close error: %s', name, exc)


async def _accept_dialog(dialog: Dialog) -> None:
    log.info('Auto-accepting %s dialog: %s', dialog.type, dialog.message[:120])
    try:
        await dialog.accept()
    except PlaywrightError as exc:
        log.debug('Dialog already handled: %s', exc)


async def launch_session(
    config: WorkerConfig,
    profile: HumanProfile = NORMAL,
) -> BrowserSession:
    """Start a fresh stealth Chromium with one page and a human cursor."""
    user_agent = random.choice(USER_AGENTS)
    viewport = random.choice(VIEWPORTS)

    pw = await async_playwright().start()
    try:
        browser = await pw.chromium.launch(
            headless=config.headless,
            args=[
                *LAUNCH_ARGS,
                f'--window-size={viewport["width"]},{viewport["height"]}',
            ],
        )
        context = await browser.new_context(
            user_agent=user_agent,
            viewport=viewport,
            locale='ko-KR',
            timezone_id='Asia/Seoul',
            geolocation=GEOLOCATION,
            permissions=['geolocation', 'clipboard-read', 'clipboard-write'],
        )
        await context.add_init_script(STEALTH_INIT_JS)
        context.set_default_timeout(config.element_timeout_ms)
        context.set_default_navigation_timeout(config.navigation_timeout_ms)

        page = await context.new_page()
        page.on('dialog', _accept_dialog)
    except BaseException:
        await pw.stop()
        raise

    start = (
        random.uniform(0, viewport['width'] / 2),
        random.uniform(0, viewport['height'] / 2),
    )
    log.info(
        'Browser started (headless=%s, viewport=%dx%d, ua=%s...)',
        config.headless, viewport['width'], viewport['height'], user_agent[:50],
    )
    return BrowserSession(
        page=page,
        cursor=HumanCursor(page, profile, start=start),
        context=context,
        browser=browser,
        playwright=pw,
    )
