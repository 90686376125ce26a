"""Data-driven automation routines.

Routines receive everything site-specific through taskData, so one routine
covers any portal whose form can be described as selectors + values:

    {
      "url": "https://portal.example/apply",
      "preSteps": ["#agree", {"click": "#next", "waitMs": 500}],
      "fields": [
        {"name": "owner", "selector": "#ownerNm", "value": "Hong Gildong"},
        {"name": "region", "kind": "select", "selector": "#sido", "value": "Seoul"},
        {"name": "pin", "kind": "keypad", "value": "4815",
         "selector": ".keypad", "openSelector": "#pin", "confirmSelector": "#pin"},
        {"name": "terms", "kind": "click", "selector": "#terms", "required": false}
      ],
      "submitSelector": "button[type=submit]",
      "receiptSelector": "#receiptNo",
      "receiptPattern": "No\\.\\s*(\\d+)",
      "documentLinkSelector": "a.download"
    }

Field values are never written to logs, only their lengths.
"""

from __future__ import annotations

import asyncio
import re

from playwright.async_api import Error as PlaywrightError

from worker.executor import Routine, TaskContext, TaskFailed
from worker.input.keypad import DEFAULT_KEYPAD_SELECTOR, type_on_keypad
from worker.input.secure_input import secure_input, secure_select

DEFAULT_RECEIPT_PATTERN = r'접수(?:번호)?\s*[:：]?\s*([A-Za-z0-9-]+)'

FIELD_KINDS = ('text', 'select', 'keypad', 'click')

PROBE_SUMMARY_JS = """
() => {
  const describe = (el) => ({
    tag: el.tagName.toLowerCase(),
    type: el.getAttribute('type') || '',
    id: el.id || '',
    name: el.getAttribute('name') || '',
    text: (el.innerText || el.value || '').trim().slice(0, 40),
  });
  return {
    inputs: Array.from(document.querySelectorAll('input, textarea')).map(describe),
    selects: Array.from(document.querySelectorAll('select')).map(describe),
    buttons: Array.from(document.querySelectorAll('button, [role=button], input[type=submit]')).map(describe),
  };
}
"""


def _require(data: dict, key: str) -> str:
    value = data.get(key)
    if not value:
        raise TaskFailed(f'taskData.{key} is required')
    return str(value)


def _brief(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__


async def _navigate(ctx: TaskContext, url: str) -> None:
    ctx.phase = 'navigate'
    ctx.log(f'Opening {url}')
    await ctx.page.goto(
        url, wait_until='domcontentloaded', timeout=ctx.config.navigation_timeout_ms,
    )


async def _click(ctx: TaskContext, selector: str) -> None:
    await ctx.page.locator(selector).first.click(timeout=ctx.config.element_timeout_ms)


async def _run_pre_steps(ctx: TaskContext, steps: list) -> None:
    ctx.phase = 'prepare'
    for step in steps:
        if isinstance(step, str):
            selector, wait_ms = step, 0
        else:
            selector, wait_ms = step['click'], int(step.get('waitMs', 0))
        ctx.log(f'Clicking {selector}')
        await _click(ctx, selector)
        if wait_ms:
            await asyncio.sleep(wait_ms / 1000)


async def _fill_field(ctx: TaskContext, field: dict) -> bool:
    kind = field.get('kind', 'text')
    selector = field.get('selector', '')
    value = str(field.get('value', ''))

    if kind == 'text':
        return await secure_input(
            ctx.page, selector, value,
            method=field.get('method', 'auto'), profile=ctx.profile,
        )

    if kind == 'select':
        return await secure_select(ctx.page, selector, value)

    if kind == 'keypad':
        if field.get('openSelector'):
            await _click(ctx, field['openSelector'])
        return await type_on_keypad(
            ctx.page,
            ctx.cursor,
            value,
            keypad_selector=selector or DEFAULT_KEYPAD_SELECTOR,
            recognizer=ctx.recognizer,
            profile=ctx.profile,
            confirm_selector=field.get('confirmSelector'),
        )

    if kind == 'click':
        try:
            await _click(ctx, selector)
        except PlaywrightError:
            return False
        return True

    raise TaskFailed(f'Unknown field kind {kind!r} (expected one of {FIELD_KINDS})')


async def _extract_receipt(ctx: TaskContext, data: dict) -> str | None:
    timeout = ctx.config.element_timeout_ms
    if data.get('receiptSelector'):
        text = await ctx.page.locator(data['receiptSelector']).first.inner_text(
            timeout=timeout,
        )
        if not data.get('receiptPattern'):
            return text.strip() or None
    else:
        text = await ctx.page.locator('body').inner_text(timeout=timeout)

    pattern = data.get('receiptPattern') or DEFAULT_RECEIPT_PATTERN
    match = re.search(pattern, text)
    if match is None:
        return None
    return match.group(1) if match.groups() else match.group(0)


async def form_submit(ctx: TaskContext) -> dict:
    """Navigate, fill every described field, submit, and read back the receipt."""
    data = ctx.data
    await _navigate(ctx, _require(data, 'url'))
    ctx.progress(10)

    if data.get('preSteps'):
        await _run_pre_steps(ctx, data['preSteps'])
    ctx.progress(20)

    fields = data.get('fields') or []
    ctx.phase = 'fill'
    for index, field in enumerate(fields, start=1):
        name = field.get('name') or field.get('selector') or f'field {index}'
        ok = await _fill_field(ctx, field)
        if ok:
            ctx.log(f'Filled {name} ({field.get("kind", "text")}, '
                    f'{len(str(field.get("value", "")))} chars)')
        elif field.get('required', True):
            raise TaskFailed(f'Could not fill field: {name}')
        else:
            ctx.log(f'Skipped optional field {name}')
        ctx.progress(20 + 60 * index // len(fields))

    if data.get('submitSelector'):
        ctx.phase = 'submit'
        ctx.log('Submitting form')
        await _click(ctx, data['submitSelector'])
        await ctx.page.wait_for_load_state(
            'domcontentloaded', timeout=ctx.config.navigation_timeout_ms,
        )
        if data.get('waitAfterSubmitMs'):
            await asyncio.sleep(int(data['waitAfterSubmitMs']) / 1000)
    ctx.progress(90)

    # Form is already submitted: lookup failures leave the value None
    ctx.phase = 'result'
    try:
        receipt = await _extract_receipt(ctx, data)
    except PlaywrightError as exc:
        ctx.log(f'Receipt lookup failed: {_brief(exc)}')
        receipt = None

    document_url = None
    if data.get('documentLinkSelector'):
        try:
            document_url = await ctx.page.locator(
                data['documentLinkSelector']
            ).first.get_attribute('href', timeout=ctx.config.element_timeout_ms)
        except PlaywrightError as exc:
            ctx.log(f'Document link lookup failed: {_brief(exc)}')

    if receipt:
        ctx.log(f'Receipt number: {receipt}')
        message = f'Submission accepted. Receipt number: {receipt}'
    else:
        ctx.log('No receipt number found on result page')
        message = 'Form submitted; receipt number not found'

    return {
        'success': bool(receipt) or not data.get('requireReceipt', False),
        'message': message,
        'receiptNumber': receipt,
        'documentUrl': document_url,
        'finalUrl': ctx.page.url,
    }


async def page_probe(ctx: TaskContext) -> dict:
    """Open a page and describe its form controls (selector discovery aid)."""
    await _navigate(ctx, _require(ctx.data, 'url'))
    ctx.progress(50)

    ctx.phase = 'probe'
    summary = await ctx.page.evaluate(PROBE_SUMMARY_JS)
    title = await ctx.page.title()
    ctx.log(
        f'Found {len(summary["inputs"])} inputs, {len(summary["selects"])} selects, '
        f'{len(summary["buttons"])} buttons'
    )
    return {
        'success': True,
        'message': f'Probed {title or ctx.page.url}',
        'title': title,
        'url': ctx.page.url,
        **summary,
    }


ROUTINES: dict[str, Routine] = {
    'form_submit': form_submit,
    'page_probe': page_probe,
}
