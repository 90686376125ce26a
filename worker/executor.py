"""Automation task executor.

Looks up a routine by task type, runs it against a fresh browser session and
returns a plain result dict (the envelope the HTTP layer and job queue pass
through untouched):

    {"success": bool, "message": str, "error": str | None,
     "logs": [str, ...], "phase": str, ...domain fields}

Anything a routine raises is converted to a failed envelope here. Nothing
escapes run() except cancellation.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from functools import partial

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from worker.browser import BrowserSession, launch_session
from worker.config import WorkerConfig
from worker.ocr import DigitRecognizer
from worker.profile import NORMAL, PROFILES, HumanProfile

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
BrowserFactory = Callable[[], Awaitable[BrowserSession]]


class TaskFailed(Exception):
    """Raised by a routine for an expected, human-readable failure."""


class TaskContext:
    """Per-job handle passed to routines: page, cursor, data, audit log, progress."""

    def __init__(
        self,
        session: BrowserSession,
        data: dict,
        config: WorkerConfig,
        profile: HumanProfile = NORMAL,
        recognizer: DigitRecognizer | None = None,
        on_progress: ProgressCallback | None = None,
        logs: list[str] | None = None,
    ) -> None:
        self.session = session
        self.page = session.page
        self.cursor = session.cursor
        self.data = data
        self.config = config
        self.profile = profile
        self.recognizer = recognizer
        self.phase = 'init'
        self.logs: list[str] = logs if logs is not None else []
        self._on_progress = on_progress
        self._started = time.monotonic()

    def log(self, message: str) -> None:
        """Append an audit line to the job's logs (and the process log)."""
        elapsed = time.monotonic() - self._started
        self.logs.append(f'[{elapsed:6.1f}s] [{self.phase}] {message}')
        log.info('[%s] %s', self.phase, message)

    def progress(self, percent: int) -> None:
        if self._on_progress is not None:
            self._on_progress(max(0, min(100, int(percent))))


Routine = Callable[[TaskContext], Awaitable[dict]]


def failure(error: str, logs: list[str] | None = None, phase: str = '') -> dict:
    return {
        'success': False,
        'message': error,
        'error': error,
        'logs': list(logs or []),
        'phase': phase,
    }


class TaskExecutor:
    """Runs named routines, one browser session per run."""

    def __init__(
        self,
        config: WorkerConfig,
        browser_factory: BrowserFactory | None = None,
        recognizer: DigitRecognizer | None = None,
        routines: dict[str, Routine] | None = None,
    ) -> None:
        self._config = config
        self._profile = PROFILES.get(config.human_profile, NORMAL)
        self._browser_factory = browser_factory or partial(
            launch_session, config, self._profile,
        )
        self._recognizer = recognizer
        if routines is None:
            from worker.routines import ROUTINES
            routines = ROUTINES
        self._routines = dict(routines)

    @property
    def task_types(self) -> list[str]:
        return sorted(self._routines)

    def supports(self, task_type: str) -> bool:
        return task_type in self._routines

    async def run(
        self,
        task_type: str,
        task_data: dict,
        progress: ProgressCallback | None = None,
        logs: list[str] | None = None,
    ) -> dict:
        """Execute one task. Always returns an envelope; never raises (bar cancel).

        logs: list the audit lines are appended to as they happen, so a caller
        that cancels the run still holds everything logged so far.
        """
        routine = self._routines.get(task_type)
        if routine is None:
            return failure(f'Unknown task type: {task_type}')

        session: BrowserSession | None = None
        ctx: TaskContext | None = None
        try:
            session = await self._browser_factory()
            ctx = TaskContext(
                session,
                dict(task_data),
                self._config,
                profile=self._profile,
                recognizer=self._recognizer,
                on_progress=progress,
                logs=logs,
            )
            outcome = await routine(ctx)
            return self._envelope(outcome, ctx)

        except TaskFailed as exc:
            log.warning('Task %s failed: %s', task_type, exc)
            return await self._fail(str(exc), ctx, session, task_type)

        except PlaywrightTimeoutError as exc:
            log.warning('[timeout] Task %s: %s', task_type, _first_line(exc))
            return await self._fail(
                f'Timed out: {_first_line(exc)}', ctx, session, task_type,
            )

        except PlaywrightError as exc:
            log.warning('Task %s automation error: %s', task_type, _first_line(exc))
            return await self._fail(
                f'Automation error: {_first_line(exc)}', ctx, session, task_type,
            )

        except Exception as exc:
            log.exception('Task %s crashed', task_type)
            return await self._fail(
                f'Unexpected error: {exc}', ctx, session, task_type,
            )

        finally:
            if session is not None:
                await session.close()

    def _envelope(self, outcome: dict, ctx: TaskContext) -> dict:
        result = dict(outcome)
        success = bool(result.pop('success', False))
        error = result.pop('error', None)
        message = result.pop('message', '') or (error or '')
        ctx.progress(100)
        return {
            **result,
            'success': success,
            'message': message,
            'error': None if success else (error or message or 'Task failed'),
            'logs': ctx.logs,
            'phase': ctx.phase,
        }

    async def _fail(
        self,
        error: str,
        ctx: TaskContext | None,
        session: BrowserSession | None,
        task_type: str,
    ) -> dict:
        logs = ctx.logs if ctx is not None else []
        phase = ctx.phase if ctx is not None else 'launch'
        if ctx is not None:
            ctx.log(f'FAILED: {error}')
        result = failure(error, logs, phase)
        if session is not None:
            shot = await session.screenshot(
                self._config.screenshot_dir, f'{task_type}_{phase}_error',
            )
            if shot:
                result['screenshot'] = shot
        return result


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__
