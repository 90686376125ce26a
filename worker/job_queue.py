"""In-memory job queue and status store for the worker.

Every accepted request becomes a Job before any browser work starts, so a
caller that got a jobId back can always poll it. Jobs run as asyncio tasks
gated by a semaphore (MAX_CONCURRENT_JOBS); submissions are accepted while
others run and simply wait for a slot.

State machine (anything else raises InvalidTransition):

    queued -> active -> completed     routine returned success
                     -> failed        routine failure, timeout, crash, cancel

Jobs live until their terminal result was retrieved plus a grace period, or
until the retention window runs out, whichever comes first.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from worker.config import WorkerConfig
from worker.executor import TaskExecutor, failure

log = logging.getLogger(__name__)


class InvalidTransition(Exception):
    """Raised when a job is moved along an edge the state machine lacks."""


class UnknownTaskType(Exception):
    """Raised when no routine is registered for the requested task type."""


class JobState(str, Enum):
    QUEUED = 'queued'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    FAILED = 'failed'


_TRANSITIONS = {
    JobState.QUEUED: frozenset({JobState.ACTIVE}),
    JobState.ACTIVE: frozenset({JobState.COMPLETED, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED})


@dataclass
class Job:
    """One unit of delegated work. Mutated only by its runner and mark_retrieved."""

    job_id: str
    task_type: str
    state: JobState = JobState.QUEUED
    progress: int = 0
    result: dict | None = None
    failed_reason: str | None = None
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    finished_at: float | None = None
    retrieved_at: float | None = None
    task: asyncio.Task | None = field(default=None, repr=False, compare=False)

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: JobState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f'Job {self.job_id}: {self.state.value} -> {new_state.value}'
            )
        self.state = new_state

    def set_progress(self, percent: int) -> None:
        if not self.terminal:
            self.progress = percent

    def to_dict(self) -> dict:
        d: dict = {
            'jobId': self.job_id,
            'taskType': self.task_type,
            'state': self.state.value,
            'progress': self.progress,
            'createdAt': self.created_at,
        }
        if self.started_at is not None:
            d['startedAt'] = self.started_at
        if self.finished_at is not None:
            d['finishedAt'] = self.finished_at
        if self.result is not None:
            d['result'] = self.result
        if self.failed_reason:
            d['failedReason'] = self.failed_reason
        return d


class JobQueue:
    """Accepts submissions, runs them with bounded concurrency, answers status."""

    def __init__(self, config: WorkerConfig, executor: TaskExecutor) -> None:
        self._config = config
        self._executor = executor
        self._jobs: dict[str, Job] = {}
        self._semaphore = asyncio.Semaphore(config.max_concurrent_jobs)
        self._prune_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, task_type: str, task_data: dict) -> Job:
        """Create a queued job and schedule it. Returns immediately."""
        if not self._executor.supports(task_type):
            raise UnknownTaskType(task_type)

        job = Job(job_id=uuid.uuid4().hex, task_type=task_type)
        self._jobs[job.job_id] = job
        job.task = asyncio.create_task(
            self._run(job, dict(task_data)), name=f'job-{job.job_id}',
        )
        log.info(
            'Queued job %s (%s) [%d active, %d queued]',
            job.job_id, task_type,
            self.count(JobState.ACTIVE), self.count(JobState.QUEUED),
        )
        return job

    async def run_sync(self, task_type: str, task_data: dict) -> Job:
        """Submit and wait for the terminal state.

        A caller that goes away mid-wait does not cancel the job itself.
        """
        job = self.submit(task_type, task_data)
        await asyncio.shield(job.task)
        self.mark_retrieved(job.job_id)
        return job

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def mark_retrieved(self, job_id: str) -> Job | None:
        """Record the first time a terminal result was handed to a caller."""
        job = self._jobs.get(job_id)
        if job is not None and job.terminal and job.retrieved_at is None:
            job.retrieved_at = time.time()
        return job

    def count(self, state: JobState) -> int:
        return sum(1 for j in self._jobs.values() if j.state is state)

    def counts(self) -> dict[str, int]:
        c = Counter(j.state.value for j in self._jobs.values())
        return {s.value: c.get(s.value, 0) for s in JobState}

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run(self, job: Job, task_data: dict) -> None:
        timeout = self._config.job_timeout_seconds
        logs: list[str] = []
        try:
            async with self._semaphore:
                job.transition(JobState.ACTIVE)
                job.started_at = time.time()
                log.info('Starting job %s (%s)', job.job_id, job.task_type)

                try:
                    result = await asyncio.wait_for(
                        self._executor.run(
                            job.task_type, task_data,
                            progress=job.set_progress, logs=logs,
                        ),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError:
                    reason = f'Job timed out after {timeout:g}s'
                    log.warning('[timeout] Job %s (%s): %s', job.job_id, job.task_type, reason)
                    logs.append(f'[timeout] {reason}')
                    self._finish(job, JobState.FAILED, failure(reason, logs), reason)
                    return

                if result.get('success'):
                    self._finish(job, JobState.COMPLETED, result)
                else:
                    reason = result.get('error') or result.get('message') or 'Task failed'
                    self._finish(job, JobState.FAILED, result, reason)

        except asyncio.CancelledError:
            if job.state is JobState.ACTIVE:
                self._finish(
                    job, JobState.FAILED, failure('Job cancelled', logs), 'Job cancelled',
                )
            log.info('Job %s cancelled', job.job_id)
            raise

        except Exception as exc:
            log.exception('Job %s crashed', job.job_id)
            if job.state is JobState.ACTIVE:
                reason = f'Unexpected error: {exc}'
                self._finish(job, JobState.FAILED, failure(reason), reason)

    def _finish(
        self,
        job: Job,
        state: JobState,
        result: dict,
        reason: str | None = None,
    ) -> None:
        job.transition(state)
        job.result = result
        job.failed_reason = reason
        job.finished_at = time.time()
        if state is JobState.COMPLETED:
            job.progress = 100
        elapsed = job.finished_at - (job.started_at or job.created_at)
        if state is JobState.COMPLETED:
            log.info('Job %s completed in %.1fs', job.job_id, elapsed)
        else:
            log.warning('Job %s failed in %.1fs: %s', job.job_id, elapsed, reason)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def prune(self, now: float | None = None) -> int:
        """Drop terminal jobs past their grace/retention window. Returns count."""
        now = time.time() if now is None else now
        expired = []
        for job in self._jobs.values():
            if not job.terminal or job.finished_at is None:
                continue
            if (
                job.retrieved_at is not None
                and now - job.retrieved_at >= self._config.retrieved_grace_seconds
            ):
                expired.append(job.job_id)
            elif now - job.finished_at >= self._config.job_retention_seconds:
                expired.append(job.job_id)

        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            log.info('Pruned %d finished job(s)', len(expired))
        return len(expired)

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.prune_interval_seconds)
            self.prune()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._prune_task is None:
            self._prune_task = asyncio.create_task(self._prune_loop(), name='job-prune')

    async def stop(self, grace_seconds: float = 30.0) -> None:
        """Stop pruning, give running jobs a grace period, then cancel the rest."""
        if self._prune_task is not None:
            self._prune_task.cancel()
            try:
                await self._prune_task
            except asyncio.CancelledError:
                pass
            self._prune_task = None

        tasks = [j.task for j in self._jobs.values() if j.task and not j.task.done()]
        if not tasks:
            return
        log.info('Waiting for %d job(s) to finish...', len(tasks))
        _, pending = await asyncio.wait(tasks, timeout=grace_seconds)
        for t in pending:
            log.warning('Job task %s did not finish in %.0fs, cancelling', t.get_name(), grace_seconds)
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
