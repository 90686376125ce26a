"""Task delegation: durable task records on this side, execution on the worker.

delegate() always writes the task as pending before the worker is contacted,
then either waits for the worker's synchronous answer or registers an async
job and hands back its jobId. poll() reconciles an async job into the task
record; the first terminal observation finalizes the task, later ones change
nothing.

A task never reports success while its job is non-terminal, and a task's
terminal status always comes from the single job bound to it.
"""

from __future__ import annotations

import logging

from gateway.db import FAILED, SUCCESS, Database, InvalidTaskTransition
from gateway.worker_client import WorkerClient, WorkerError

log = logging.getLogger(__name__)

TERMINAL_JOB_STATES = frozenset({"completed", "failed"})

_RECEIPT_KEYS = ("receiptNumber", "receipt_number", "applicationNumber")
_DOCUMENT_KEYS = ("documentUrl", "document_url", "pdfUrl")


def _first(sources: list[dict], keys: tuple[str, ...]):
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value:
                return value
    return None


def normalize_result(payload: dict | None) -> dict:
    """Pull the envelope and domain fields out of an opaque worker result.

    Accepts either the /execute-task response (fields at top level with the
    routine's envelope under "result") or a bare routine envelope.
    """
    payload = payload or {}
    nested = payload.get("result") if isinstance(payload.get("result"), dict) else {}
    sources = [payload, nested]

    success = bool(payload.get("success"))
    error = None if success else (_first(sources, ("error",)) or "Task failed")
    message = _first(sources, ("message",)) or (error or "")
    return {
        "success": success,
        "message": message,
        "error": error,
        "receiptNumber": _first(sources, _RECEIPT_KEYS),
        "documentUrl": _first(sources, _DOCUMENT_KEYS),
    }


def _domain_fields(outcome: dict) -> dict:
    return {
        k: outcome[k] for k in ("receiptNumber", "documentUrl", "message")
        if outcome.get(k)
    }


class DelegationService:
    """Creates tasks, invokes the worker, reconciles job outcomes into tasks."""

    def __init__(self, db: Database, worker: WorkerClient) -> None:
        self._db = db
        self._worker = worker

    async def delegate(
        self,
        task_type: str,
        task_data: dict,
        run_async: bool = False,
        target_site: str = "",
        target_url: str = "",
    ) -> dict:
        """Create a pending task and hand it to the worker.

        Returns {"taskId", "jobId"?, "status", ...}. Worker failures never
        raise here: they finalize the task as failed and are reported in the
        returned dict.
        """
        task_id = await self._db.create_task(
            task_type,
            task_data,
            target_site=target_site,
            target_url=target_url or str(task_data.get("url", "")),
        )
        log.info("Task %s created (%s, async=%s)", task_id, task_type, run_async)

        if run_async:
            return await self._delegate_async(task_id, task_type, task_data)
        return await self._delegate_sync(task_id, task_type, task_data)

    async def _delegate_async(self, task_id: str, task_type: str, task_data: dict) -> dict:
        try:
            job_id = await self._worker.register_job(task_type, task_data)
        except (WorkerError, ValueError) as exc:
            return await self._fail_delegation(task_id, str(exc))

        await self._db.set_job_id(task_id, job_id)
        log.info("Task %s registered as worker job %s", task_id, job_id)
        return {"taskId": task_id, "jobId": job_id, "status": "pending"}

    async def _delegate_sync(self, task_id: str, task_type: str, task_data: dict) -> dict:
        await self._db.mark_running(task_id)
        try:
            response = await self._worker.execute_task(task_type, task_data)
        except WorkerError as exc:
            return await self._fail_delegation(task_id, str(exc))

        job_id = response.get("jobId")
        if job_id:
            await self._db.set_job_id(task_id, job_id)

        outcome = normalize_result(response)
        await self._db.finalize_task(
            task_id,
            outcome["success"],
            result=_domain_fields(outcome),
            error_message=outcome["error"],
            logs=response.get("logs") or [],
        )
        status = SUCCESS if outcome["success"] else FAILED
        log.info("Task %s finished synchronously: %s", task_id, status)
        return {"taskId": task_id, "jobId": job_id, "status": status, **outcome}

    async def _fail_delegation(self, task_id: str, error: str) -> dict:
        log.warning("Delegation of task %s failed: %s", task_id, error)
        await self._db.finalize_task(task_id, False, error_message=error)
        return {"taskId": task_id, "status": FAILED, "success": False, "error": error}

    async def poll(self, job_id: str, task_id: str | None = None) -> dict:
        """Fetch job status; finalize the bound task on first terminal sight.

        Non-terminal: {"state", "progress"}.
        Terminal: {"state", "success", "receiptNumber", "documentUrl", "message"}.
        Raises WorkerError on transport trouble (the task stays as it is;
        the caller may poll again) and InvalidTaskTransition if task_id is
        bound to a different job.
        """
        task = await self._task_for(job_id, task_id)

        try:
            job = await self._worker.get_job(job_id)
        except WorkerError as exc:
            if exc.status_code == 404:
                return await self._job_lost(job_id, task)
            raise

        state = job.get("state", "")
        if state not in TERMINAL_JOB_STATES:
            progress = int(job.get("progress") or 0)
            if task is not None:
                await self._db.mark_running(task["id"])
                await self._db.update_progress(task["id"], progress)
            return {"state": state, "progress": progress}

        outcome = normalize_result(job.get("result"))
        if state == "failed":
            outcome["success"] = False
            outcome["error"] = job.get("failedReason") or outcome["error"]
            if not job.get("result"):
                outcome["message"] = outcome["error"]

        if task is not None:
            result = job.get("result") or {}
            updated = await self._db.finalize_task(
                task["id"],
                outcome["success"],
                result=_domain_fields(outcome),
                error_message=outcome["error"],
                logs=result.get("logs") or [],
            )
            if updated:
                log.info(
                    "Task %s finalized from job %s: %s",
                    task["id"], job_id, SUCCESS if outcome["success"] else FAILED,
                )

        return {
            "state": state,
            "success": outcome["success"],
            "receiptNumber": outcome["receiptNumber"],
            "documentUrl": outcome["documentUrl"],
            "message": outcome["message"],
        }

    async def _task_for(self, job_id: str, task_id: str | None) -> dict | None:
        if task_id is None:
            return await self._db.get_task_by_job(job_id)
        task = await self._db.get_task(task_id)
        if task is not None and task["job_id"] != job_id:
            raise InvalidTaskTransition(
                f"Task {task_id} is bound to job {task['job_id']}, not {job_id}"
            )
        return task

    async def _job_lost(self, job_id: str, task: dict | None) -> dict:
        message = f"Job {job_id} not found on worker (expired or lost)"
        if task is not None and await self._db.finalize_task(
            task["id"], False, error_message=message,
        ):
            log.warning("Task %s failed: %s", task["id"], message)
        return {
            "state": "failed",
            "success": False,
            "receiptNumber": None,
            "documentUrl": None,
            "message": message,
        }
