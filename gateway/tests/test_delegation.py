"""Tests for DelegationService: task records reconciled from worker jobs.

Run: python -m pytest gateway/tests/test_delegation.py -v

Real in-memory Database, real WorkerClient, worker mocked with respx.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
import respx

from gateway.db import FAILED, PENDING, RUNNING, SUCCESS, Database, InvalidTaskTransition
from gateway.delegation import DelegationService, normalize_result
from gateway.worker_client import WorkerClient, WorkerError

WORKER_URL = "http://worker.test:3001"

TASK_DATA = {"url": "https://minwon.example.go.kr/apply", "fields": []}


@pytest_asyncio.fixture
async def worker() -> WorkerClient:
    c = WorkerClient(WORKER_URL)
    await c.start()
    yield c
    await c.close()


@pytest.fixture
def service(db: Database, worker: WorkerClient) -> DelegationService:
    return DelegationService(db, worker)


def _job(state: str, **extra) -> httpx.Response:
    return httpx.Response(200, json={"jobId": "job-1", "taskType": "form_submit",
                                     "state": state, "progress": 0, **extra})


# ------------------------------------------------------------------
# normalize_result
# ------------------------------------------------------------------


class TestNormalizeResult:

    def test_nested_routine_envelope(self) -> None:
        out = normalize_result({
            "success": True,
            "result": {"success": True, "receiptNumber": "2026-0042",
                       "documentUrl": "/r.pdf", "message": "Submitted"},
        })
        assert out == {
            "success": True, "message": "Submitted", "error": None,
            "receiptNumber": "2026-0042", "documentUrl": "/r.pdf",
        }

    def test_alternate_field_names(self) -> None:
        out = normalize_result({"success": True, "receipt_number": "R1", "pdfUrl": "/a.pdf"})
        assert out["receiptNumber"] == "R1"
        assert out["documentUrl"] == "/a.pdf"

    def test_failure_defaults(self) -> None:
        out = normalize_result(None)
        assert out["success"] is False
        assert out["error"] == "Task failed"
        assert out["message"] == "Task failed"


# ------------------------------------------------------------------
# Async delegation + polling
# ------------------------------------------------------------------


class TestAsyncDelegation:

    @pytest.mark.asyncio
    @respx.mock
    async def test_task_pending_after_registration(self, service, db) -> None:
        respx.post(f"{WORKER_URL}/form/submit").mock(
            return_value=httpx.Response(202, json={"success": True, "jobId": "job-1", "async": True})
        )
        out = await service.delegate("form_submit", TASK_DATA, run_async=True)

        assert out["status"] == PENDING
        assert out["jobId"] == "job-1"
        task = await db.get_task(out["taskId"])
        assert task["status"] == PENDING
        assert task["job_id"] == "job-1"
        assert task["target_url"] == TASK_DATA["url"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_unreachable_worker_fails_task(self, service, db) -> None:
        respx.post(f"{WORKER_URL}/form/submit").mock(
            side_effect=httpx.ConnectError("Connection refused")
        )
        out = await service.delegate("form_submit", TASK_DATA, run_async=True)

        assert out["status"] == FAILED
        assert out["success"] is False
        task = await db.get_task(out["taskId"])
        assert task["status"] == FAILED
        assert "unreachable" in task["error_message"]
        assert task["job_id"] is None

    @pytest.mark.asyncio
    async def test_malformed_task_type_fails_task(self, service, db) -> None:
        out = await service.delegate("formsubmit", TASK_DATA, run_async=True)
        assert out["status"] == FAILED
        assert (await db.get_task(out["taskId"]))["status"] == FAILED

    @pytest.mark.asyncio
    @respx.mock
    async def test_poll_active_updates_progress(self, service, db) -> None:
        task_id = await db.create_task("form_submit", TASK_DATA)
        await db.set_job_id(task_id, "job-1")
        respx.get(f"{WORKER_URL}/jobs/job-1").mock(
            return_value=httpx.Response(200, json={"jobId": "job-1", "state": "active", "progress": 35})
        )

        out = await service.poll("job-1", task_id=task_id)
        assert out == {"state": "active", "progress": 35}
        task = await db.get_task(task_id)
        assert task["status"] == RUNNING
        assert task["progress"] == 35

    @pytest.mark.asyncio
    @respx.mock
    async def test_poll_completed_finalizes_once(self, service, db) -> None:
        task_id = await db.create_task("form_submit", TASK_DATA)
        await db.set_job_id(task_id, "job-1")
        route = respx.get(f"{WORKER_URL}/jobs/job-1").mock(return_value=_job(
            "completed", progress=100,
            result={"success": True, "message": "Submitted", "receiptNumber": "2026-0042",
                    "logs": ["[   1.0s] [submit] Submitting form"]},
        ))

        out = await service.poll("job-1", task_id=task_id)
        assert out["state"] == "completed"
        assert out["success"] is True
        assert out["receiptNumber"] == "2026-0042"

        task = await db.get_task(task_id)
        assert task["status"] == SUCCESS
        assert task["result"]["receiptNumber"] == "2026-0042"
        assert task["execution_log"] == ["[   1.0s] [submit] Submitting form"]
        completed_at = task["completed_at"]

        # Later polls report the same outcome but write nothing.
        route.mock(return_value=_job("completed", result={"success": False, "error": "late"}))
        await service.poll("job-1", task_id=task_id)
        task = await db.get_task(task_id)
        assert task["status"] == SUCCESS
        assert task["completed_at"] == completed_at
        assert len(task["execution_log"]) == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_completed_without_success_is_failure(self, service, db) -> None:
        task_id = await db.create_task("form_submit", TASK_DATA)
        await db.set_job_id(task_id, "job-1")
        respx.get(f"{WORKER_URL}/jobs/job-1").mock(return_value=_job(
            "completed", result={"success": False, "message": "Form submitted; receipt number not found"},
        ))

        out = await service.poll("job-1")
        assert out["success"] is False
        task = await db.get_task(task_id)
        assert task["status"] == FAILED
        assert task["error_message"] == "Task failed"

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_job_uses_failed_reason(self, service, db) -> None:
        task_id = await db.create_task("form_submit", TASK_DATA)
        await db.set_job_id(task_id, "job-1")
        respx.get(f"{WORKER_URL}/jobs/job-1").mock(return_value=_job(
            "failed", failedReason="Job timed out after 300s",
        ))

        out = await service.poll("job-1", task_id=task_id)
        assert out["state"] == "failed"
        assert out["success"] is False
        assert out["message"] == "Job timed out after 300s"
        assert (await db.get_task(task_id))["error_message"] == "Job timed out after 300s"

    @pytest.mark.asyncio
    @respx.mock
    async def test_lost_job_fails_task(self, service, db) -> None:
        task_id = await db.create_task("form_submit", TASK_DATA)
        await db.set_job_id(task_id, "job-1")
        respx.get(f"{WORKER_URL}/jobs/job-1").mock(
            return_value=httpx.Response(404, json={"error": "No job with id job-1"})
        )

        out = await service.poll("job-1", task_id=task_id)
        assert out["success"] is False
        task = await db.get_task(task_id)
        assert task["status"] == FAILED
        assert "not found on worker" in task["error_message"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_leaves_task_untouched(self, service, db) -> None:
        task_id = await db.create_task("form_submit", TASK_DATA)
        await db.set_job_id(task_id, "job-1")
        respx.get(f"{WORKER_URL}/jobs/job-1").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(WorkerError):
            await service.poll("job-1", task_id=task_id)
        assert (await db.get_task(task_id))["status"] == PENDING

    @pytest.mark.asyncio
    async def test_task_bound_to_other_job(self, service, db) -> None:
        task_id = await db.create_task("form_submit", TASK_DATA)
        await db.set_job_id(task_id, "job-1")
        with pytest.raises(InvalidTaskTransition):
            await service.poll("job-2", task_id=task_id)

    @pytest.mark.asyncio
    async def test_unbound_task_cannot_be_finalized_by_any_job(self, service, db) -> None:
        task_id = await db.create_task("form_submit", TASK_DATA)
        with pytest.raises(InvalidTaskTransition):
            await service.poll("job-9", task_id=task_id)


# ------------------------------------------------------------------
# Sync delegation
# ------------------------------------------------------------------


class TestSyncDelegation:

    @pytest.mark.asyncio
    @respx.mock
    async def test_sync_success(self, service, db) -> None:
        respx.post(f"{WORKER_URL}/execute-task").mock(return_value=httpx.Response(200, json={
            "success": True, "phase": "result", "message": "Submitted", "error": None,
            "logs": ["a", "b"], "jobId": "job-7",
            "result": {"success": True, "receiptNumber": "R-77"},
        }))

        out = await service.delegate("form_submit", TASK_DATA)
        assert out["status"] == SUCCESS
        assert out["receiptNumber"] == "R-77"
        assert out["jobId"] == "job-7"

        task = await db.get_task(out["taskId"])
        assert task["status"] == SUCCESS
        assert task["job_id"] == "job-7"
        assert task["execution_log"] == ["a", "b"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_sync_failure(self, service, db) -> None:
        respx.post(f"{WORKER_URL}/execute-task").mock(return_value=httpx.Response(200, json={
            "success": False, "error": "Could not fill field: pin", "logs": [], "jobId": "job-8",
        }))

        out = await service.delegate("form_submit", TASK_DATA)
        assert out["status"] == FAILED
        task = await db.get_task(out["taskId"])
        assert task["error_message"] == "Could not fill field: pin"

    @pytest.mark.asyncio
    @respx.mock
    async def test_sync_worker_error(self, service, db) -> None:
        respx.post(f"{WORKER_URL}/execute-task").mock(
            return_value=httpx.Response(500, json={"error": "boom"})
        )
        out = await service.delegate("form_submit", TASK_DATA)
        assert out["status"] == FAILED
        assert "HTTP 500" in out["error"]
