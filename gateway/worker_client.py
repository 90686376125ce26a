"""HTTP client for the RPA worker.

Two timeout budgets: a short one for registration/polling calls and a long
one for synchronous execution, which holds the connection for a full
automation run. Every failure (transport error, non-2xx, undecodable body)
surfaces as WorkerError so callers have one thing to catch.
"""

from __future__ import annotations

import logging

import httpx

log = logging.getLogger(__name__)


class WorkerError(Exception):
    """The worker could not be reached or answered with something unusable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WorkerClient:
    """Async HTTP client for the RPA worker."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        register_timeout: float = 10.0,
        execute_timeout: float = 330.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._register_timeout = register_timeout
        self._execute_timeout = execute_timeout
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Create the persistent httpx.AsyncClient."""
        headers = {"X-API-Key": self._api_key} if self._api_key else {}
        self._client = httpx.AsyncClient(
            timeout=self._register_timeout, headers=headers,
        )

    async def close(self) -> None:
        """Close the httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_started(self) -> httpx.AsyncClient:
        """Return the active client or raise if not started."""
        if self._client is None:
            raise RuntimeError(
                "WorkerClient not started. Call await client.start() first."
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        json: dict | None = None,
    ) -> dict:
        client = self._ensure_started()
        url = f"{self._base_url}{path}"
        try:
            resp = await client.request(method, url, json=json, timeout=timeout)
        except httpx.TimeoutException as exc:
            log.error("Worker %s %s timed out after %gs", method, path, timeout)
            raise WorkerError(f"Worker request timed out after {timeout:g}s") from exc
        except httpx.HTTPError as exc:
            log.error("Worker %s %s failed: %s", method, path, exc)
            raise WorkerError(f"Worker unreachable: {exc}") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise WorkerError(
                f"Worker returned invalid JSON (HTTP {resp.status_code})",
                resp.status_code,
            ) from exc

        if resp.status_code >= 400:
            detail = body.get("error") if isinstance(body, dict) else None
            log.warning(
                "Worker rejected %s %s: %d %s", method, path, resp.status_code, detail,
            )
            raise WorkerError(
                f"Worker returned HTTP {resp.status_code}: {detail or resp.text[:200]}",
                resp.status_code,
            )
        if not isinstance(body, dict):
            raise WorkerError("Worker returned a non-object JSON body", resp.status_code)
        return body

    # -- Execution ---------------------------------------------------------------

    async def execute_task(self, task_type: str, task_data: dict) -> dict:
        """POST /execute-task. Blocks for the full run (long timeout)."""
        return await self._request(
            "POST",
            "/execute-task",
            self._execute_timeout,
            json={"taskType": task_type, "taskData": task_data},
        )

    async def register_job(self, task_type: str, task_data: dict) -> str:
        """POST /{domain}/{action}. Returns the worker's jobId immediately.

        task_type "form_submit" is routed as domain "form", action "submit".
        """
        domain, sep, action = task_type.partition("_")
        if not sep or not domain or not action:
            raise ValueError(f"Task type {task_type!r} is not of the form domain_action")

        body = await self._request(
            "POST", f"/{domain}/{action}", self._register_timeout, json=task_data,
        )
        job_id = body.get("jobId")
        if not job_id:
            raise WorkerError("Worker accepted the job but returned no jobId")
        return job_id

    async def get_job(self, job_id: str) -> dict:
        """GET /jobs/{job_id}. {jobId, state, progress, result?, failedReason?}"""
        return await self._request("GET", f"/jobs/{job_id}", self._register_timeout)

    # -- Health ------------------------------------------------------------------

    async def health(self) -> bool:
        """GET /health. Returns True if the worker is alive and responding."""
        client = self._ensure_started()
        try:
            resp = await client.get(f"{self._base_url}/health")
            return resp.status_code == 200
        except httpx.HTTPError:
            return False
