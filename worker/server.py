"""RPA worker: main entry point.

Runs browser automation on behalf of the gateway. Every request becomes a
job in the in-memory JobQueue; the sync endpoint simply waits for it.

Endpoints (matches what the gateway's WorkerClient sends):
  POST /execute-task       - run a task and answer with its result (sync)
  POST /queue/add          - enqueue {taskType, taskData}, answer 202 with jobId
  POST /{domain}/{action}  - enqueue task type "<domain>_<action>", body is taskData
  GET  /jobs/{jobId}       - job state, progress and (once terminal) result
  GET  /health             - liveness, slots, job counts (no auth)

All endpoints except /health require X-API-Key or Authorization: Bearer
when WORKER_API_KEY is set.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import signal
import subprocess

from aiohttp import web

from worker.config import WorkerConfig
from worker.executor import TaskExecutor
from worker.job_queue import JobQueue, JobState, UnknownTaskType
from worker.ocr import TesseractRecognizer

log = logging.getLogger(__name__)

try:
    GIT_HASH = subprocess.run(
        ["git", "rev-parse", "--short", "HEAD"],
        capture_output=True,
        text=True,
        timeout=5,
    ).stdout.strip() or "unknown"
except Exception:
    GIT_HASH = "unknown"

PUBLIC_PATHS = frozenset({"/health"})


def _presented_key(request: web.Request) -> str:
    key = request.headers.get("X-API-Key", "")
    if key:
        return key
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return ""


class WorkerServer:
    """HTTP front of the worker: auth, request validation, job queue access."""

    def __init__(self, config: WorkerConfig, queue: JobQueue) -> None:
        self._config = config
        self._queue = queue
        self._runner: web.AppRunner | None = None

        if not config.api_key:
            log.warning("WORKER_API_KEY not set; accepting unauthenticated requests")

    # ------------------------------------------------------------------
    # App
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[self._auth_middleware])
        app.router.add_get("/health", self._handle_health)
        app.router.add_post("/execute-task", self._handle_execute_task)
        app.router.add_post("/queue/add", self._handle_queue_add)
        app.router.add_get("/jobs/{job_id}", self._handle_get_job)
        # Registered last so the fixed paths above win.
        app.router.add_post("/{domain}/{action}", self._handle_domain_action)
        return app

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler):
        if self._config.api_key and request.path not in PUBLIC_PATHS:
            presented = _presented_key(request)
            if not presented or not hmac.compare_digest(
                presented.encode(), self._config.api_key.encode(),
            ):
                log.warning("Rejected unauthenticated %s %s", request.method, request.path)
                return web.json_response({"error": "Unauthorized"}, status=401)
        return await handler(request)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._queue.start()
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()
        log.info(
            "Worker listening on %s:%d (max_jobs=%d, timeout=%gs)",
            self._config.host, self._config.port,
            self._config.max_concurrent_jobs, self._config.job_timeout_seconds,
        )

    async def stop(self) -> None:
        """Graceful shutdown: drain jobs, then stop the HTTP listener."""
        await self._queue.stop()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        log.info("Worker stopped")

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------

    async def _read_json(self, request: web.Request) -> dict | None:
        try:
            data = await request.json()
        except Exception:
            return None
        return data if isinstance(data, dict) else None

    def _enqueue(self, task_type: str, task_data: dict) -> web.Response:
        try:
            job = self._queue.submit(task_type, task_data)
        except UnknownTaskType:
            return web.json_response(
                {"success": False, "error": f"Unknown task type: {task_type}"},
                status=400,
            )
        return web.json_response(
            {
                "success": True,
                "jobId": job.job_id,
                "async": True,
                "message": f"Job {job.job_id} queued",
            },
            status=202,
        )

    async def _handle_execute_task(self, request: web.Request) -> web.Response:
        """POST /execute-task

        Body: {"taskType": str, "taskData": dict}
        Blocks until the job is terminal.
        """
        data = await self._read_json(request)
        if data is None:
            return web.json_response({"error": "Invalid JSON"}, status=400)

        task_type = data.get("taskType")
        task_data = data.get("taskData") or {}
        if not task_type or not isinstance(task_data, dict):
            return web.json_response(
                {"success": False, "error": "Missing taskType or taskData"}, status=400,
            )

        try:
            job = await self._queue.run_sync(task_type, task_data)
        except UnknownTaskType:
            return web.json_response(
                {"success": False, "error": f"Unknown task type: {task_type}"},
                status=400,
            )

        result = job.result or {}
        return web.json_response({
            "success": job.state is JobState.COMPLETED and bool(result.get("success")),
            "phase": result.get("phase", ""),
            "message": result.get("message") or job.failed_reason or "",
            "error": result.get("error") or job.failed_reason,
            "logs": result.get("logs", []),
            "result": result,
            "jobId": job.job_id,
        })

    async def _handle_queue_add(self, request: web.Request) -> web.Response:
        """POST /queue/add

        Body: {"taskType": str, "taskData": dict}
        """
        data = await self._read_json(request)
        if data is None:
            return web.json_response({"error": "Invalid JSON"}, status=400)

        task_type = data.get("taskType")
        task_data = data.get("taskData") or {}
        if not task_type or not isinstance(task_data, dict):
            return web.json_response(
                {"success": False, "error": "Missing taskType or taskData"}, status=400,
            )
        return self._enqueue(task_type, task_data)

    async def _handle_domain_action(self, request: web.Request) -> web.Response:
        """POST /{domain}/{action}

        Body is the taskData itself; task type is "<domain>_<action>".
        """
        data = await self._read_json(request)
        if data is None:
            return web.json_response({"error": "Invalid JSON"}, status=400)

        domain = request.match_info["domain"]
        action = request.match_info["action"]
        return self._enqueue(f"{domain}_{action}", data)

    async def _handle_get_job(self, request: web.Request) -> web.Response:
        """GET /jobs/{job_id}"""
        job_id = request.match_info["job_id"]
        job = self._queue.get(job_id)
        if job is None:
            return web.json_response(
                {"error": f"No job with id {job_id}"}, status=404,
            )
        if job.terminal:
            self._queue.mark_retrieved(job_id)
        return web.json_response(job.to_dict())

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health"""
        counts = self._queue.counts()
        return web.json_response({
            "ok": True,
            "status": "healthy",
            "version": GIT_HASH,
            "max_jobs": self._config.max_concurrent_jobs,
            "slots_available": max(
                self._config.max_concurrent_jobs - counts[JobState.ACTIVE.value], 0,
            ),
            "jobs": counts,
        })


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

async def run(config: WorkerConfig) -> None:
    """Wire queue + executor + server, run until shutdown."""
    recognizer = TesseractRecognizer(tesseract_cmd=config.tesseract_cmd)
    executor = TaskExecutor(config, recognizer=recognizer)
    queue = JobQueue(config, executor)
    server = WorkerServer(config, queue)

    await server.start()

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        log.info("Shutdown signal received")
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    log.info(
        "Worker %s running (port=%d, profile=%s, task types=%s)",
        GIT_HASH, config.port, config.human_profile, ", ".join(executor.task_types),
    )

    await shutdown.wait()
    log.info("Shutting down...")
    await server.stop()
    log.info("Shutdown complete")


def main() -> None:
    """Entry point: load config, configure logging, run the worker."""
    config = WorkerConfig.load()

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
