"""RPA gateway: consumer-facing HTTP API in front of the worker.

Endpoints:
  POST /api/rpa/delegate                      - {taskType, taskData, async?}
  GET  /api/rpa/delegate?taskId=...           - task record (or recent tasks)
  GET  /api/rpa/status?jobId=...&submissionId= - poll an async job
  GET  /health                                - liveness + worker reachability
"""

from __future__ import annotations

import asyncio
import logging
import signal

from aiohttp import web

from gateway.config import Config
from gateway.db import Database, InvalidTaskTransition
from gateway.delegation import DelegationService
from gateway.worker_client import WorkerClient, WorkerError

log = logging.getLogger(__name__)


def _task_view(task: dict) -> dict:
    return {
        "taskId": task["id"],
        "taskType": task["task_type"],
        "targetSite": task["target_site"],
        "targetUrl": task["target_url"],
        "status": task["status"],
        "progress": task["progress"],
        "jobId": task["job_id"],
        "result": task["result"],
        "errorMessage": task["error_message"],
        "executionLog": task["execution_log"],
        "startedAt": task["started_at"],
        "completedAt": task["completed_at"],
        "createdAt": task["created_at"],
    }


class GatewayServer:
    """HTTP server exposing delegation and polling to consumers."""

    def __init__(
        self,
        service: DelegationService,
        db: Database,
        worker: WorkerClient,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> None:
        self._service = service
        self._db = db
        self._worker = worker
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/rpa/delegate", self._handle_delegate)
        app.router.add_get("/api/rpa/delegate", self._handle_get_task)
        app.router.add_get("/api/rpa/status", self._handle_status)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        log.info("Gateway listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        """Stop the HTTP server and release resources."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # -- Handlers ----------------------------------------------------------------

    async def _handle_delegate(self, request: web.Request) -> web.Response:
        """POST /api/rpa/delegate

        Body: {"taskType": str, "taskData": dict, "async": bool,
               "targetSite": str, "targetUrl": str}
        """
        try:
            data = await request.json()
        except Exception:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        if not isinstance(data, dict):
            return web.json_response({"error": "Invalid JSON"}, status=400)

        task_type = data.get("taskType")
        task_data = data.get("taskData") or {}
        if not task_type or not isinstance(task_data, dict):
            return web.json_response(
                {"error": "Missing taskType or taskData"}, status=400
            )

        try:
            outcome = await self._service.delegate(
                task_type,
                task_data,
                run_async=bool(data.get("async", False)),
                target_site=data.get("targetSite", ""),
                target_url=data.get("targetUrl", ""),
            )
        except Exception:
            log.exception("Delegation error for %s", task_type)
            return web.json_response({"error": "Internal error"}, status=500)

        if outcome["status"] == "pending":
            return web.json_response(outcome, status=202)
        return web.json_response(outcome)

    async def _handle_get_task(self, request: web.Request) -> web.Response:
        """GET /api/rpa/delegate?taskId=... (without taskId: recent tasks)"""
        task_id = request.query.get("taskId")
        if not task_id:
            tasks = await self._db.list_tasks(status=request.query.get("status"))
            return web.json_response({"tasks": [_task_view(t) for t in tasks]})

        task = await self._db.get_task(task_id)
        if task is None:
            return web.json_response(
                {"error": f"No task with id {task_id}"}, status=404
            )
        return web.json_response(_task_view(task))

    async def _handle_status(self, request: web.Request) -> web.Response:
        """GET /api/rpa/status?jobId=...&submissionId=..."""
        job_id = request.query.get("jobId")
        if not job_id:
            return web.json_response({"error": "Missing jobId"}, status=400)

        try:
            status = await self._service.poll(
                job_id, task_id=request.query.get("submissionId"),
            )
        except InvalidTaskTransition as exc:
            return web.json_response({"error": str(exc)}, status=409)
        except WorkerError as exc:
            return web.json_response({"error": str(exc)}, status=502)
        except Exception:
            log.exception("Status poll error for job %s", job_id)
            return web.json_response({"error": "Internal error"}, status=500)
        return web.json_response(status)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health"""
        return web.json_response({
            "ok": True,
            "worker_reachable": await self._worker.health(),
        })


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

async def run(config: Config) -> None:
    """Open the task store, connect to the worker, serve until shutdown."""
    db = Database(config.db_path)
    await db.connect()

    worker = WorkerClient(
        config.worker_url,
        api_key=config.worker_api_key,
        register_timeout=config.register_timeout_seconds,
        execute_timeout=config.execute_timeout_seconds,
    )
    await worker.start()

    service = DelegationService(db, worker)
    server = GatewayServer(service, db, worker, host=config.host, port=config.port)
    await server.start()

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        log.info("Shutdown signal received")
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    log.info("Gateway running (port=%d, worker=%s)", config.port, config.worker_url)

    await shutdown.wait()
    log.info("Shutting down...")
    await server.stop()
    await worker.close()
    await db.close()
    log.info("Shutdown complete")


def main() -> None:
    """Entry point: load config, configure logging, run the gateway."""
    config = Config.load()

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
