"""
Parallel project scanning over a pool of worker processes.

Each worker is a persistent ``spawn`` process with two one-way pipes: tasks
in, messages out. A worker builds its own ProjectScanner (and signature
database) once, then scans one project at a time until it receives ``None``.

All bookkeeping (pending deque, in-flight table, aggregate) lives in the
coordinator coroutine. Blocking pipe reads happen in a thread via
``asyncio.to_thread`` and only hand data back; they never touch that state.

A task is claimed by popping its id from the in-flight table. Whichever of
result, error, timeout or worker death claims it first wins; anything that
arrives later for the same id is discarded.
"""

import asyncio
import functools
import logging
import multiprocessing
import pickle
import signal
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from multiprocessing.connection import Connection, wait
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..constants import (
    RESULT_POLL_INTERVAL_SECONDS,
    WORKER_SHUTDOWN_GRACE_SECONDS,
    WORKER_TERMINATE_GRACE_SECONDS,
)
from ..core.config import ScanConfig
from ..core.exceptions import ProjectTimeoutError, ScannerError, WorkerPoolError
from ..core.logging_config import configure_logging
from .models import AggregateResult, ProjectError, ProjectResult
from .project_scanner import ProjectScanner

logger = logging.getLogger(__name__)

ScanFunction = Callable[[ScanConfig, str], ProjectResult]

# (kind, worker_id, task_id, project, payload); kind is "result" or "error"
Message = tuple[str, int, int, str, Any]

TIMEOUT_ERROR = "timeout"


def _worker_main(
    worker_id: int,
    config_data: dict[str, Any],
    task_conn: Connection,
    result_conn: Connection,
    scan_function: ScanFunction | None,
) -> None:
    """Worker process entry point."""
    # Ctrl-C is handled by the coordinator, which shuts workers down.
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    config = ScanConfig.model_validate(config_data)
    configure_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
    )

    scan: Callable[[str], ProjectResult] | None = None
    init_error = None
    try:
        if scan_function is None:
            scan = ProjectScanner(config).scan_project
        else:
            scan = functools.partial(scan_function, config)
    except Exception as e:
        init_error = f"worker initialization failed: {e}"
        logger.error(init_error, extra={"event": "worker_init_failed", "worker_id": worker_id})

    while True:
        try:
            task = task_conn.recv()
        except (EOFError, OSError):
            break
        if task is None:
            break

        task_id, project = task
        message: Message
        if scan is None:
            message = ("error", worker_id, task_id, project, init_error)
        else:
            try:
                result = scan(project)
                message = ("result", worker_id, task_id, project, result.model_dump(mode="json"))
            except Exception as e:
                logger.error(
                    f"Error scanning {project}: {e}",
                    extra={"event": "project_error", "project": project, "worker_id": worker_id},
                )
                message = ("error", worker_id, task_id, project, f"{type(e).__name__}: {e}")

        try:
            result_conn.send(message)
        except (OSError, ValueError):
            break

    task_conn.close()
    result_conn.close()


@dataclass
class _Worker:
    worker_id: int
    process: Any
    task_conn: Connection
    result_conn: Connection
    task_id: int | None = None

    @property
    def busy(self) -> bool:
        return self.task_id is not None

    def close(self) -> None:
        for conn in (self.task_conn, self.result_conn):
            try:
                conn.close()
            except OSError:
                pass


@dataclass
class _Assignment:
    worker_id: int
    project: str
    started: float
    deadline: float


class ParallelScanner:
    """Scans many projects concurrently with per-project timeouts.

    Args:
        config: Scan configuration; ``performance.max_concurrency`` bounds the
            pool and ``performance.timeout`` is the per-project budget.
        scan_function: Optional module-level callable ``(config, project_path)
            -> ProjectResult`` run in the workers instead of ProjectScanner.
            It must be picklable.
    """

    def __init__(self, config: ScanConfig, scan_function: ScanFunction | None = None):
        self.config = config
        self.scan_function = scan_function
        self._ctx = multiprocessing.get_context("spawn")
        self._config_data = config.model_dump(mode="json")

        self._workers: dict[int, _Worker] = {}
        self._pending: deque[str] = deque()
        self._in_flight: dict[int, _Assignment] = {}
        self._aggregate: AggregateResult | None = None
        self._next_worker_id = 0
        self._next_task_id = 0
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def scan_projects(self, project_paths: Iterable[str | Path]) -> AggregateResult:
        """
        Scan every project and return the merged result.

        ``results`` and ``errors`` are in completion order. Every project ends
        up in exactly one of them.

        Raises:
            ScannerError: If a scan is already running on this instance
            WorkerPoolError: If no worker process could be started
        """
        if self._running:
            raise ScannerError("A scan is already running")
        self._running = True

        start = time.monotonic()
        projects = [str(p) for p in project_paths]
        aggregate = AggregateResult()
        aggregate.summary.total_projects = len(projects)
        self._aggregate = aggregate

        try:
            if projects:
                pool_size = min(self.config.performance.max_concurrency, len(projects))
                self._start_pool(pool_size)
                aggregate.summary.concurrency = len(self._workers)
                self._pending = deque(projects)
                logger.info(
                    f"Scanning {len(projects)} projects with {len(self._workers)} workers"
                )
                await self._run(aggregate)
        finally:
            await asyncio.to_thread(self._shutdown)
            self._pending.clear()
            self._in_flight.clear()
            self._running = False
            aggregate.summary.duration = time.monotonic() - start

        logger.info(
            f"Scan finished: {aggregate.summary.scanned} scanned, "
            f"{aggregate.summary.failed} failed in {aggregate.summary.duration:.2f}s"
        )
        return aggregate

    def status(self) -> dict[str, Any]:
        """Snapshot of progress for monitoring."""
        aggregate = self._aggregate
        workers = []
        for worker in self._workers.values():
            assignment = self._in_flight.get(worker.task_id) if worker.busy else None
            workers.append(
                {
                    "worker_id": worker.worker_id,
                    "pid": worker.process.pid,
                    "state": "working" if worker.busy else "idle",
                    "project": assignment.project if assignment else None,
                }
            )
        return {
            "running": self._running,
            "total_projects": aggregate.summary.total_projects if aggregate else 0,
            "processed": aggregate.completed if aggregate else 0,
            "queued": len(self._pending),
            "in_flight": len(self._in_flight),
            "workers": workers,
        }

    # -- pool management ---------------------------------------------------

    def _spawn_worker(self) -> _Worker | None:
        worker_id = self._next_worker_id
        self._next_worker_id += 1

        task_reader, task_writer = self._ctx.Pipe(duplex=False)
        result_reader, result_writer = self._ctx.Pipe(duplex=False)
        process = self._ctx.Process(
            target=_worker_main,
            args=(worker_id, self._config_data, task_reader, result_writer, self.scan_function),
            name=f"npmsentry-worker-{worker_id}",
            daemon=True,
        )
        try:
            process.start()
        except (OSError, pickle.PicklingError, AttributeError, TypeError) as e:
            logger.error(f"Failed to start worker {worker_id}: {e}")
            for conn in (task_reader, task_writer, result_reader, result_writer):
                conn.close()
            return None
        finally:
            # The child owns these ends now
            task_reader.close()
            result_writer.close()

        worker = _Worker(worker_id, process, task_writer, result_reader)
        self._workers[worker_id] = worker
        logger.debug(f"Started worker {worker_id} (pid {process.pid})")
        return worker

    def _start_pool(self, size: int) -> None:
        for _ in range(size):
            self._spawn_worker()

        if not self._workers:
            raise WorkerPoolError(f"Could not start any of {size} worker processes")
        if len(self._workers) < size:
            logger.warning(
                f"Started {len(self._workers)} of {size} workers, continuing with a smaller pool"
            )

    def _stop_process(self, process: Any) -> None:
        process.terminate()
        process.join(WORKER_TERMINATE_GRACE_SECONDS)
        if process.is_alive():
            process.kill()
            process.join()

    async def _replace_worker(self, worker: _Worker, reason: str) -> None:
        self._workers.pop(worker.worker_id, None)
        if worker.process.is_alive():
            await asyncio.to_thread(self._stop_process, worker.process)
        else:
            worker.process.join(0)
        worker.close()

        replacement = self._spawn_worker()
        if replacement is None:
            logger.error(f"Could not replace worker {worker.worker_id} ({reason})")
            return
        logger.info(
            f"Replaced worker {worker.worker_id} with {replacement.worker_id} ({reason})",
            extra={"event": "worker_replaced", "worker_id": worker.worker_id},
        )

    def _shutdown(self) -> None:
        workers = list(self._workers.values())
        self._workers.clear()

        for worker in workers:
            try:
                worker.task_conn.send(None)
            except (OSError, ValueError):
                pass

        deadline = time.monotonic() + WORKER_SHUTDOWN_GRACE_SECONDS
        for worker in workers:
            worker.process.join(max(0.0, deadline - time.monotonic()))
            if worker.process.is_alive():
                logger.debug(f"Worker {worker.worker_id} did not exit, terminating it")
                self._stop_process(worker.process)
            worker.close()

    # -- coordination loop -------------------------------------------------

    async def _run(self, aggregate: AggregateResult) -> None:
        while self._pending or self._in_flight:
            await self._dispatch()

            if not self._in_flight:
                # Projects remain but no worker could take them
                self._fail_pending(aggregate, "no worker available")
                break

            channels = [(w.worker_id, w.result_conn) for w in self._workers.values()]
            messages, closed = await asyncio.to_thread(
                self._collect, channels, self._poll_timeout()
            )

            for message in messages:
                self._handle_message(message, aggregate)
            for worker_id in closed:
                await self._handle_worker_exit(worker_id, aggregate)
            await self._check_deadlines(aggregate)

    async def _dispatch(self) -> None:
        replacements = 0
        while self._pending:
            worker = next((w for w in self._workers.values() if not w.busy), None)
            if worker is None:
                if self._workers or self._spawn_worker() is None:
                    return
                continue

            if not worker.process.is_alive():
                if replacements >= self.config.performance.max_concurrency:
                    return
                replacements += 1
                await self._replace_worker(worker, "exited while idle")
                continue

            project = self._pending.popleft()
            task_id = self._next_task_id
            self._next_task_id += 1
            try:
                worker.task_conn.send((task_id, project))
            except (OSError, ValueError) as e:
                logger.warning(f"Could not hand {project} to worker {worker.worker_id}: {e}")
                self._pending.appendleft(project)
                if replacements >= self.config.performance.max_concurrency:
                    return
                replacements += 1
                await self._replace_worker(worker, "task channel broken")
                continue

            now = time.monotonic()
            worker.task_id = task_id
            self._in_flight[task_id] = _Assignment(
                worker_id=worker.worker_id,
                project=project,
                started=now,
                deadline=now + self.config.performance.timeout,
            )
            logger.debug(
                f"Dispatched {project} to worker {worker.worker_id}",
                extra={"event": "project_dispatched", "project": project, "worker_id": worker.worker_id},
            )

    def _poll_timeout(self) -> float:
        if not self._in_flight:
            return RESULT_POLL_INTERVAL_SECONDS
        nearest = min(a.deadline for a in self._in_flight.values())
        return max(0.0, min(RESULT_POLL_INTERVAL_SECONDS, nearest - time.monotonic()))

    @staticmethod
    def _collect(
        channels: list[tuple[int, Connection]], timeout: float
    ) -> tuple[list[Message], list[int]]:
        """Wait for worker output. Runs in a thread; touches only the pipes."""
        ready = wait([conn for _, conn in channels], timeout)
        messages: list[Message] = []
        closed: list[int] = []
        for worker_id, conn in channels:
            if conn not in ready:
                continue
            try:
                while conn.poll():
                    messages.append(conn.recv())
            except (EOFError, OSError):
                closed.append(worker_id)
        return messages, closed

    def _claim(self, task_id: int) -> _Assignment | None:
        assignment = self._in_flight.pop(task_id, None)
        if assignment is not None:
            worker = self._workers.get(assignment.worker_id)
            if worker is not None and worker.task_id == task_id:
                worker.task_id = None
        return assignment

    def _handle_message(self, message: Message, aggregate: AggregateResult) -> None:
        kind, worker_id, task_id, project, payload = message
        assignment = self._claim(task_id)
        if assignment is None:
            logger.debug(f"Discarding stale {kind} for {project} from worker {worker_id}")
            return

        duration = time.monotonic() - assignment.started
        if kind == "result":
            try:
                result = ProjectResult.model_validate(payload)
            except ValidationError as e:
                self._record_error(aggregate, project, f"invalid result: {e}", worker_id)
                return
            aggregate.add_result(result)
            logger.info(
                f"Scanned {project} in {duration:.2f}s "
                f"({result.summary.issues_found} issues)",
                extra={
                    "event": "project_complete",
                    "project": project,
                    "worker_id": worker_id,
                    "duration": duration,
                },
            )
        else:
            self._record_error(aggregate, project, str(payload), worker_id)

    def _record_error(
        self, aggregate: AggregateResult, project: str, error: str, worker_id: int | None
    ) -> None:
        aggregate.add_error(
            ProjectError(
                project=Path(project).name, path=project, error=error, worker_id=worker_id
            )
        )
        logger.warning(
            f"Failed to scan {project}: {error}",
            extra={"event": "project_error", "project": project, "worker_id": worker_id, "error": error},
        )

    async def _handle_worker_exit(self, worker_id: int, aggregate: AggregateResult) -> None:
        worker = self._workers.get(worker_id)
        if worker is None:
            return

        await asyncio.to_thread(worker.process.join, WORKER_TERMINATE_GRACE_SECONDS)
        exit_code = worker.process.exitcode
        if worker.task_id is not None:
            assignment = self._claim(worker.task_id)
            if assignment is not None:
                self._record_error(
                    aggregate,
                    assignment.project,
                    f"worker exited unexpectedly (exit code {exit_code})",
                    worker_id,
                )
        await self._replace_worker(worker, f"exited with code {exit_code}")

    async def _check_deadlines(self, aggregate: AggregateResult) -> None:
        now = time.monotonic()
        expired = [tid for tid, a in self._in_flight.items() if now >= a.deadline]
        for task_id in expired:
            assignment = self._claim(task_id)
            if assignment is None:
                continue

            timeout = self.config.performance.timeout
            logger.warning(
                str(ProjectTimeoutError(assignment.project, timeout)),
                extra={
                    "event": "project_timeout",
                    "project": assignment.project,
                    "worker_id": assignment.worker_id,
                    "timeout": timeout,
                },
            )
            aggregate.add_error(
                ProjectError(
                    project=Path(assignment.project).name,
                    path=assignment.project,
                    error=TIMEOUT_ERROR,
                    worker_id=assignment.worker_id,
                )
            )

            worker = self._workers.get(assignment.worker_id)
            if worker is not None:
                await self._replace_worker(worker, "timeout")

    def _fail_pending(self, aggregate: AggregateResult, reason: str) -> None:
        while self._pending:
            self._record_error(aggregate, self._pending.popleft(), reason, None)
