"""Job queue — runs long sheet operations outside the request cycle.

Learn: enqueue() persists a pending job, drops its id on an asyncio.Queue
and returns straight away. A fixed pool of worker tasks pulls ids and
drives each job through the state machine:

  pending → running → completed (result) | failed (error)

Handlers are plain coroutines registered per job kind:

    async def handler(payload: dict, ctx: JobContext) -> Any

Whatever they return becomes the job result (it must be JSON-serializable,
the durable store keeps it in a JSON column); whatever they raise becomes
the job error. A failing handler never takes the worker down with it.
There are no automatic retries — a failed job stays failed.

cancel() stops a job early. A running job has its handler task cancelled;
a pending one passes through running → failed when a worker reaches it,
without its handler being called. Either way the job ends failed with
"Job cancelled by user".

Every transition and progress report is passed to the listeners (the app
wires one that pushes job_status messages over WebSocket).
"""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

import structlog

from sheetlink.jobs.models import Job, JobStatus, new_job_id, utcnow
from sheetlink.jobs.store import JobStore

logger = structlog.get_logger()

JobHandler = Callable[[dict[str, Any], "JobContext"], Awaitable[Any]]
JobListener = Callable[[Job], Awaitable[None]]

CANCELLED_BY_USER = "Job cancelled by user"
INTERRUPTED_BY_SHUTDOWN = "Job interrupted by shutdown"
INTERRUPTED_BY_RESTART = "Job interrupted by system shutdown"


class UnknownJobKindError(Exception):
    """No handler registered for the requested job kind."""
    pass


class JobNotFoundError(Exception):
    pass


class JobAlreadyFinishedError(Exception):
    """The job is completed or failed; there is nothing to cancel."""
    pass


class JobContext:
    """What a running handler can see and do besides its payload."""

    def __init__(self, queue: "JobQueue", job: Job):
        self._queue = queue
        self._job = job

    @property
    def job_id(self) -> str:
        return self._job.id

    async def report_progress(
        self,
        *,
        processed: Optional[int] = None,
        total: Optional[int] = None,
        failed: Optional[int] = None,
    ) -> None:
        """Update row counters on the running job and notify listeners."""
        await self._queue._update_progress(
            self._job, processed=processed, total=total, failed=failed
        )


class JobQueue:
    def __init__(
        self,
        store: JobStore,
        handlers: Optional[dict[str, JobHandler]] = None,
        *,
        concurrency: int = 4,
        retention: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.concurrency = concurrency
        self.retention = retention
        self._clock = clock
        self._handlers: dict[str, JobHandler] = dict(handlers or {})
        self._listeners: list[JobListener] = []
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._running: dict[str, asyncio.Task] = {}  # job id → handler task
        self._cancel_requested: set[str] = set()

    # ─── Registration ──────────────────────────────────────

    def register(self, kind: str, handler: JobHandler) -> None:
        self._handlers[kind] = handler

    def add_listener(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    @property
    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    @property
    def running(self) -> bool:
        return bool(self._workers)

    # ─── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        """Open storage, recover leftovers from a previous run, spawn workers."""
        if self._workers:
            return
        await self.store.init()
        await self.recover()
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"job-worker-{n}")
            for n in range(self.concurrency)
        ]
        logger.info("job_queue.started", workers=self.concurrency, kinds=self.kinds)

    async def stop(self) -> None:
        """Cancel the workers. A job cut off mid-run is recorded as failed."""
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        logger.info("job_queue.stopped", pending_in_memory=self._queue.qsize())

    async def close(self) -> None:
        await self.store.close()

    async def join(self) -> None:
        """Wait until every enqueued job has been picked up and finished."""
        await self._queue.join()

    async def recover(self) -> None:
        """Resolve jobs left over by a crash or restart.

        A job found running was interrupted mid-flight: its side effects are
        unknown, so it is failed rather than re-run. Pending jobs never
        started and are handed to the workers again.
        """
        for job in await self.store.list_by_status([JobStatus.RUNNING]):
            job.error = INTERRUPTED_BY_RESTART
            await self._transition(job, JobStatus.FAILED)
            logger.warning("job.recovered_as_failed", job_id=job.id, kind=job.kind)

        for job in await self.store.list_by_status([JobStatus.PENDING]):
            self._queue.put_nowait(job.id)
            logger.info("job.requeued", job_id=job.id, kind=job.kind)

    # ─── Public API ────────────────────────────────────────

    async def enqueue(self, kind: str, payload: dict[str, Any]) -> str:
        """Persist a pending job and schedule it. Does not wait for execution."""
        if kind not in self._handlers:
            raise UnknownJobKindError(
                f"Unknown job kind '{kind}'. Available: {self.kinds}"
            )
        now = self._clock()
        job = Job(
            id=new_job_id(),
            kind=kind,
            payload=payload,
            created_at=now,
            updated_at=now,
        )
        await self.store.create(job)
        self._queue.put_nowait(job.id)
        logger.info("job.enqueued", job_id=job.id, kind=kind)
        await self._notify(job)
        return job.id

    async def get_status(self, job_id: str) -> Optional[Job]:
        return await self.store.get(job_id)

    async def cancel(self, job_id: str) -> Job:
        """Request cancellation; returns the job as it was when asked.

        Raises JobNotFoundError, or JobAlreadyFinishedError for a
        completed/failed job. The failed state is recorded by the worker.
        """
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if job.is_terminal:
            raise JobAlreadyFinishedError(
                f"Job {job_id} is already {job.status.value}"
            )

        self._cancel_requested.add(job_id)
        task = self._running.get(job_id)
        if task is not None:
            task.cancel()
        logger.info("job.cancel_requested", job_id=job_id, status=job.status.value)
        return job

    async def cleanup_old_jobs(self, max_age: Optional[timedelta] = None) -> int:
        """Delete terminal jobs older than the retention window."""
        cutoff = self._clock() - (max_age if max_age is not None else self.retention)
        removed = await self.store.delete_terminal_before(cutoff)
        logger.info("job_queue.cleanup", removed=removed, cutoff=cutoff.isoformat())
        return removed

    async def stats(self) -> dict[str, Any]:
        counts = await self.store.count_by_status()
        return {**counts, "queued": self._queue.qsize(), "workers": len(self._workers)}

    # ─── Execution ─────────────────────────────────────────

    async def _worker(self, n: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._execute(job_id)
            except Exception:
                logger.exception("job_queue.worker_error", job_id=job_id, worker=n)
            finally:
                self._cancel_requested.discard(job_id)
                self._queue.task_done()

    async def _execute(self, job_id: str) -> None:
        job = await self.store.get(job_id)
        if job is None or job.status is not JobStatus.PENDING:
            # Purged, or already picked up after a requeue
            return

        log = logger.bind(job_id=job.id, kind=job.kind)
        await self._transition(job, JobStatus.RUNNING)

        if job.id in self._cancel_requested:
            job.error = CANCELLED_BY_USER
            await self._transition(job, JobStatus.FAILED)
            log.info("job.cancelled", started=False)
            return

        handler = self._handlers.get(job.kind)
        if handler is None:
            job.error = f"No handler registered for job kind '{job.kind}'"
            await self._transition(job, JobStatus.FAILED)
            log.error("job.failed", error=job.error)
            return

        log.info("job.started")
        task = asyncio.create_task(handler(job.payload, JobContext(self, job)))
        self._running[job.id] = task
        try:
            result = await task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                # The worker itself is being stopped
                job.error = INTERRUPTED_BY_SHUTDOWN
                await self._transition(job, JobStatus.FAILED)
                log.warning("job.interrupted")
                raise
            job.error = CANCELLED_BY_USER
            await self._transition(job, JobStatus.FAILED)
            log.info("job.cancelled", started=True)
        except Exception as e:
            job.error = str(e) or type(e).__name__
            await self._transition(job, JobStatus.FAILED)
            log.warning("job.failed", error=job.error, error_type=type(e).__name__)
        else:
            await self._complete(job, result, log)
        finally:
            self._running.pop(job.id, None)

    async def _complete(self, job: Job, result: Any, log) -> None:
        # Checked before the transition so the stored row never lags behind
        try:
            json.dumps(result)
        except (TypeError, ValueError) as e:
            job.error = f"Job result is not JSON-serializable: {e}"
            await self._transition(job, JobStatus.FAILED)
            log.warning("job.failed", error=job.error)
            return
        job.result = result
        await self._transition(job, JobStatus.COMPLETED)
        log.info("job.completed")

    async def _transition(self, job: Job, status: JobStatus) -> None:
        job.transition(status, now=self._clock())
        await self.store.save(job)
        await self._notify(job)

    async def _update_progress(
        self,
        job: Job,
        *,
        processed: Optional[int],
        total: Optional[int],
        failed: Optional[int],
    ) -> None:
        if job.status is not JobStatus.RUNNING:
            return
        for key, value in (("processed", processed), ("total", total), ("failed", failed)):
            if value is not None:
                job.progress[key] = value
        job.updated_at = self._clock()
        await self.store.save(job)
        await self._notify(job)

    async def _notify(self, job: Job) -> None:
        for listener in self._listeners:
            try:
                await listener(job)
            except Exception:
                logger.exception("job_queue.listener_error", job_id=job.id)
