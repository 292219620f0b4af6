"""Service container — every long-lived object the app needs, built once.

Learn: The cache, the subscription map and the job table are process-wide
state, but they are not module globals. create_app() builds one Services
instance, hangs it on app.state, and routes get it through a FastAPI
dependency. Tests build a fresh one per test.

Lifecycle:
  start(): job workers (after recovery) → cleanup schedule
  stop():  cleanup schedule → job workers → WebSocket connections →
           storage pool and HTTP clients
"""

from datetime import timedelta
from typing import Optional

import structlog

from sheetlink.clients.completions import ChatCompletionClient, CompletionClient
from sheetlink.clients.smartsheet import SheetClient, SmartsheetClient
from sheetlink.config import Settings
from sheetlink.events.types import JOB_STATUS, job_channel
from sheetlink.jobs.models import Job
from sheetlink.jobs.operations import COLUMN_TRANSFORM, ColumnTransformJob
from sheetlink.jobs.queue import JobQueue
from sheetlink.jobs.scheduler import PeriodicTask
from sheetlink.jobs.store import JobStore, MemoryJobStore, SqlJobStore
from sheetlink.realtime.broadcaster import Broadcaster
from sheetlink.services.sheet_cache import SheetCache
from sheetlink.services.webhook_receiver import WebhookReceiver

logger = structlog.get_logger()


def build_job_store(settings: Settings) -> JobStore:
    if settings.database_url:
        return SqlJobStore(settings.database_url, echo=settings.debug)
    return MemoryJobStore()


class Services:
    def __init__(
        self,
        settings: Settings,
        *,
        cache: Optional[SheetCache] = None,
        broadcaster: Optional[Broadcaster] = None,
        job_store: Optional[JobStore] = None,
        sheets: Optional[SheetClient] = None,
        completions: Optional[CompletionClient] = None,
    ):
        self.settings = settings
        self.cache = cache or SheetCache(ttl_seconds=settings.cache_ttl_seconds)
        self.broadcaster = broadcaster or Broadcaster(
            send_timeout=settings.broadcast_send_timeout,
            outbox_size=settings.broadcast_outbox_size,
        )
        self.receiver = WebhookReceiver(
            settings.webhook_secret, self.cache, self.broadcaster
        )

        # External collaborators are optional — without credentials the
        # relay still works, it just can't fetch sheets or run transforms.
        if sheets is None and settings.smartsheet_access_token:
            sheets = SmartsheetClient(
                settings.smartsheet_access_token, settings.smartsheet_api_url
            )
        if completions is None and settings.openai_api_key:
            completions = ChatCompletionClient(
                settings.openai_api_key,
                settings.openai_base_url,
                model=settings.openai_model,
                azure_deployment=settings.azure_openai_deployment,
                azure_api_version=settings.azure_openai_api_version,
            )
        self.sheets = sheets
        self.completions = completions

        self.jobs = JobQueue(
            job_store or build_job_store(settings),
            concurrency=settings.max_concurrent_jobs,
            retention=timedelta(days=settings.job_retention_days),
        )
        if self.sheets is not None and self.completions is not None:
            self.jobs.register(
                COLUMN_TRANSFORM,
                ColumnTransformJob(self.sheets, self.completions, self.cache),
            )
        self.jobs.add_listener(self.push_job_status)

        self.cleanup = PeriodicTask(
            "job-cleanup",
            settings.cleanup_interval_seconds,
            self.jobs.cleanup_old_jobs,
        )

    async def push_job_status(self, job: Job) -> None:
        await self.broadcaster.publish(
            job_channel(job.id),
            {"type": JOB_STATUS, "jobId": job.id, "job": job.to_dict()},
        )

    async def start(self) -> None:
        await self.jobs.start()
        self.cleanup.start()

    async def stop(self) -> None:
        await self.cleanup.stop()
        await self.jobs.stop()
        await self.broadcaster.close_all()
        await self.jobs.close()
        for client in (self.sheets, self.completions):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()
        logger.info("services.stopped")
