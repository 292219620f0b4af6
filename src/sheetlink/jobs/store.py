"""Job table backends.

Learn: The queue only talks to the JobStore interface. Two backends:

- MemoryJobStore: a dict, lives as long as the process (default)
- SqlJobStore: SQLAlchemy async table, survives restarts

Both implement the retention delete as one indivisible step, so the
cleanup sweep can run while workers are finishing jobs and new jobs are
being enqueued — it only ever matches terminal jobs older than the cutoff.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from sheetlink.db.engine import build_engine, build_session_factory
from sheetlink.db.models import Base, JobRecord
from sheetlink.jobs.models import TERMINAL_STATUSES, Job, JobStatus


class JobStore(ABC):
    async def init(self) -> None:
        """Prepare storage (create tables, open pools)."""

    async def close(self) -> None:
        """Release held resources."""

    @abstractmethod
    async def create(self, job: Job) -> None: ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    async def save(self, job: Job) -> None: ...

    @abstractmethod
    async def list_by_status(self, statuses: Iterable[JobStatus]) -> list[Job]: ...

    @abstractmethod
    async def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete completed/failed jobs last updated before cutoff. Returns count."""

    @abstractmethod
    async def count_by_status(self) -> dict[str, int]: ...


# ═══════════════════════════════════════════════════════════
# In-memory
# ═══════════════════════════════════════════════════════════


class MemoryJobStore(JobStore):
    """Process-local job table. Hands out copies so callers can't mutate state."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}

    async def create(self, job: Job) -> None:
        self._jobs[job.id] = copy.deepcopy(job)

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    async def save(self, job: Job) -> None:
        if job.id in self._jobs:
            self._jobs[job.id] = copy.deepcopy(job)

    async def list_by_status(self, statuses: Iterable[JobStatus]) -> list[Job]:
        wanted = set(statuses)
        return [copy.deepcopy(j) for j in self._jobs.values() if j.status in wanted]

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        # No await between scan and delete — atomic on the event loop
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.status in TERMINAL_STATUSES and job.updated_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
        return len(expired)

    async def count_by_status(self) -> dict[str, int]:
        counts = {s.value: 0 for s in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return counts


# ═══════════════════════════════════════════════════════════
# SQL
# ═══════════════════════════════════════════════════════════


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_job(record: JobRecord) -> Job:
    return Job(
        id=record.id,
        kind=record.kind,
        payload=record.payload or {},
        status=JobStatus(record.status),
        progress=dict(record.progress or {}),
        result=record.result,
        error=record.error,
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


class SqlJobStore(JobStore):
    """Durable job table backed by SQLAlchemy (asyncpg or aiosqlite)."""

    def __init__(self, database_url: str, echo: bool = False):
        self.engine: AsyncEngine = build_engine(database_url, echo=echo)
        self._sessions = build_session_factory(self.engine)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def create(self, job: Job) -> None:
        async with self._sessions() as db:
            db.add(JobRecord(
                id=job.id,
                kind=job.kind,
                payload=job.payload,
                status=job.status.value,
                progress=dict(job.progress),
                result=job.result,
                error=job.error,
                created_at=job.created_at,
                updated_at=job.updated_at,
            ))
            await db.commit()

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._sessions() as db:
            record = await db.get(JobRecord, job_id)
            return _to_job(record) if record else None

    async def save(self, job: Job) -> None:
        async with self._sessions() as db:
            await db.execute(
                update(JobRecord)
                .where(JobRecord.id == job.id)
                .values(
                    status=job.status.value,
                    progress=dict(job.progress),
                    result=job.result,
                    error=job.error,
                    updated_at=job.updated_at,
                )
            )
            await db.commit()

    async def list_by_status(self, statuses: Iterable[JobStatus]) -> list[Job]:
        values = [s.value for s in statuses]
        async with self._sessions() as db:
            result = await db.execute(
                select(JobRecord)
                .where(JobRecord.status.in_(values))
                .order_by(JobRecord.created_at.asc())
            )
            return [_to_job(r) for r in result.scalars().all()]

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        async with self._sessions() as db:
            result = await db.execute(
                delete(JobRecord).where(
                    JobRecord.status.in_([s.value for s in TERMINAL_STATUSES]),
                    JobRecord.updated_at < cutoff,
                )
            )
            await db.commit()
            return result.rowcount or 0

    async def count_by_status(self) -> dict[str, int]:
        counts = {s.value: 0 for s in JobStatus}
        async with self._sessions() as db:
            result = await db.execute(
                select(JobRecord.status, func.count()).group_by(JobRecord.status)
            )
            for status, n in result.all():
                counts[status] = n
        return counts
