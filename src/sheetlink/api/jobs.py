"""Jobs API — submit long-running work and poll its status.

Learn: POST returns 202 with the job id straight away; the work runs on
the queue's workers. Clients then either poll GET /api/jobs/{id} or open
the /ws/jobs/{id} WebSocket to get every transition pushed.
"""

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from sheetlink.api.deps import get_services
from sheetlink.jobs.operations import COLUMN_TRANSFORM
from sheetlink.jobs.queue import (
    JobAlreadyFinishedError,
    JobNotFoundError,
    UnknownJobKindError,
)
from sheetlink.schemas.job import ColumnTransformRequest, JobAccepted, JobCreate
from sheetlink.services.container import Services

logger = structlog.get_logger()
router = APIRouter(prefix="/jobs")


@router.post("", response_model=JobAccepted, status_code=202)
async def create_job(
    body: JobCreate,
    services: Services = Depends(get_services),
):
    """Enqueue a job of any registered kind."""
    try:
        job_id = await services.jobs.enqueue(body.kind, body.payload)
    except UnknownJobKindError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JobAccepted(job_id=job_id, status="pending")


@router.post("/column-transform", response_model=JobAccepted, status_code=202)
async def create_column_transform(
    body: ColumnTransformRequest,
    services: Services = Depends(get_services),
):
    """Fill a target column from source columns with an LLM operation."""
    if COLUMN_TRANSFORM not in services.jobs.kinds:
        return JSONResponse(
            status_code=503,
            content={"error": "Column transforms are not configured"},
        )
    job_id = await services.jobs.enqueue(
        COLUMN_TRANSFORM, body.model_dump(by_alias=True)
    )
    return JobAccepted(job_id=job_id, status="pending")


@router.post("/cleanup")
async def cleanup_jobs(services: Services = Depends(get_services)):
    """Run the retention sweep now instead of waiting for the schedule."""
    removed = await services.cleanup.run_once()
    return {"removed": removed}


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    services: Services = Depends(get_services),
):
    job = await services.jobs.get_status(job_id)
    if job is None:
        return JSONResponse(status_code=404, content={"error": "Job not found"})
    return job.to_dict()


@router.post("/{job_id}/cancel", status_code=202)
async def cancel_job(
    job_id: str,
    services: Services = Depends(get_services),
):
    """Stop a pending or running job; it ends failed with "Job cancelled by user"."""
    try:
        await services.jobs.cancel(job_id)
    except JobNotFoundError:
        return JSONResponse(status_code=404, content={"error": "Job not found"})
    except JobAlreadyFinishedError as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    return {"jobId": job_id, "message": "Job cancellation requested"}
