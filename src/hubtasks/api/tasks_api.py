"""HTTP routes for task submission and tracking."""

from __future__ import annotations

import logging

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)

from ..exceptions import (
    JobNotFoundError,
    TerminalValidationError,
    TransientNetworkError,
    UploadError,
)
from ..tasks.orchestrator import TaskOrchestrator
from ..tasks.task_models import CanonicalStatus, FailureReason
from .tasks_schemas import (
    JobActionResponse,
    JobListResponse,
    JobSchema,
    RegionListResponse,
    RegionSchema,
    SubmitTaskRequest,
    SubmitTaskResponse,
    TaskErrorSchema,
    UploadResponse,
)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])
regions_router = APIRouter(prefix="/api", tags=["regions"])
logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
ERROR_RESPONSES = {
    status.HTTP_404_NOT_FOUND: {"model": TaskErrorSchema},
    status.HTTP_422_UNPROCESSABLE_CONTENT: {"model": TaskErrorSchema},
    status.HTTP_502_BAD_GATEWAY: {"model": TaskErrorSchema},
}


def get_orchestrator(request: Request) -> TaskOrchestrator:
    """Fetch orchestrator from application state."""
    try:
        return request.app.state.orchestrator  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - wiring error
        raise RuntimeError("TaskOrchestrator is not configured") from exc


def _not_found(job_id: str) -> HTTPException:
    logger.warning("tasks_api.job_not_found", extra={"job_id": job_id})
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"status": "error", "failure_reason": NOT_FOUND},
    )


@router.post(
    "",
    response_model=SubmitTaskResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def submit_task(
    payload: SubmitTaskRequest,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> SubmitTaskResponse:
    """Submit a workflow or web app run and return its job id."""
    try:
        job_id = await orchestrator.submit(
            payload.workflow_id,
            [item.to_override() for item in payload.overrides],
            payload.region,
            instance_type=payload.instance_type,
            webapp_id=None if payload.webapp_id is None else str(payload.webapp_id),
        )
    except TerminalValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail={
                "status": "error",
                "failure_reason": FailureReason.VALIDATION_ERROR.value,
                "details": str(exc),
            },
        ) from exc
    except TransientNetworkError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "status": "error",
                "failure_reason": FailureReason.SUBMISSION_ERROR.value,
                "details": str(exc),
            },
        ) from exc
    job = orchestrator.get_job(job_id)
    return SubmitTaskResponse(job_id=job.job_id, task_id=job.task_id, status=job.status.value)


@router.get("", response_model=JobListResponse)
async def list_tasks(
    status_filter: CanonicalStatus | None = Query(default=None, alias="status"),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> JobListResponse:
    jobs = orchestrator.list_jobs(status_filter)
    return JobListResponse(jobs=[JobSchema.from_job(job) for job in jobs])


@router.post("/uploads", response_model=UploadResponse, responses=ERROR_RESPONSES)
async def upload_file(
    file: UploadFile = File(...),
    region: str | None = Form(None),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> UploadResponse:
    """Upload an input image; large files go to object storage."""
    data = await file.read()
    filename = file.filename or "upload.bin"
    content_type = file.content_type or "application/octet-stream"
    plan = orchestrator.plan_upload(len(data))
    try:
        reference = await orchestrator.upload(data, filename, content_type, region)
    except UploadError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "status": "error",
                "failure_reason": FailureReason.UPLOAD_ERROR.value,
                "details": str(exc),
            },
        ) from exc
    return UploadResponse(file=reference, offloaded=not plan.use_direct_upload)


@router.get("/{job_id}", response_model=JobSchema, responses=ERROR_RESPONSES)
async def get_task(
    job_id: str,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> JobSchema:
    try:
        job = orchestrator.get_job(job_id)
    except JobNotFoundError:
        raise _not_found(job_id) from None
    return JobSchema.from_job(job)


@router.post("/{job_id}/cancel", response_model=JobActionResponse, responses=ERROR_RESPONSES)
async def cancel_task(
    job_id: str,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> JobActionResponse:
    if job_id not in orchestrator.registry:
        raise _not_found(job_id)
    accepted = await orchestrator.cancel(job_id)
    return JobActionResponse(job_id=job_id, accepted=accepted)


@router.post("/{job_id}/retry", response_model=JobActionResponse, responses=ERROR_RESPONSES)
async def retry_task(
    job_id: str,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> JobActionResponse:
    if job_id not in orchestrator.registry:
        raise _not_found(job_id)
    accepted = await orchestrator.retry(job_id)
    return JobActionResponse(job_id=job_id, accepted=accepted)


@regions_router.get("/regions", response_model=RegionListResponse)
async def list_regions(
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> RegionListResponse:
    directory = orchestrator.regions
    return RegionListResponse(
        default=directory.default.id,
        regions=[RegionSchema.from_region(region) for region in directory.regions()],
    )


__all__ = ["router", "regions_router", "get_orchestrator"]
