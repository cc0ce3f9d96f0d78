"""Pydantic schemas for task routes."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..tasks.task_models import FieldOverride, Job, Region


class FieldOverrideSchema(BaseModel):
    """Node field patch; values of any scalar type are sent as strings."""

    model_config = ConfigDict(populate_by_name=True)

    node_id: str | int = Field(alias="nodeId")
    field_name: str = Field(alias="fieldName")
    field_value: str | int | float | bool | None = Field(default=None, alias="fieldValue")

    def to_override(self) -> FieldOverride:
        return FieldOverride.coerce(self.node_id, self.field_name, self.field_value)


class SubmitTaskRequest(BaseModel):
    workflow_id: str | None = Field(default=None, description="Provider workflow identifier.")
    webapp_id: str | int | None = Field(
        default=None, description="Published web app id; used only without a workflow id."
    )
    overrides: list[FieldOverrideSchema] = Field(default_factory=list)
    region: str | None = Field(default=None, description="Region id; unknown ids use the default.")
    instance_type: str | None = None

    @model_validator(mode="after")
    def require_target(self) -> "SubmitTaskRequest":
        if not (self.workflow_id or "").strip() and not str(self.webapp_id or "").strip():
            raise ValueError("workflow_id or webapp_id is required")
        return self


class SubmitTaskResponse(BaseModel):
    job_id: str
    task_id: str | None
    status: str


class JobSchema(BaseModel):
    job_id: str
    task_id: str | None
    superseded_task_ids: list[str]
    workflow_id: str
    webapp_id: str | None
    region: str
    instance_type: str | None
    status: str
    provider_status: str | None
    progress: int | None
    result_urls: list[str]
    error_message: str | None
    failure_reason: str | None
    attempts: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobSchema":
        return cls(
            job_id=job.job_id,
            task_id=job.task_id,
            superseded_task_ids=list(job.superseded_task_ids),
            workflow_id=job.workflow_id,
            webapp_id=job.webapp_id,
            region=job.region.id,
            instance_type=job.instance_type,
            status=job.status.value,
            provider_status=job.provider_status,
            progress=job.progress,
            result_urls=list(job.result_urls),
            error_message=job.error_message,
            failure_reason=job.failure_reason.value if job.failure_reason else None,
            attempts=job.attempts,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobListResponse(BaseModel):
    jobs: list[JobSchema]


class JobActionResponse(BaseModel):
    job_id: str
    accepted: bool


class UploadResponse(BaseModel):
    file: str
    offloaded: bool


class RegionSchema(BaseModel):
    id: str
    display_name: str
    api_base_url: str

    @classmethod
    def from_region(cls, region: Region) -> "RegionSchema":
        return cls(id=region.id, display_name=region.display_name, api_base_url=region.api_base_url)


class RegionListResponse(BaseModel):
    default: str
    regions: list[RegionSchema]


class TaskErrorSchema(BaseModel):
    status: str
    failure_reason: str
    details: str | None = None
