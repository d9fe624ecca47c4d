"""Pydantic schemas for processing queue messages."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from vidpipe.modules.processing.models import ProcessingJob, new_job_id


class ProcessingJobMessage(BaseModel):
    """JSON payload of a queued processing job.

    Accepts snake_case keys as well as the camelCase keys (videoId,
    inputPath, originalFilename) written by the upload service, and
    serializes with the camelCase ones.
    """
    model_config = ConfigDict(extra="ignore")

    video_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("video_id", "videoId"),
        serialization_alias="videoId",
    )
    source_locator: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("source_locator", "inputPath", "filePath"),
        serialization_alias="inputPath",
    )
    original_filename: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("original_filename", "originalFilename"),
        serialization_alias="originalFilename",
    )
    user_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("user_id", "userId"),
        serialization_alias="userId",
    )
    job_id: str = Field(
        default_factory=new_job_id,
        validation_alias=AliasChoices("job_id", "jobId"),
        serialization_alias="jobId",
    )
    enqueued_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        validation_alias=AliasChoices("enqueued_at", "enqueuedAt"),
        serialization_alias="enqueuedAt",
    )

    @field_validator("video_id", "source_locator")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @classmethod
    def from_job(cls, job: ProcessingJob) -> "ProcessingJobMessage":
        return cls(
            video_id=job.video_id,
            source_locator=job.source_locator,
            user_id=job.user_id,
            job_id=job.job_id,
            enqueued_at=job.enqueued_at,
        )

    def to_job(self) -> ProcessingJob:
        return ProcessingJob(
            video_id=self.video_id,
            source_locator=self.source_locator,
            enqueued_at=self.enqueued_at,
            user_id=self.user_id,
            job_id=self.job_id,
        )
