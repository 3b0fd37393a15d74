"""ImportJob document model for tracking uploads through preview and commit."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from beanie import Document, Indexed, PydanticObjectId
from beanie.operators import In, Set
from pydantic import BaseModel, Field

from brapi_importer.services.import_service.errors import RowErrors


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Status of an import job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


RUNNING_STATUSES = [JobStatus.QUEUED, JobStatus.PROCESSING]
TERMINAL_STATUSES = [JobStatus.SUCCEEDED, JobStatus.FAILED]

ORPHANED_JOB_MSG = "Import was interrupted by a server restart. Please run it again."


class ImportProgress(BaseModel):
    """What a polling caller sees about the latest run."""

    statuscode: int = 202
    message: str | None = None
    row_errors: list[RowErrors] = Field(default_factory=list)
    total: int = 0
    finished: int = 0


class ImportPreview(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list)
    statistics: dict[str, dict[str, int]] = Field(default_factory=dict)


class ImportJob(Document):
    """One uploaded file and the state of its latest preview or commit run."""

    program_id: Indexed(str)
    mapping_id: str
    workflow_id: str
    filename: str | None = None
    file_type: str  # "csv", "xls" or "xlsx"

    # Parsed spreadsheet, kept so the file can be re-run without re-uploading
    headers: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    user_fields: dict[str, str] = Field(default_factory=dict)

    # Options of the latest run
    commit: bool = False
    overwrite: bool = False
    overwrite_reason: str | None = None

    status: JobStatus = JobStatus.QUEUED
    stage: str = "received"
    progress: ImportProgress = Field(default_factory=ImportProgress)
    preview: ImportPreview | None = None

    created_by: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    expires_at: Indexed(datetime)

    class Settings:
        name = "import_jobs"
        indexes = [
            "program_id",
            "expires_at",
        ]

    @property
    def job_id(self) -> str:
        return str(self.id)

    @property
    def is_running(self) -> bool:
        return self.status in RUNNING_STATUSES

    @classmethod
    def create(
        cls,
        *,
        program_id: str,
        mapping_id: str,
        workflow_id: str,
        filename: str | None,
        file_type: str,
        headers: list[str],
        rows: list[dict[str, Any]],
        user_fields: dict[str, str],
        created_by: str,
        ttl_hours: int,
    ) -> "ImportJob":
        """Build a queued preview job for a freshly parsed upload (not yet inserted)."""
        return cls(
            program_id=program_id,
            mapping_id=mapping_id,
            workflow_id=workflow_id,
            filename=filename,
            file_type=file_type,
            headers=headers,
            rows=rows,
            row_count=len(rows),
            user_fields=user_fields,
            created_by=created_by,
            progress=ImportProgress(total=len(rows)),
            expires_at=_utcnow() + timedelta(hours=ttl_hours),
        )

    @classmethod
    async def claim(cls, job_id: PydanticObjectId) -> bool:
        """Atomically move a queued job to processing.

        Returns:
            True if this caller won the job, False if it was not queued.
        """
        result = await cls.find_one(
            cls.id == job_id,
            cls.status == JobStatus.QUEUED,
        ).update(Set({cls.status: JobStatus.PROCESSING, cls.updated_at: _utcnow()}))
        return bool(result and result.modified_count)

    @classmethod
    async def request_processing(
        cls,
        job_id: PydanticObjectId,
        *,
        commit: bool,
        overwrite: bool = False,
        overwrite_reason: str | None = None,
        user_fields: dict[str, str] | None = None,
    ) -> bool:
        """Atomically re-queue a finished job with new run options.

        Returns:
            False if the job is still queued or processing.
        """
        updates: dict[Any, Any] = {
            cls.status: JobStatus.QUEUED,
            cls.stage: "received",
            cls.commit: commit,
            cls.overwrite: overwrite,
            cls.overwrite_reason: overwrite_reason,
            cls.progress: ImportProgress().model_dump(),
            cls.preview: None,
            cls.updated_at: _utcnow(),
        }
        if user_fields is not None:
            updates[cls.user_fields] = user_fields
        result = await cls.find_one(
            cls.id == job_id,
            In(cls.status, TERMINAL_STATUSES),
        ).update(Set(updates))
        return bool(result and result.modified_count)

    async def set_stage(self, stage: str) -> None:
        self.stage = stage
        self.updated_at = _utcnow()
        await self.find_one(ImportJob.id == self.id).update(
            Set({ImportJob.stage: stage, ImportJob.updated_at: self.updated_at})
        )

    @classmethod
    async def cleanup_expired(cls) -> int:
        """Remove jobs past their expiry time.

        Returns:
            Number of jobs removed.
        """
        result = await cls.find(cls.expires_at < _utcnow()).delete()
        return result.deleted_count if result else 0

    @classmethod
    async def fail_orphaned(cls) -> int:
        """Fail every job left queued or processing by a previous server process.

        Background runs do not survive a restart, so such jobs would otherwise
        stay locked until they expire.

        Returns:
            Number of jobs marked failed.
        """
        progress = ImportProgress(statuscode=500, message=ORPHANED_JOB_MSG)
        result = await cls.find(In(cls.status, RUNNING_STATUSES)).update(
            Set(
                {
                    cls.status: JobStatus.FAILED,
                    cls.stage: "failed",
                    cls.progress: progress.model_dump(),
                    cls.updated_at: _utcnow(),
                }
            )
        )
        return result.modified_count if result else 0
