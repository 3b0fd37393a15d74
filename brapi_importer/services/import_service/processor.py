"""Background processing of import jobs."""

import logging

from beanie import PydanticObjectId

from brapi_importer.config import settings
from brapi_importer.models import ImportJob, ImportPreview, ImportProgress, JobStatus
from brapi_importer.services.brapi import BrAPIClient, BrAPIStoreError

from .errors import MULTIPLE_ERRORS, ImportFailure, ValidatorError
from .orchestrator import WorkflowStage, run_import

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MSG = "An unexpected error occurred while processing the import"


async def run_import_job(job_id: PydanticObjectId, client: BrAPIClient) -> None:
    """Run the queued preview or commit of one job and record its outcome.

    The job always ends terminal; failures are recorded on the job, never raised.
    """
    if not await ImportJob.claim(job_id):
        logger.info("Import %s is not queued, skipping", job_id)
        return
    job = await ImportJob.get(job_id)
    if job is None:
        return

    mode = "commit" if job.commit else "preview"
    logger.info("Import %s: running %s of %s (%d rows)", job_id, mode, job.workflow_id, job.row_count)

    async def on_stage(stage: WorkflowStage) -> None:
        logger.debug("Import %s: stage %s", job_id, stage.value)
        await job.set_stage(stage.value)

    progress = ImportProgress(total=job.row_count)
    preview: ImportPreview | None = None
    status = JobStatus.FAILED
    try:
        outcome = await run_import(
            client=client,
            workflow_id=job.workflow_id,
            program_id=job.program_id,
            headers=job.headers,
            rows=job.rows,
            job_id=job.job_id,
            user_id=job.created_by,
            reference_source=settings.reference_source,
            user_fields=job.user_fields,
            commit=job.commit,
            overwrite=job.overwrite,
            overwrite_reason=job.overwrite_reason,
            on_stage=on_stage,
        )
    except ValidatorError as e:
        progress.statuscode = e.status_code
        progress.message = e.message
        progress.row_errors = e.errors.row_errors()
    except ImportFailure as e:
        logger.info("Import %s failed: %s", job_id, e.message)
        progress.statuscode = e.status_code
        progress.message = e.message
    except BrAPIStoreError as e:
        logger.error("Import %s: BrAPI store error: %s", job_id, e)
        progress.statuscode = 500
        progress.message = f"Error communicating with the BrAPI store: {e}"
    except Exception:
        logger.exception("Import %s failed unexpectedly", job_id)
        progress.statuscode = 500
        progress.message = UNEXPECTED_ERROR_MSG
    else:
        preview = ImportPreview(**outcome.preview())
        row_errors = outcome.errors.row_errors()
        progress.total = len(outcome.rows)
        progress.finished = progress.total - len(row_errors)
        if row_errors:
            progress.statuscode = 422
            progress.message = MULTIPLE_ERRORS
            progress.row_errors = row_errors
        else:
            status = JobStatus.SUCCEEDED
            progress.statuscode = 200
            progress.message = "Import committed" if outcome.committed else "Preview complete"

    job.status = status
    job.stage = WorkflowStage.DONE.value if status == JobStatus.SUCCEEDED else WorkflowStage.FAILED.value
    job.progress = progress
    job.preview = preview
    await job.save()
    logger.info("Import %s finished %s with status code %d", job_id, status.value, progress.statuscode)
