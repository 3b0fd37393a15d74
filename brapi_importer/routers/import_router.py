"""Import endpoints: templates, uploads, polling, preview and commit."""

import json
import logging
from typing import Annotated

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)
from pydantic import ValidationError

from brapi_importer.config import settings
from brapi_importer.models import ImportJob
from brapi_importer.schemas.import_schemas import (
    ImportProcessRequest,
    ImportStatusResponse,
    ImportSummary,
    ImportUploadResponse,
    MappingColumnResponse,
    MappingResponse,
    MappingUserInputResponse,
    ProgressResponse,
)
from brapi_importer.services.auth import RequireAuth
from brapi_importer.services.brapi import BrAPIClient, get_brapi_client
from brapi_importer.services.import_service import (
    ImportFailure,
    detect_file_type,
    get_mapping,
    list_mappings,
    parse_upload,
)
from brapi_importer.services.import_service.processor import run_import_job
from brapi_importer.services.import_service.workflows import WorkflowMapping

logger = logging.getLogger(__name__)

router = APIRouter()

JOB_NOT_FOUND_MSG = "Upload with that id does not exist"
JOB_LOCKED_MSG = "Another action is currently being performed on this import."


def get_brapi(request: Request) -> BrAPIClient:
    """The application's BrAPI client, falling back to the configured backend."""
    client = getattr(request.app.state, "brapi_client", None)
    return client if client is not None else get_brapi_client()


BrAPIDep = Annotated[BrAPIClient, Depends(get_brapi)]


def _mapping_response(mapping: WorkflowMapping) -> MappingResponse:
    return MappingResponse(
        mapping_id=mapping.mapping_id,
        workflow_id=mapping.workflow.value,
        name=mapping.name,
        description=mapping.description,
        columns=[
            MappingColumnResponse(
                name=col.name,
                required=col.required,
                data_type=col.data_type.value,
                description=col.description,
            )
            for col in mapping.columns
        ],
        user_inputs=[
            MappingUserInputResponse(name=u.name, required=u.required, description=u.description)
            for u in mapping.user_inputs
        ],
        entity_rules=[kind.value for kind in mapping.entity_rules],
        dynamic_columns=mapping.dynamic_columns,
    )


def _status_response(job: ImportJob) -> ImportStatusResponse:
    return ImportStatusResponse(
        import_id=job.job_id,
        workflow_id=job.workflow_id,
        status=job.status.value,
        stage=job.stage,
        progress=ProgressResponse(**job.progress.model_dump()),
        preview=job.preview,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def _parse_user_fields(user_fields: str | None) -> dict[str, str]:
    if not user_fields:
        return {}
    try:
        parsed = json.loads(user_fields)
        if not isinstance(parsed, dict):
            raise ValueError("userFields must be a JSON object")
    except (json.JSONDecodeError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid userFields JSON: {e}",
        )
    return {str(k): "" if v is None else str(v) for k, v in parsed.items()}


@router.get("/mappings", response_model=list[MappingResponse])
async def get_mappings(
    program_id: str,
    current_user: RequireAuth,
) -> list[MappingResponse]:
    """List the import templates and the workflows they feed."""
    return [_mapping_response(m) for m in list_mappings()]


@router.post(
    "/mappings/{mapping_id}/workflows/{workflow_id}/data",
    response_model=ImportUploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_data(
    program_id: str,
    mapping_id: str,
    workflow_id: str,
    current_user: RequireAuth,
    background_tasks: BackgroundTasks,
    client: BrAPIDep,
    file: Annotated[UploadFile, File(description="CSV, XLS or XLSX file")],
    user_fields: Annotated[
        str | None, Form(alias="userFields", max_length=5000, description="User inputs as JSON object")
    ] = None,
) -> ImportUploadResponse:
    """Upload a file and queue its preview.

    Poll ``GET /data/{importId}`` for the result.
    """
    try:
        mapping = get_mapping(workflow_id)
        file_type = detect_file_type(file.content_type, file.filename)
    except ImportFailure as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if mapping.mapping_id != mapping_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Workflow '{workflow_id}' does not belong to mapping '{mapping_id}'",
        )
    fields = _parse_user_fields(user_fields)

    # Read in chunks to avoid unbounded memory for oversized files
    max_size = settings.max_upload_size_bytes
    chunks: list[bytes] = []
    total_size = 0
    while True:
        chunk = await file.read(64 * 1024)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_size:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File exceeds maximum size of {settings.max_upload_size_mb} MB",
            )
        chunks.append(chunk)
    content = b"".join(chunks)
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")

    try:
        headers, rows = parse_upload(content, file.content_type, file.filename, max_rows=settings.max_rows)
    except ImportFailure as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    job = ImportJob.create(
        program_id=program_id,
        mapping_id=mapping_id,
        workflow_id=mapping.workflow.value,
        filename=file.filename,
        file_type=file_type,
        headers=headers,
        rows=rows,
        user_fields=fields,
        created_by=current_user.id,
        ttl_hours=settings.job_ttl_hours,
    )
    await job.insert()
    logger.info(
        "Import %s uploaded by %s: %s (%s, %d rows) for %s",
        job.id,
        current_user.id,
        file.filename,
        file_type,
        len(rows),
        workflow_id,
    )

    background_tasks.add_task(run_import_job, job.id, client)
    return ImportUploadResponse(import_id=job.job_id)


@router.get("/data", response_model=list[ImportSummary])
async def list_uploads(
    program_id: str,
    current_user: RequireAuth,
) -> list[ImportSummary]:
    """List the program's uploads, newest first."""
    jobs = await ImportJob.find(
        ImportJob.program_id == program_id,
    ).sort(-ImportJob.created_at).to_list()

    return [
        ImportSummary(
            import_id=j.job_id,
            mapping_id=j.mapping_id,
            workflow_id=j.workflow_id,
            filename=j.filename,
            status=j.status.value,
            row_count=j.row_count,
            created_by=j.created_by,
            created_at=j.created_at,
            user_fields=j.user_fields,
        )
        for j in jobs
    ]


@router.get("/data/{import_id}", response_model=ImportStatusResponse)
async def get_upload(
    program_id: str,
    import_id: str,
    current_user: RequireAuth,
    response: Response,
) -> ImportStatusResponse:
    """Poll an upload: 202 while queued or processing, 200 once finished."""
    job = await _get_program_job(program_id, import_id)
    if job.is_running:
        response.status_code = status.HTTP_202_ACCEPTED
    return _status_response(job)


@router.put(
    "/data/{import_id}/preview",
    response_model=ImportStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def preview_upload(
    program_id: str,
    import_id: str,
    current_user: RequireAuth,
    background_tasks: BackgroundTasks,
    client: BrAPIDep,
    request: ImportProcessRequest | None = None,
) -> ImportStatusResponse:
    """Re-run the preview of an upload."""
    return await _queue_run(program_id, import_id, False, request, background_tasks, client)


@router.put(
    "/data/{import_id}/commit",
    response_model=ImportStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def commit_upload(
    program_id: str,
    import_id: str,
    current_user: RequireAuth,
    background_tasks: BackgroundTasks,
    client: BrAPIDep,
    request: ImportProcessRequest | None = None,
) -> ImportStatusResponse:
    """Write an upload to the BrAPI store.

    Nothing is written if any row fails validation.
    """
    return await _queue_run(program_id, import_id, True, request, background_tasks, client)


async def _queue_run(
    program_id: str,
    import_id: str,
    commit: bool,
    request: ImportProcessRequest | None,
    background_tasks: BackgroundTasks,
    client: BrAPIClient,
) -> ImportStatusResponse:
    job = await _get_program_job(program_id, import_id)
    opts = request or ImportProcessRequest()

    queued = await ImportJob.request_processing(
        job.id,
        commit=commit,
        overwrite=opts.overwrite,
        overwrite_reason=opts.overwrite_reason,
        user_fields=opts.user_input,
    )
    if not queued:
        raise HTTPException(status_code=status.HTTP_423_LOCKED, detail=JOB_LOCKED_MSG)
    logger.info("Import %s queued for %s", job.id, "commit" if commit else "preview")

    background_tasks.add_task(run_import_job, job.id, client)
    job = await ImportJob.get(job.id)
    return _status_response(job)


async def _get_program_job(program_id: str, import_id: str) -> ImportJob:
    """Get an import job by ID, verifying it belongs to the program.

    Raises:
        HTTPException: If the job does not exist in this program.
    """
    try:
        job = await ImportJob.find_one(
            ImportJob.id == PydanticObjectId(import_id),
            ImportJob.program_id == program_id,
        )
    except (InvalidId, ValidationError):
        job = None

    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=JOB_NOT_FOUND_MSG)
    return job
