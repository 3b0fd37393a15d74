"""Pydantic schemas for the import API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from brapi_importer.models import ImportPreview
from brapi_importer.services.import_service.errors import RowErrors


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MappingColumnResponse(_CamelModel):
    name: str
    required: bool
    data_type: str = Field(alias="dataType")
    description: str = ""


class MappingUserInputResponse(_CamelModel):
    name: str
    required: bool
    description: str = ""


class MappingResponse(_CamelModel):
    """An import template and the workflow it feeds."""

    mapping_id: str = Field(alias="mappingId")
    workflow_id: str = Field(alias="workflowId")
    name: str
    description: str = ""
    columns: list[MappingColumnResponse]
    user_inputs: list[MappingUserInputResponse] = Field(alias="userInputs")
    entity_rules: list[str] = Field(alias="entityRules")
    dynamic_columns: bool = Field(alias="dynamicColumns")


class ImportUploadResponse(_CamelModel):
    """Response after uploading a file."""

    import_id: str = Field(alias="importId")


class ImportProcessRequest(_CamelModel):
    """Options for a preview or commit run."""

    overwrite: bool = False
    overwrite_reason: str | None = Field(None, alias="overwriteReason", max_length=1000)
    user_input: dict[str, str] | None = Field(None, alias="userInput")


class ProgressResponse(_CamelModel):
    statuscode: int
    message: str | None = None
    row_errors: list[RowErrors] = Field(default_factory=list, alias="rowErrors")
    total: int = 0
    finished: int = 0


class ImportStatusResponse(_CamelModel):
    """Polling view of an import job."""

    import_id: str = Field(alias="importId")
    workflow_id: str = Field(alias="workflowId")
    status: str
    stage: str
    progress: ProgressResponse
    preview: ImportPreview | None = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class ImportSummary(_CamelModel):
    """Summary of an import job for listing."""

    import_id: str = Field(alias="importId")
    mapping_id: str = Field(alias="mappingId")
    workflow_id: str = Field(alias="workflowId")
    filename: str | None = None
    status: str
    row_count: int = Field(alias="rowCount")
    created_by: str = Field(alias="createdBy")
    created_at: datetime = Field(alias="createdAt")
    user_fields: dict[str, Any] = Field(default_factory=dict, alias="userFields")
