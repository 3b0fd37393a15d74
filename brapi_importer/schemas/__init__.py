"""Pydantic schemas for the BrAPI importer API."""

from brapi_importer.schemas.import_schemas import (
    ImportProcessRequest,
    ImportStatusResponse,
    ImportSummary,
    ImportUploadResponse,
    MappingResponse,
)

__all__ = [
    "ImportProcessRequest",
    "ImportStatusResponse",
    "ImportSummary",
    "ImportUploadResponse",
    "MappingResponse",
]
