"""MongoDB document models for the BrAPI importer."""

from brapi_importer.models.import_job import (
    ImportJob,
    ImportPreview,
    ImportProgress,
    JobStatus,
)

__all__ = [
    "ImportJob",
    "ImportPreview",
    "ImportProgress",
    "JobStatus",
]
