"""Import reconciliation engine: map, validate, resolve, merge and write."""

from brapi_importer.services.import_service.errors import (
    ImportFailure,
    ValidationErrors,
    ValidatorError,
)
from brapi_importer.services.import_service.orchestrator import (
    ImportOutcome,
    WorkflowStage,
    run_import,
)
from brapi_importer.services.import_service.parsers import detect_file_type, parse_upload
from brapi_importer.services.import_service.workflows import (
    WorkflowKind,
    get_mapping,
    list_mappings,
)

__all__ = [
    "ImportFailure",
    "ImportOutcome",
    "ValidationErrors",
    "ValidatorError",
    "WorkflowKind",
    "WorkflowStage",
    "detect_file_type",
    "get_mapping",
    "list_mappings",
    "parse_upload",
    "run_import",
]
