"""Error taxonomy for import processing.

File-scoped failures are raised as ``ImportFailure`` subclasses and abort the
job. Row-scoped problems are collected as ``FieldError`` entries in a
``ValidationErrors`` container and raised together as ``ValidatorError``.
"""

from pydantic import BaseModel, ConfigDict, Field

MULTIPLE_ERRORS = "Multiple Errors"


class FieldError(BaseModel):
    """A problem with one field of one row."""

    model_config = ConfigDict(populate_by_name=True)

    field: str
    error_message: str = Field(alias="errorMessage")
    http_status_code: int = Field(422, alias="httpStatusCode")


class RowErrors(BaseModel):
    """All field errors of a single data row."""

    model_config = ConfigDict(populate_by_name=True)

    row_index: int = Field(alias="rowIndex")
    errors: list[FieldError] = Field(default_factory=list)


class ValidationErrors:
    """Collects field errors keyed by data row index."""

    def __init__(self) -> None:
        self._rows: dict[int, list[FieldError]] = {}

    def add(self, row_index: int, field: str, message: str, status_code: int = 422) -> None:
        errors = self._rows.setdefault(row_index, [])
        error = FieldError(field=field, error_message=message, http_status_code=status_code)
        # One row may hit the same check from two resolution paths
        if error not in errors:
            errors.append(error)

    def for_row(self, row_index: int) -> list[FieldError]:
        return list(self._rows.get(row_index, []))

    def has_errors(self) -> bool:
        return bool(self._rows)

    def row_errors(self) -> list[RowErrors]:
        return [
            RowErrors(row_index=index, errors=errors)
            for index, errors in sorted(self._rows.items())
        ]

    def __len__(self) -> int:
        return sum(len(errors) for errors in self._rows.values())


class ImportFailure(Exception):
    """Base class for failures that end an import job."""

    status_code = 422

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StructuralError(ImportFailure):
    """The file itself cannot be processed."""


class MissingColumnError(StructuralError):
    """A required column is absent from the file header."""

    def __init__(self, column: str) -> None:
        super().__init__(f'Column name "{column}" does not exist in file')
        self.column = column


class UnsupportedTypeError(StructuralError):
    """The uploaded file is not CSV, XLS or XLSX."""

    status_code = 415


class ParsingError(StructuralError):
    """The file content could not be parsed."""


class UnprocessableError(ImportFailure):
    """A file-level validation problem such as duplicated entry numbers."""


class MissingReferenceError(ImportFailure):
    """Identifiers referenced by the file do not exist in the BrAPI store."""


class ConflictError(ImportFailure):
    """The file conflicts with itself or with existing records."""


class DoesNotExistError(ImportFailure):
    """A mapping, workflow or import job could not be found."""

    status_code = 404


class ValidatorError(ImportFailure):
    """Row-scoped errors were found; carries the per-row breakdown."""

    def __init__(self, errors: ValidationErrors) -> None:
        super().__init__(MULTIPLE_ERRORS)
        self.errors = errors
