"""Column mapper: turns parsed rows into records keyed by canonical column name."""

import logging
from typing import Any

from pydantic import BaseModel, Field

from .constants import MISSING_USER_INPUT_MSG, TIMESTAMP_PREFIX, WRONG_DATA_TYPE_MSG
from .errors import MissingColumnError, StructuralError, UnprocessableError
from .workflows import ColumnType, WorkflowMapping

logger = logging.getLogger(__name__)


class MappedRow(BaseModel):
    """One data row. ``row_index`` is 0-based over non-blank data rows."""

    row_index: int
    values: dict[str, str] = Field(default_factory=dict)
    # Trait and timestamp columns, keyed by header as written in the file
    dynamic: dict[str, str] = Field(default_factory=dict)

    @property
    def row_number(self) -> int:
        """Spreadsheet row number (header is row 1)."""
        return self.row_index + 2

    def get(self, column: str) -> str:
        return self.values.get(column, "").strip()

    def is_blank(self, column: str) -> bool:
        return not self.get(column)


class MappedFile(BaseModel):
    rows: list[MappedRow]
    trait_columns: list[str] = Field(default_factory=list)
    timestamp_columns: list[str] = Field(default_factory=list)


def _normalize(header: str) -> str:
    return header.strip().lower()


def check_required_columns(mapping: WorkflowMapping, headers: list[str]) -> None:
    """Fail on the first required column that is absent from the header row.

    Raises:
        MissingColumnError: Naming the first missing column in template order.
    """
    present = {_normalize(h) for h in headers}
    for column in mapping.required_columns:
        if _normalize(column) not in present:
            raise MissingColumnError(column)


def check_column_types(mapping: WorkflowMapping, rows: list[MappedRow]) -> None:
    """Verify typed columns across the whole file before any row is resolved.

    Raises:
        StructuralError: If a typed column holds a value of the wrong type.
    """
    for spec in mapping.columns:
        if spec.data_type != ColumnType.INTEGER:
            continue
        for row in rows:
            value = row.get(spec.name)
            if value and not _is_integer(value):
                logger.info("Column %s has non-integer value %r in row %d", spec.name, value, row.row_number)
                raise StructuralError(WRONG_DATA_TYPE_MSG % (spec.name, "integer", "integer"))


def _is_integer(value: str) -> bool:
    try:
        int(value)
    except ValueError:
        return False
    return True


def map_rows(
    mapping: WorkflowMapping,
    headers: list[str],
    rows: list[dict[str, Any]],
) -> MappedFile:
    """Map parsed rows onto the workflow's canonical columns.

    Header matching is case-insensitive. Entirely blank rows are dropped.
    Headers the template does not name become trait columns for workflows that
    accept them (``TS:`` headers become timestamp columns) and are ignored
    otherwise.

    Raises:
        MissingColumnError: If a required column is missing.
        StructuralError: If a typed column holds a value of the wrong type.
    """
    check_required_columns(mapping, headers)

    canonical = {_normalize(spec.name): spec.name for spec in mapping.columns}
    column_for_header: dict[str, str] = {}
    trait_columns: list[str] = []
    timestamp_columns: list[str] = []
    for header in headers:
        name = canonical.get(_normalize(header))
        if name is not None:
            column_for_header[header] = name
        elif mapping.dynamic_columns and header.strip():
            if header.strip().upper().startswith(TIMESTAMP_PREFIX):
                timestamp_columns.append(header)
            else:
                trait_columns.append(header)

    mapped: list[MappedRow] = []
    for raw in rows:
        values = {
            column_for_header[h]: str(v or "").strip()
            for h, v in raw.items()
            if h in column_for_header
        }
        dynamic = {
            h: str(raw.get(h) or "").strip() for h in trait_columns + timestamp_columns
        }
        if not any(values.values()) and not any(dynamic.values()):
            continue
        mapped.append(MappedRow(row_index=len(mapped), values=values, dynamic=dynamic))

    check_column_types(mapping, mapped)
    return MappedFile(rows=mapped, trait_columns=trait_columns, timestamp_columns=timestamp_columns)


def resolve_user_inputs(mapping: WorkflowMapping, user_fields: dict[str, str] | None) -> dict[str, str]:
    """Match user-supplied fields to the workflow's inputs by name, ignoring case.

    Raises:
        UnprocessableError: If a required input is missing or blank.
    """
    supplied = {_normalize(k): (v or "").strip() for k, v in (user_fields or {}).items()}
    resolved: dict[str, str] = {}
    for spec in mapping.user_inputs:
        value = supplied.get(_normalize(spec.name), "")
        if spec.required and not value:
            raise UnprocessableError(MISSING_USER_INPUT_MSG % spec.name)
        resolved[spec.name] = value
    return resolved
