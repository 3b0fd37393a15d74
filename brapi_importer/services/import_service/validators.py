"""Row validator: per-row field checks and whole-file reductions.

Per-row checks record ``FieldError`` entries and never stop other rows from
being checked. Reductions look at every row at once and raise a single
file-level error describing all offending values.
"""

import re
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime

from brapi_importer.services.brapi.models import ObservationVariable

from . import constants as c
from .errors import UnprocessableError, ValidationErrors
from .mapping import MappedRow

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def check_required(
    rows: Iterable[MappedRow],
    columns: Iterable[str],
    message: str,
    errors: ValidationErrors,
) -> None:
    """Record a 422 error for every blank required cell."""
    columns = list(columns)
    for row in rows:
        for column in columns:
            if row.is_blank(column):
                errors.add(row.row_index, column, message, 422)


def check_test_or_check(rows: Iterable[MappedRow], errors: ValidationErrors) -> None:
    for row in rows:
        value = row.get(c.TEST_CHECK)
        if value and value.upper() not in c.TEST_CHECK_VALUES:
            errors.add(row.row_index, c.TEST_CHECK, c.INVALID_TEST_CHECK_MSG % value, 422)


def parse_plate_row(value: str) -> str | None:
    letter = value.strip().upper()
    if len(letter) == 1 and letter in c.PLATE_ROWS:
        return letter
    return None


def parse_plate_column(value: str) -> int | None:
    try:
        number = int(value.strip())
    except ValueError:
        return None
    return number if number in c.PLATE_COLUMNS else None


def check_plate_position(rows: Iterable[MappedRow], errors: ValidationErrors) -> None:
    for row in rows:
        if not row.is_blank(c.ROW) and parse_plate_row(row.get(c.ROW)) is None:
            errors.add(row.row_index, c.ROW, c.BAD_PLATE_ROW_MSG, 422)
        if not row.is_blank(c.COLUMN) and parse_plate_column(row.get(c.COLUMN)) is None:
            errors.add(row.row_index, c.COLUMN, c.BAD_PLATE_COLUMN_MSG, 422)


def assign_entry_numbers(rows: list[MappedRow]) -> dict[int, str]:
    """Entry number of every row, defaulting to file order when none are given.

    Raises:
        UnprocessableError: If only some rows have entry numbers, or if any
            entry number is used twice (all duplicates listed once).
    """
    provided = {row.row_index: row.get(c.ENTRY_NO) for row in rows if not row.is_blank(c.ENTRY_NO)}
    if not provided:
        return {row.row_index: str(i + 1) for i, row in enumerate(rows)}
    if len(provided) != len(rows):
        raise UnprocessableError(c.MISSING_ENTRY_NUMBERS_MSG)

    normalized = {index: str(int(value)) for index, value in provided.items()}
    seen: dict[str, int] = defaultdict(int)
    for value in normalized.values():
        seen[value] += 1
    duplicates = [value for value, count in seen.items() if count > 1]
    if duplicates:
        raise UnprocessableError(c.DUPLICATE_ENTRY_NO_MSG % c.format_values(duplicates))
    return normalized


def check_single_title(rows: Iterable[MappedRow]) -> str | None:
    """Return the file's experiment title.

    Raises:
        UnprocessableError: If rows name more than one title.
    """
    titles = {row.get(c.EXP_TITLE) for row in rows if not row.is_blank(c.EXP_TITLE)}
    if len(titles) > 1:
        raise UnprocessableError(c.MULTIPLE_EXP_TITLES_MSG)
    return next(iter(titles), None)


def check_environment_identity(rows: Iterable[MappedRow], errors: ValidationErrors) -> bool:
    """Every row naming an environment must agree on its location and year.

    Flags each row of a disagreeing environment against the field that
    disagrees. Returns True when any environment was split.
    """
    groups: dict[str, list[MappedRow]] = defaultdict(list)
    for row in rows:
        if not row.is_blank(c.ENV):
            groups[row.get(c.ENV)].append(row)

    split = False
    for env_rows in groups.values():
        for column, message in (
            (c.ENV_YEAR, c.ENV_YEAR_MISMATCH_MSG),
            (c.ENV_LOCATION, c.ENV_LOCATION_MISMATCH_MSG),
        ):
            distinct = {r.get(column) for r in env_rows if not r.is_blank(column)}
            if len(distinct) > 1:
                split = True
                for r in env_rows:
                    errors.add(r.row_index, column, message, 409)
    return split


def find_duplicate_keys(rows: Iterable[MappedRow], key) -> list[list[MappedRow]]:
    """Group rows by ``key(row)`` and return the groups with more than one row.

    Rows whose key is None are ignored.
    """
    groups: dict[object, list[MappedRow]] = defaultdict(list)
    for row in rows:
        k = key(row)
        if k is not None:
            groups[k].append(row)
    return [group for group in groups.values() if len(group) > 1]


def validate_observation_value(variable: ObservationVariable, value: str) -> str | None:
    """Check an uploaded value against the trait's scale.

    Returns the error message, or None when the value is acceptable.
    """
    if not value or value.upper() == c.NA_VALUE:
        return None

    scale = variable.scale
    data_type = (scale.data_type or "Text").lower()
    if data_type in ("numerical", "numeric", "duration"):
        try:
            number = float(value)
        except ValueError:
            return c.NON_NUMERIC_MSG
        valid = scale.valid_values
        if (valid.min is not None and number < valid.min) or (
            valid.max is not None and number > valid.max
        ):
            return c.OUT_OF_RANGE_MSG
    elif data_type == "date":
        if not _is_iso_date(value):
            return c.BAD_DATE_MSG
    elif data_type in ("ordinal", "nominal"):
        categories = {cat.value for cat in scale.valid_values.categories}
        if categories and value not in categories:
            return c.UNDEFINED_ORDINAL_MSG if data_type == "ordinal" else c.UNDEFINED_NOMINAL_MSG
    return None


def _is_iso_date(value: str) -> bool:
    if not _ISO_DATE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def validate_timestamp(value: str) -> str | None:
    """Timestamps are a date or a full ISO datetime with offset."""
    if not value or _is_iso_date(value):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return c.BAD_TIMESTAMP_MSG
    return None if parsed.tzinfo is not None else c.BAD_TIMESTAMP_MSG
