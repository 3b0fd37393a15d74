"""Merge engine: decides what each uploaded observation value does.

Per (observation unit, trait) pair:

* blank upload: no-op, any stored value is left alone
* value, nothing stored: create
* value equal to the stored one: no-op
* value differing from the stored one: overwrite when the job allows it,
  otherwise a conflict on the trait column
"""

import logging
from datetime import datetime, timezone

from brapi_importer.services.brapi.models import (
    EntityKind,
    Observation,
    ObservationUnit,
    ObservationVariable,
)

from . import constants as c
from .mapping import MappedRow
from .results import EntityState, ImportContext, ImportObjectState, ObservationAction
from .validators import validate_observation_value, validate_timestamp

logger = logging.getLogger(__name__)

ObservationKey = tuple[str, str]


def observation_key(observation: Observation) -> ObservationKey:
    return (observation.observation_unit_db_id or "", observation.observation_variable_db_id or "")


def timestamp_column_for(trait: str, timestamp_columns: list[str]) -> str | None:
    for column in timestamp_columns:
        if column.strip()[len(c.TIMESTAMP_PREFIX):].strip() == trait.strip():
            return column
    return None


def plan_observations(
    ctx: ImportContext,
    row: MappedRow,
    unit_state: EntityState,
    traits: dict[str, ObservationVariable],
    timestamp_columns: list[str],
    existing: dict[ObservationKey, Observation],
) -> list[EntityState]:
    """Plan the observation writes of one row, one decision per trait column.

    Invalid values and overwrite conflicts are recorded in ``ctx.errors``
    against the trait (or timestamp) column and produce no plan entry.
    """
    unit: ObservationUnit = unit_state.brapi_object
    planned: list[EntityState] = []

    for column, variable in traits.items():
        value = row.dynamic.get(column, "").strip()
        ts_column = timestamp_column_for(column, timestamp_columns)
        timestamp = row.dynamic.get(ts_column, "").strip() if ts_column else ""

        message = validate_observation_value(variable, value)
        if message:
            ctx.errors.add(row.row_index, column, message, 422)
            continue
        if ts_column and (ts_message := validate_timestamp(timestamp)):
            ctx.errors.add(row.row_index, ts_column, ts_message, 422)
            continue

        prior = None
        if not unit_state.is_new:
            prior = existing.get((unit.db_id or "", variable.db_id or ""))

        if not value:
            if prior is not None:
                planned.append(_state(prior, ObservationAction.NOOP, column))
            continue

        if prior is None:
            observation = Observation(
                observation_unit_db_id=unit.db_id,
                observation_unit_name=unit.observation_unit_name,
                observation_variable_db_id=variable.db_id,
                observation_variable_name=variable.observation_variable_name,
                study_db_id=unit.study_db_id,
                germplasm_db_id=unit.germplasm_db_id,
                germplasm_name=unit.germplasm_name,
                program_db_id=ctx.program_id,
                value=value,
                observation_time_stamp=timestamp or None,
            )
            state = ctx.new_state(observation, EntityKind.OBSERVATION)
            state.action = ObservationAction.CREATE
            state.column = column
            planned.append(state)
        elif prior.value == value:
            planned.append(_state(prior, ObservationAction.NOOP, column))
        elif ctx.overwrite:
            planned.append(_state(_overwrite(ctx, prior, value, timestamp), ObservationAction.OVERWRITE, column))
        else:
            unit_ref = unit.reference_id(ctx.origin_source(EntityKind.OBSERVATION_UNIT)) or unit.observation_unit_name
            ctx.errors.add(
                row.row_index,
                column,
                c.OBSERVATION_EXISTS_MSG % (unit_ref, variable.observation_variable_name),
                409,
            )
    return planned


def _state(observation: Observation, action: ObservationAction, column: str) -> EntityState:
    return EntityState(
        state=ImportObjectState.EXISTING,
        brapi_object=observation,
        action=action,
        column=column,
    )


def _overwrite(ctx: ImportContext, prior: Observation, value: str, timestamp: str) -> Observation:
    """Copy of ``prior`` carrying the new value and a change-log entry."""
    updated = prior.model_copy(deep=True)
    change_log = list(updated.additional_info.get("changeLog", []))
    change_log.append(
        {
            "priorValue": prior.value,
            "priorTimestamp": prior.observation_time_stamp,
            "reason": ctx.overwrite_reason,
            "updatedBy": ctx.user_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )
    updated.additional_info["changeLog"] = change_log
    updated.value = value
    if timestamp:
        updated.observation_time_stamp = timestamp
    ctx.tag_updated(updated)
    logger.debug(
        "Overwriting observation %s: %r -> %r",
        prior.db_id,
        prior.value,
        value,
    )
    return updated
