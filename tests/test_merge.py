"""Tests for observation merge decisions."""

import pytest

from brapi_importer.services.brapi.models import EntityKind, Observation, ObservationUnit, ObservationVariable
from brapi_importer.services.import_service import constants as c
from brapi_importer.services.import_service.mapping import MappedRow
from brapi_importer.services.import_service.merge import plan_observations, timestamp_column_for
from brapi_importer.services.import_service.results import ImportContext, ObservationAction

from tests.conftest import PROGRAM_ID, REFERENCE_SOURCE, USER_ID


@pytest.fixture
def ctx(brapi_store) -> ImportContext:
    return ImportContext(
        client=brapi_store,
        program_id=PROGRAM_ID,
        job_id="job-1",
        user_id=USER_ID,
        reference_source=REFERENCE_SOURCE,
        overwrite=True,
        overwrite_reason="Scanner error",
    )


@pytest.fixture
def variable() -> ObservationVariable:
    return ObservationVariable(observation_variable_db_id="var-1", observation_variable_name="Lodging")


@pytest.fixture
def unit_state(ctx):
    unit = ObservationUnit(observation_unit_db_id="unit-1", observation_unit_name="p1", study_db_id="study-1")
    return ctx.existing_state(unit, EntityKind.OBSERVATION_UNIT)


def test_timestamp_column_lookup():
    assert timestamp_column_for("Lodging", ["TS: Height", "TS:Lodging "]) == "TS:Lodging "
    assert timestamp_column_for("Yield", ["TS:Lodging"]) is None


def test_new_value_with_timestamp(ctx, variable, unit_state):
    row = MappedRow(row_index=0, dynamic={"Lodging": "3", "TS:Lodging": "2024-07-01T08:00:00+00:00"})
    (planned,) = plan_observations(ctx, row, unit_state, {"Lodging": variable}, ["TS:Lodging"], {})

    assert planned.action == ObservationAction.CREATE
    assert planned.brapi_object.observation_time_stamp == "2024-07-01T08:00:00+00:00"
    assert planned.brapi_object.observation_unit_db_id == "unit-1"
    assert planned.brapi_object.program_db_id == PROGRAM_ID


def test_bad_timestamp_is_flagged_on_timestamp_column(ctx, variable, unit_state):
    row = MappedRow(row_index=0, dynamic={"Lodging": "3", "TS:Lodging": "July"})
    planned = plan_observations(ctx, row, unit_state, {"Lodging": variable}, ["TS:Lodging"], {})

    assert planned == []
    assert [(e.field, e.error_message) for e in ctx.errors.for_row(0)] == [("TS:Lodging", c.BAD_TIMESTAMP_MSG)]


def test_overwrite_keeps_prior_in_change_log(ctx, variable, unit_state):
    prior = Observation(
        observation_db_id="obs-1",
        observation_unit_db_id="unit-1",
        observation_variable_db_id="var-1",
        value="2",
        observation_time_stamp="2024-06-01",
        additional_info={"changeLog": [{"priorValue": "1"}]},
    )
    row = MappedRow(row_index=0, dynamic={"Lodging": "4", "TS:Lodging": "2024-07-01"})
    (planned,) = plan_observations(
        ctx, row, unit_state, {"Lodging": variable}, ["TS:Lodging"], {("unit-1", "var-1"): prior}
    )

    assert planned.action == ObservationAction.OVERWRITE
    updated = planned.brapi_object
    assert updated.value == "4"
    assert updated.observation_time_stamp == "2024-07-01"
    assert [entry["priorValue"] for entry in updated.additional_info["changeLog"]] == ["1", "2"]
    assert updated.additional_info["changeLog"][-1]["priorTimestamp"] == "2024-06-01"
    # the stored observation is left untouched until commit
    assert prior.value == "2"
    assert len(prior.additional_info["changeLog"]) == 1
