"""Tests for the sample submission workflow."""

import pytest

from brapi_importer.services.brapi.models import (
    EntityKind,
    ExternalReference,
    Germplasm,
    ObservationUnit,
    Plate,
    Sample,
)
from brapi_importer.services.import_service import constants as c
from brapi_importer.services.import_service.errors import ValidatorError

from tests.conftest import PROGRAM_ID, REFERENCE_SOURCE

HEADERS = [c.PLATE_ID, c.ROW, c.COLUMN, c.ORGANISM, c.SPECIES, c.GERMPLASM_GID, c.TISSUE, c.COMMENT, c.OBS_UNIT_ID]

SUBMISSION = {c.SUBMISSION_NAME: "Batch 7"}


def _row(plate="P1", row="A", column="1", gid="", obs_unit_id="", tissue="Leaf", comment=""):
    return [plate, row, column, "Plant", "Zea mays", gid, tissue, comment, obs_unit_id]


@pytest.fixture
def germplasm(brapi_store) -> list[Germplasm]:
    return brapi_store.seed(
        EntityKind.GERMPLASM,
        Germplasm(germplasm_name="Line A", program_db_id=PROGRAM_ID),
        Germplasm(germplasm_name="Line B", program_db_id=PROGRAM_ID),
    )


@pytest.mark.asyncio
async def test_commit_creates_plates_then_samples(run_workflow, brapi_store, germplasm) -> None:
    a, b = (g.accession_number for g in germplasm)
    outcome = await run_workflow(
        "sample-submission",
        HEADERS,
        [_row(gid=a), _row(column="2", gid=b, comment="second")],
        user_fields=SUBMISSION,
        commit=True,
        job_id="job-7",
    )

    assert outcome.committed
    assert outcome.statistics == {"Plates": {"newObjectCount": 1}, "Samples": {"newObjectCount": 2}}
    assert [kind for _, kind, _ in brapi_store.write_log] == [
        EntityKind.PLATE,
        EntityKind.SAMPLE,
        EntityKind.SAMPLE,
    ]

    plate = outcome.rows[0].entities["plate"].brapi_object
    assert plate.sample_submission_db_id == "job-7"
    assert plate.additional_info == {"submissionName": "Batch 7"}
    assert plate.has_reference(f"{REFERENCE_SOURCE}/submissions", "job-7")

    sample = outcome.rows[1].entities["sample"].brapi_object
    assert sample.sample_name == "P1__Line B_A2"
    assert sample.well == "A02"
    assert sample.plate_db_id == plate.db_id
    assert sample.germplasm_db_id == germplasm[1].db_id
    assert sample.tissue_type == "Leaf"
    assert sample.sample_description == "second"
    assert sample.additional_info["organism"] == "Plant"


@pytest.mark.asyncio
async def test_well_collision_flags_every_row(run_workflow, germplasm) -> None:
    gid = germplasm[0].accession_number
    with pytest.raises(ValidatorError) as exc_info:
        await run_workflow(
            "sample-submission",
            HEADERS,
            [_row(gid=gid), _row(column="2", gid=gid), _row(row="a", gid=gid)],
            user_fields=SUBMISSION,
        )

    errors = exc_info.value.errors
    (first,) = errors.for_row(0)
    (third,) = errors.for_row(2)
    assert errors.for_row(1) == []
    assert (first.field, first.http_status_code) == (c.WELL, 409)
    assert first.error_message == c.WELL_COLLISION_MSG % (2, "P1", "A", 1, "4")
    assert third.error_message == c.WELL_COLLISION_MSG % (4, "P1", "A", 1, "2")


@pytest.mark.asyncio
async def test_row_checks(run_workflow, germplasm) -> None:
    gid = germplasm[0].accession_number
    outcome = await run_workflow(
        "sample-submission",
        HEADERS,
        [
            _row(gid=gid, tissue=""),
            _row(column="2"),
            _row(row="J", gid=gid),
            _row(column="3", gid="999"),
        ],
        user_fields=SUBMISSION,
        commit=True,
    )

    assert not outcome.committed
    assert [(e.field, e.error_message) for e in outcome.errors.for_row(0)] == [(c.TISSUE, c.MISSING_REQUIRED_DATA_MSG)]
    assert [(e.field, e.error_message) for e in outcome.errors.for_row(1)] == [
        (c.GERMPLASM_GID, c.GID_OR_OBS_UNIT_REQUIRED_MSG)
    ]
    assert [(e.field, e.error_message) for e in outcome.errors.for_row(2)] == [(c.ROW, c.BAD_PLATE_ROW_MSG)]
    assert [(e.field, e.http_status_code) for e in outcome.errors.for_row(3)] == [(c.GERMPLASM_GID, 404)]


@pytest.mark.asyncio
async def test_germplasm_from_observation_unit(run_workflow, brapi_store, germplasm) -> None:
    (unit,) = brapi_store.seed(
        EntityKind.OBSERVATION_UNIT,
        ObservationUnit(
            observation_unit_name="p1",
            program_db_id=PROGRAM_ID,
            germplasm_db_id=germplasm[1].db_id,
            external_references=[
                ExternalReference(reference_source=f"{REFERENCE_SOURCE}/observationunits", reference_id="ou-1")
            ],
        ),
    )
    outcome = await run_workflow(
        "sample-submission",
        HEADERS,
        [_row(obs_unit_id="ou-1"), _row(column="2", obs_unit_id="ou-404")],
        user_fields=SUBMISSION,
    )

    entities = outcome.rows[0].entities
    assert entities["germplasm"].brapi_object.db_id == germplasm[1].db_id
    assert entities["observationUnit"].state.value == "EXISTING"
    assert entities["sample"].brapi_object.observation_unit_db_id == unit.db_id
    assert [(e.field, e.error_message) for e in outcome.errors.for_row(1)] == [(c.OBS_UNIT_ID, c.UNKNOWN_OBS_UNIT_MSG)]


class TestExistingPlate:
    @pytest.fixture
    def plate(self, brapi_store, germplasm) -> Plate:
        (plate,) = brapi_store.seed(EntityKind.PLATE, Plate(plate_name="P1", program_db_id=PROGRAM_ID))
        brapi_store.seed(
            EntityKind.SAMPLE,
            Sample(
                sample_name="P1__Line A_A1",
                plate_db_id=plate.db_id,
                row="A",
                column=1,
                germplasm_db_id=germplasm[0].db_id,
            ),
        )
        return plate

    @pytest.mark.asyncio
    async def test_same_sample_is_existing(self, run_workflow, brapi_store, germplasm, plate) -> None:
        outcome = await run_workflow(
            "sample-submission",
            HEADERS,
            [_row(gid=germplasm[0].accession_number), _row(column="5", gid=germplasm[1].accession_number)],
            user_fields=SUBMISSION,
            commit=True,
        )

        assert outcome.rows[0].tags() == {"germplasm": "EXISTING", "plate": "EXISTING", "sample": "EXISTING"}
        assert outcome.rows[1].tags()["sample"] == "NEW"
        assert outcome.statistics == {"Plates": {"newObjectCount": 0}, "Samples": {"newObjectCount": 1}}
        assert [kind for _, kind, _ in brapi_store.write_log] == [EntityKind.SAMPLE]
        assert outcome.rows[1].entities["sample"].brapi_object.plate_db_id == plate.db_id

    @pytest.mark.asyncio
    async def test_occupied_well(self, run_workflow, germplasm, plate) -> None:
        outcome = await run_workflow(
            "sample-submission",
            HEADERS,
            [_row(gid=germplasm[1].accession_number)],
            user_fields=SUBMISSION,
        )

        (error,) = outcome.errors.for_row(0)
        assert (error.field, error.http_status_code) == (c.WELL, 409)
        assert error.error_message == c.WELL_OCCUPIED_MSG % ("P1", "A", 1)
