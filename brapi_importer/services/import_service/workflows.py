"""Mapping registry: the fixed column layout and entity rules of each workflow."""

from enum import Enum

from pydantic import BaseModel, Field

from brapi_importer.services.brapi.models import EntityKind

from . import constants as c
from .errors import DoesNotExistError


class WorkflowKind(str, Enum):
    """Import use cases; each selects its own resolution rules."""

    GERMPLASM = "germplasm"
    NEW_EXPERIMENT = "new-experiment"
    APPEND_OVERWRITE = "append-overwrite"
    SAMPLE_SUBMISSION = "sample-submission"


class ColumnType(str, Enum):
    TEXT = "text"
    INTEGER = "integer"


class ColumnSpec(BaseModel):
    """A recognized column of an import template."""

    name: str
    required: bool = False
    data_type: ColumnType = ColumnType.TEXT
    description: str = ""


class UserInputSpec(BaseModel):
    """A value collected from the user alongside the file."""

    name: str
    required: bool = False
    description: str = ""


class WorkflowMapping(BaseModel):
    """Everything the engine needs to know about one workflow."""

    workflow: WorkflowKind
    mapping_id: str
    name: str
    description: str = ""
    columns: list[ColumnSpec]
    user_inputs: list[UserInputSpec] = Field(default_factory=list)
    # Entity kinds written on commit, in dependency order
    entity_rules: list[EntityKind]
    # Unrecognized headers are trait columns rather than ignored
    dynamic_columns: bool = False

    @property
    def required_columns(self) -> list[str]:
        return [col.name for col in self.columns if col.required]


def _col(name: str, required: bool = False, data_type: ColumnType = ColumnType.TEXT, description: str = "") -> ColumnSpec:
    return ColumnSpec(name=name, required=required, data_type=data_type, description=description)


_GERMPLASM_COLUMNS = [
    _col(c.GERMPLASM_NAME, True, description="Name of germplasm"),
    _col(c.BREEDING_METHOD, description="The breeding method name or code"),
    _col(c.SOURCE, description="The germplasm origin"),
    _col(c.EXTERNAL_UID, description="Identifier of the germplasm in its source system"),
    _col(c.ENTRY_NO, data_type=ColumnType.INTEGER, description="Order of the germplasm in the import list"),
    _col(c.FEMALE_PARENT_GID, description="GID of the female parent, 0 if unknown"),
    _col(c.MALE_PARENT_GID, description="GID of the male parent, 0 if unknown"),
    _col(c.FEMALE_PARENT_ENTRY_NO, description="Entry number of a female parent in this file"),
    _col(c.MALE_PARENT_ENTRY_NO, description="Entry number of a male parent in this file"),
    _col(c.GID, description="GID of existing germplasm being re-imported"),
    _col(c.SYNONYMS, description="Synonyms separated by semicolons"),
]


def _experiment_columns(new_experiment: bool) -> list[ColumnSpec]:
    # Hierarchy columns are only mandatory when the hierarchy is being created
    required = new_experiment
    return [
        _col(c.GERMPLASM_NAME),
        _col(c.GERMPLASM_GID, required, description="GID of the germplasm planted in the unit"),
        _col(c.TEST_CHECK, description="T/TEST or C/CHECK"),
        _col(c.EXP_TITLE, True, description="Title of the experiment"),
        _col(c.EXP_DESCRIPTION),
        _col(c.EXP_UNIT, required, description="Observation level of the experimental unit, e.g. Plot"),
        _col(c.EXP_TYPE, required, description="Kind of experiment, e.g. Phenotyping"),
        _col(c.ENV, required, description="Environment name"),
        _col(c.ENV_LOCATION, required, description="Location of the environment"),
        _col(c.ENV_YEAR, required, ColumnType.INTEGER, description="Year of the environment"),
        _col(c.EXP_UNIT_ID, required, description="Identifier of the unit within its environment"),
        _col(c.REP_NUM, required),
        _col(c.BLOCK_NUM, required),
        _col(c.ROW),
        _col(c.COLUMN),
        _col(c.TREATMENT_FACTORS),
        _col(c.OBS_UNIT_ID, description="Observation unit reference returned by a previous import"),
    ]


_SAMPLE_COLUMNS = [
    _col(c.PLATE_ID, True, description="Name of the plate"),
    _col(c.ROW, True, description="Plate row, A to H"),
    _col(c.COLUMN, True, description="Plate column, 1 to 12"),
    _col(c.ORGANISM, True),
    _col(c.SPECIES),
    _col(c.GERMPLASM_NAME),
    _col(c.GERMPLASM_GID),
    _col(c.TISSUE, True),
    _col(c.COMMENT),
    _col(c.OBS_UNIT_ID),
]

_EXPERIMENT_ENTITIES = [
    EntityKind.LOCATION,
    EntityKind.TRIAL,
    EntityKind.STUDY,
    EntityKind.OBSERVATION_UNIT,
    EntityKind.OBSERVATION,
]

MAPPINGS: dict[WorkflowKind, WorkflowMapping] = {
    WorkflowKind.GERMPLASM: WorkflowMapping(
        workflow=WorkflowKind.GERMPLASM,
        mapping_id="germplasm",
        name="Germplasm Import",
        description="Create germplasm with pedigree, or update parents of existing germplasm",
        columns=_GERMPLASM_COLUMNS,
        user_inputs=[
            UserInputSpec(name=c.LIST_NAME, required=True, description="Name of the group of germplasm being imported"),
            UserInputSpec(name=c.LIST_DESCRIPTION, description="Description of the group"),
        ],
        entity_rules=[EntityKind.GERMPLASM, EntityKind.LIST],
    ),
    WorkflowKind.NEW_EXPERIMENT: WorkflowMapping(
        workflow=WorkflowKind.NEW_EXPERIMENT,
        mapping_id="experiment",
        name="New Experiment",
        description="Create an experiment with its environments, units and observations",
        columns=_experiment_columns(new_experiment=True),
        entity_rules=_EXPERIMENT_ENTITIES,
        dynamic_columns=True,
    ),
    WorkflowKind.APPEND_OVERWRITE: WorkflowMapping(
        workflow=WorkflowKind.APPEND_OVERWRITE,
        mapping_id="experiment",
        name="Append or Overwrite Observations",
        description="Add or replace observations on an existing experiment",
        columns=_experiment_columns(new_experiment=False),
        entity_rules=[EntityKind.OBSERVATION],
        dynamic_columns=True,
    ),
    WorkflowKind.SAMPLE_SUBMISSION: WorkflowMapping(
        workflow=WorkflowKind.SAMPLE_SUBMISSION,
        mapping_id="sample-submission",
        name="Sample Submission",
        description="Lay out samples on plates for genotyping",
        columns=_SAMPLE_COLUMNS,
        user_inputs=[UserInputSpec(name=c.SUBMISSION_NAME, required=True)],
        entity_rules=[EntityKind.PLATE, EntityKind.SAMPLE],
    ),
}


def get_mapping(workflow_id: str) -> WorkflowMapping:
    """Look up a workflow's mapping.

    Raises:
        DoesNotExistError: If the workflow id is unknown.
    """
    try:
        return MAPPINGS[WorkflowKind(workflow_id)]
    except ValueError:
        raise DoesNotExistError(f"Workflow '{workflow_id}' does not exist") from None


def list_mappings() -> list[WorkflowMapping]:
    return list(MAPPINGS.values())
