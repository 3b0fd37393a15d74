"""Pydantic models for the BrAPI v2 entities touched by imports.

Field names are snake_case in Python and camelCase on the wire.
"""

from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EntityKind(str, Enum):
    """BrAPI entity collections, valued by their endpoint path."""

    GERMPLASM = "germplasm"
    LIST = "lists"
    LOCATION = "locations"
    TRIAL = "trials"
    STUDY = "studies"
    OBSERVATION_UNIT = "observationunits"
    VARIABLE = "variables"
    OBSERVATION = "observations"
    PLATE = "plates"
    SAMPLE = "samples"


class BrAPIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_brapi(self) -> dict[str, Any]:
        """Serialize for the wire (camelCase, no unset optionals)."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ExternalReference(BrAPIModel):
    reference_source: str
    reference_id: str


class BrAPIEntity(BrAPIModel):
    """Common base: every entity carries external references and additional info."""

    id_field: ClassVar[str] = ""

    external_references: list[ExternalReference] = Field(default_factory=list)
    additional_info: dict[str, Any] = Field(default_factory=dict)

    @property
    def db_id(self) -> str | None:
        return getattr(self, self.id_field)

    @db_id.setter
    def db_id(self, value: str | None) -> None:
        setattr(self, self.id_field, value)

    def reference_id(self, source: str) -> str | None:
        """Return the id of the first reference with the given source."""
        for ref in self.external_references:
            if ref.reference_source == source:
                return ref.reference_id
        return None

    def has_reference(self, source: str, reference_id: str) -> bool:
        return any(
            ref.reference_source == source and ref.reference_id == reference_id
            for ref in self.external_references
        )

    def add_reference(self, source: str, reference_id: str) -> None:
        if not self.has_reference(source, reference_id):
            self.external_references.append(
                ExternalReference(reference_source=source, reference_id=reference_id)
            )


class Synonym(BrAPIModel):
    synonym: str
    type: str | None = None


class Germplasm(BrAPIEntity):
    id_field: ClassVar[str] = "germplasm_db_id"

    germplasm_db_id: str | None = None
    germplasm_name: str
    accession_number: str | None = None
    default_display_name: str | None = None
    program_db_id: str | None = None
    pedigree: str | None = None
    seed_source: str | None = None
    breeding_method_db_id: str | None = None
    synonyms: list[Synonym] = Field(default_factory=list)


class GermplasmList(BrAPIEntity):
    id_field: ClassVar[str] = "list_db_id"

    list_db_id: str | None = None
    list_name: str
    list_description: str | None = None
    list_type: str = "germplasm"
    list_owner_person_db_id: str | None = None
    program_db_id: str | None = None
    data: list[str] = Field(default_factory=list)


class Location(BrAPIEntity):
    id_field: ClassVar[str] = "location_db_id"

    location_db_id: str | None = None
    location_name: str
    program_db_id: str | None = None


class Trial(BrAPIEntity):
    id_field: ClassVar[str] = "trial_db_id"

    trial_db_id: str | None = None
    trial_name: str
    trial_description: str | None = None
    program_db_id: str | None = None
    active: bool = True


class Study(BrAPIEntity):
    id_field: ClassVar[str] = "study_db_id"

    study_db_id: str | None = None
    study_name: str
    study_type: str | None = None
    trial_db_id: str | None = None
    trial_name: str | None = None
    location_db_id: str | None = None
    location_name: str | None = None
    program_db_id: str | None = None
    seasons: list[str] = Field(default_factory=list)


class ObservationLevel(BrAPIModel):
    level_name: str | None = None
    level_code: str | None = None
    level_order: int | None = None


class ObservationUnitPosition(BrAPIModel):
    entry_type: str | None = None
    observation_level: ObservationLevel | None = None
    observation_level_relationships: list[ObservationLevel] = Field(default_factory=list)
    position_coordinate_x: str | None = None
    position_coordinate_y: str | None = None


class Treatment(BrAPIModel):
    factor: str
    modality: str | None = None


class ObservationUnit(BrAPIEntity):
    id_field: ClassVar[str] = "observation_unit_db_id"

    observation_unit_db_id: str | None = None
    observation_unit_name: str
    program_db_id: str | None = None
    trial_db_id: str | None = None
    trial_name: str | None = None
    study_db_id: str | None = None
    study_name: str | None = None
    location_db_id: str | None = None
    location_name: str | None = None
    germplasm_db_id: str | None = None
    germplasm_name: str | None = None
    observation_unit_position: ObservationUnitPosition | None = None
    treatments: list[Treatment] = Field(default_factory=list)


class Category(BrAPIModel):
    value: str
    label: str | None = None


class ValidValues(BrAPIModel):
    min: float | None = None
    max: float | None = None
    categories: list[Category] = Field(default_factory=list)


class Scale(BrAPIModel):
    scale_name: str | None = None
    data_type: str = "Text"
    valid_values: ValidValues = Field(default_factory=ValidValues)


class ObservationVariable(BrAPIEntity):
    id_field: ClassVar[str] = "observation_variable_db_id"

    observation_variable_db_id: str | None = None
    observation_variable_name: str
    program_db_id: str | None = None
    scale: Scale = Field(default_factory=Scale)


class Observation(BrAPIEntity):
    id_field: ClassVar[str] = "observation_db_id"

    observation_db_id: str | None = None
    observation_unit_db_id: str | None = None
    observation_unit_name: str | None = None
    observation_variable_db_id: str | None = None
    observation_variable_name: str | None = None
    study_db_id: str | None = None
    germplasm_db_id: str | None = None
    germplasm_name: str | None = None
    program_db_id: str | None = None
    value: str | None = None
    observation_time_stamp: str | None = None


class Plate(BrAPIEntity):
    id_field: ClassVar[str] = "plate_db_id"

    plate_db_id: str | None = None
    plate_name: str
    program_db_id: str | None = None
    sample_submission_db_id: str | None = None


class Sample(BrAPIEntity):
    id_field: ClassVar[str] = "sample_db_id"

    sample_db_id: str | None = None
    sample_name: str
    plate_db_id: str | None = None
    plate_name: str | None = None
    program_db_id: str | None = None
    row: str | None = None
    column: int | None = None
    well: str | None = None
    germplasm_db_id: str | None = None
    observation_unit_db_id: str | None = None
    tissue_type: str | None = None
    sample_description: str | None = None


ENTITY_MODELS: dict[EntityKind, type[BrAPIEntity]] = {
    EntityKind.GERMPLASM: Germplasm,
    EntityKind.LIST: GermplasmList,
    EntityKind.LOCATION: Location,
    EntityKind.TRIAL: Trial,
    EntityKind.STUDY: Study,
    EntityKind.OBSERVATION_UNIT: ObservationUnit,
    EntityKind.VARIABLE: ObservationVariable,
    EntityKind.OBSERVATION: Observation,
    EntityKind.PLATE: Plate,
    EntityKind.SAMPLE: Sample,
}
