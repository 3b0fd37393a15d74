"""Per-row reconciliation results and the shared state of one import run."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny

from brapi_importer.services.brapi import BrAPIClient
from brapi_importer.services.brapi.models import BrAPIEntity, EntityKind, ExternalReference

from .errors import FieldError, ValidationErrors


class ImportObjectState(str, Enum):
    NEW = "NEW"
    EXISTING = "EXISTING"


class ObservationAction(str, Enum):
    CREATE = "create"
    OVERWRITE = "overwrite"
    NOOP = "noop"


class EntityState(BaseModel):
    """An entity planned for (or found by) one row, tagged NEW or EXISTING.

    Rows that reference the same entity share the same ``brapi_object``
    instance, so db ids assigned on commit are visible from every row.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: ImportObjectState
    brapi_object: SerializeAsAny[BrAPIEntity]
    external_reference: ExternalReference | None = None
    # Observations only
    action: ObservationAction | None = None
    column: str | None = None

    @property
    def is_new(self) -> bool:
        return self.state == ImportObjectState.NEW

    def to_preview(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "state": self.state.value,
            "brAPIObject": self.brapi_object.to_brapi(),
        }
        if self.external_reference is not None:
            data["externalReference"] = self.external_reference.to_brapi()
        if self.action is not None:
            data["action"] = self.action.value
        if self.column is not None:
            data["column"] = self.column
        return data


class RowResult(BaseModel):
    row_index: int
    entities: dict[str, EntityState] = Field(default_factory=dict)
    observations: list[EntityState] = Field(default_factory=list)
    field_errors: list[FieldError] = Field(default_factory=list)

    def tags(self) -> dict[str, str]:
        """NEW/EXISTING tag of every entity in the row, for comparisons and logs."""
        tags = {name: entity.state.value for name, entity in self.entities.items()}
        for obs in self.observations:
            tags[f"observation:{obs.column}"] = obs.state.value
        return tags

    def to_preview(self) -> dict[str, Any]:
        data: dict[str, Any] = {"rowIndex": self.row_index}
        for name, entity in self.entities.items():
            data[name] = entity.to_preview()
        if self.observations:
            data["observations"] = [obs.to_preview() for obs in self.observations]
        if self.field_errors:
            data["errors"] = [e.model_dump(by_alias=True) for e in self.field_errors]
        return data


@dataclass
class ImportContext:
    """Inputs and collaborators shared by every step of one import run."""

    client: BrAPIClient
    program_id: str
    job_id: str
    user_id: str
    reference_source: str
    user_inputs: dict[str, str] = field(default_factory=dict)
    overwrite: bool = False
    overwrite_reason: str | None = None
    errors: ValidationErrors = field(default_factory=ValidationErrors)
    provenance_kind: str = "imports"

    def origin_source(self, kind: EntityKind) -> str:
        return f"{self.reference_source}/{kind.value}"

    @property
    def provenance_source(self) -> str:
        return f"{self.reference_source}/{self.provenance_kind}"

    def tag_new(self, entity: BrAPIEntity, kind: EntityKind) -> ExternalReference:
        """Give a planned entity its origin reference and a provenance reference."""
        reference = ExternalReference(
            reference_source=self.origin_source(kind),
            reference_id=str(uuid.uuid4()),
        )
        entity.external_references.append(reference)
        self.tag_updated(entity)
        return reference

    def tag_updated(self, entity: BrAPIEntity) -> None:
        entity.add_reference(self.provenance_source, self.job_id)

    def origin_reference(self, entity: BrAPIEntity, kind: EntityKind) -> ExternalReference | None:
        reference_id = entity.reference_id(self.origin_source(kind))
        if reference_id is None:
            return None
        return ExternalReference(reference_source=self.origin_source(kind), reference_id=reference_id)

    def new_state(self, entity: BrAPIEntity, kind: EntityKind) -> EntityState:
        reference = self.tag_new(entity, kind)
        return EntityState(state=ImportObjectState.NEW, brapi_object=entity, external_reference=reference)

    def existing_state(self, entity: BrAPIEntity, kind: EntityKind) -> EntityState:
        return EntityState(
            state=ImportObjectState.EXISTING,
            brapi_object=entity,
            external_reference=self.origin_reference(entity, kind),
        )


def apply_created(kind_source: str, pending: list[BrAPIEntity], created: list[BrAPIEntity]) -> None:
    """Copy store-assigned ids from created entities back onto the planned ones.

    Entities are matched on their origin reference id.
    """
    by_reference = {entity.reference_id(kind_source): entity for entity in created}
    for entity in pending:
        stored = by_reference.get(entity.reference_id(kind_source))
        if stored is None:
            continue
        entity.db_id = stored.db_id
        accession = getattr(stored, "accession_number", None)
        if accession and hasattr(entity, "accession_number"):
            entity.accession_number = accession


def statistic(count: int) -> dict[str, int]:
    return {"newObjectCount": count}
