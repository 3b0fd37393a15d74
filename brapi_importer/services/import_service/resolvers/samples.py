"""Sample submission workflow: lay samples out on plates for genotyping."""

import logging

from brapi_importer.services.brapi.models import EntityKind, Germplasm, ObservationUnit, Plate, Sample

from .. import constants as c
from ..errors import ValidatorError
from ..mapping import MappedFile, MappedRow
from ..results import EntityState, RowResult, statistic
from ..validators import (
    check_plate_position,
    check_required,
    find_duplicate_keys,
    parse_plate_column,
    parse_plate_row,
)
from .base import WorkflowResolver, count_new, unique_new

logger = logging.getLogger(__name__)

GERMPLASM = "germplasm"
UNIT = "observationUnit"
PLATE = "plate"
SAMPLE = "sample"

Well = tuple[str, str, int]


class SampleResolver(WorkflowResolver):
    async def resolve(self, mapped: MappedFile) -> list[RowResult]:
        rows = mapped.rows
        errors = self.ctx.errors

        check_required(rows, self.mapping.required_columns, c.MISSING_REQUIRED_DATA_MSG, errors)
        check_plate_position(rows, errors)
        for row in rows:
            if row.is_blank(c.GERMPLASM_GID) and row.is_blank(c.OBS_UNIT_ID):
                errors.add(row.row_index, c.GERMPLASM_GID, c.GID_OR_OBS_UNIT_REQUIRED_MSG, 422)

        if self._check_well_collisions(rows):
            raise ValidatorError(errors)

        results = {row.row_index: RowResult(row_index=row.row_index) for row in rows}
        germplasm = await self._resolve_germplasm(rows, results)
        plates = await self._resolve_plates(rows)
        occupied = await self._stored_samples(plates)

        for row in rows:
            well = _well(row)
            germ = germplasm.get(row.row_index)
            if well is None or germ is None:
                continue
            plate_state = plates[well[0]]
            result = results[row.row_index]
            result.entities[PLATE] = plate_state

            stored = occupied.get((plate_state.brapi_object.db_id, well[1], well[2]))
            if stored is not None:
                if stored.germplasm_db_id == germ.db_id:
                    result.entities[SAMPLE] = self.ctx.existing_state(stored, EntityKind.SAMPLE)
                else:
                    errors.add(row.row_index, c.WELL, c.WELL_OCCUPIED_MSG % well, 409)
                continue
            result.entities[SAMPLE] = self.ctx.new_state(self._plan_sample(row, well, germ, result), EntityKind.SAMPLE)

        ordered = [results[row.row_index] for row in rows]
        self.attach_errors(ordered)
        return ordered

    def _check_well_collisions(self, rows: list[MappedRow]) -> bool:
        """Flag every row that shares a plate well with another row."""
        groups = find_duplicate_keys(rows, _well)
        for group in groups:
            for row in group:
                others = [str(other.row_number) for other in group if other is not row]
                plate, letter, column = _well(row)
                self.ctx.errors.add(
                    row.row_index,
                    c.WELL,
                    c.WELL_COLLISION_MSG % (row.row_number, plate, letter, column, c.format_values(others)),
                    409,
                )
        return bool(groups)

    async def _resolve_germplasm(self, rows: list[MappedRow], results: dict[int, RowResult]) -> dict[int, Germplasm]:
        """Germplasm of each row, from its GID or else from its observation unit."""
        errors = self.ctx.errors
        gids = {row.get(c.GERMPLASM_GID) for row in rows if row.get(c.GERMPLASM_GID)}
        by_gid = await self._find_by(
            EntityKind.GERMPLASM, "accession_number", gids, program_db_id=self.ctx.program_id
        )

        source = self.ctx.origin_source(EntityKind.OBSERVATION_UNIT)
        unit_ids = sorted({row.get(c.OBS_UNIT_ID) for row in rows if row.get(c.OBS_UNIT_ID)})
        units: dict[str, ObservationUnit] = {}
        if unit_ids:
            for unit in await self.client.find(
                EntityKind.OBSERVATION_UNIT,
                external_reference_id=unit_ids,
                external_reference_source=source,
            ):
                units[unit.reference_id(source)] = unit
        by_db_id = await self._find_by(
            EntityKind.GERMPLASM,
            "germplasm_db_id",
            {u.germplasm_db_id for u in units.values() if u.germplasm_db_id},
        )

        germplasm: dict[int, Germplasm] = {}
        states: dict[str, EntityState] = {}
        for row in rows:
            entities = results[row.row_index].entities
            germ = None
            if row.get(c.OBS_UNIT_ID):
                unit = units.get(row.get(c.OBS_UNIT_ID))
                if unit is None:
                    errors.add(row.row_index, c.OBS_UNIT_ID, c.UNKNOWN_OBS_UNIT_MSG, 404)
                else:
                    entities[UNIT] = self.ctx.existing_state(unit, EntityKind.OBSERVATION_UNIT)
                    germ = by_db_id.get(unit.germplasm_db_id)
            if row.get(c.GERMPLASM_GID):
                germ = by_gid.get(row.get(c.GERMPLASM_GID))
                if germ is None:
                    errors.add(row.row_index, c.GERMPLASM_GID, c.UNKNOWN_GERMPLASM_GID_MSG, 404)
            if germ is None:
                continue
            if germ.db_id not in states:
                states[germ.db_id] = self.ctx.existing_state(germ, EntityKind.GERMPLASM)
            entities[GERMPLASM] = states[germ.db_id]
            germplasm[row.row_index] = germ
        return germplasm

    async def _resolve_plates(self, rows: list[MappedRow]) -> dict[str, EntityState]:
        names = {row.get(c.PLATE_ID) for row in rows if row.get(c.PLATE_ID)}
        found = await self._find_by(EntityKind.PLATE, "plate_name", names, program_db_id=self.ctx.program_id)
        plates: dict[str, EntityState] = {}
        for name in sorted(names):
            if name in found:
                plates[name] = self.ctx.existing_state(found[name], EntityKind.PLATE)
                continue
            plate = Plate(
                plate_name=name,
                program_db_id=self.ctx.program_id,
                sample_submission_db_id=self.ctx.job_id,
                additional_info={"submissionName": self.ctx.user_inputs.get(c.SUBMISSION_NAME)},
            )
            plates[name] = self.ctx.new_state(plate, EntityKind.PLATE)
        return plates

    async def _stored_samples(self, plates: dict[str, EntityState]) -> dict[tuple[str, str, int], Sample]:
        plate_ids = sorted(state.brapi_object.db_id for state in plates.values() if not state.is_new)
        if not plate_ids:
            return {}
        samples = await self.client.find(EntityKind.SAMPLE, plate_db_id=plate_ids)
        return {(s.plate_db_id, (s.row or "").upper(), s.column): s for s in samples}

    def _plan_sample(self, row: MappedRow, well: Well, germ: Germplasm, result: RowResult) -> Sample:
        plate, letter, column = well
        unit = result.entities.get(UNIT)
        return Sample(
            sample_name=f"{plate}__{germ.germplasm_name}_{letter}{column}",
            plate_name=plate,
            program_db_id=self.ctx.program_id,
            row=letter,
            column=column,
            well=f"{letter}{column:02d}",
            germplasm_db_id=germ.db_id,
            observation_unit_db_id=unit.brapi_object.db_id if unit is not None else None,
            tissue_type=row.get(c.TISSUE) or None,
            sample_description=row.get(c.COMMENT) or None,
            additional_info={
                "organism": row.get(c.ORGANISM),
                "species": row.get(c.SPECIES) or None,
                "submissionName": self.ctx.user_inputs.get(c.SUBMISSION_NAME),
            },
        )

    async def commit(self, results: list[RowResult]) -> None:
        await self._create(EntityKind.PLATE, unique_new(results, PLATE))
        for result in results:
            sample = result.entities.get(SAMPLE)
            if sample is not None and sample.is_new:
                sample.brapi_object.plate_db_id = result.entities[PLATE].brapi_object.db_id
        await self._create(EntityKind.SAMPLE, unique_new(results, SAMPLE))

    def statistics(self, results: list[RowResult]) -> dict[str, dict[str, int]]:
        return {
            "Plates": statistic(count_new(results, PLATE)),
            "Samples": statistic(count_new(results, SAMPLE)),
        }


def _well(row: MappedRow) -> Well | None:
    """(plate, row letter, column) of a row, or None if any part is missing or invalid."""
    letter = parse_plate_row(row.get(c.ROW))
    column = parse_plate_column(row.get(c.COLUMN))
    if row.is_blank(c.PLATE_ID) or letter is None or column is None:
        return None
    return (row.get(c.PLATE_ID), letter, column)
