"""Germplasm workflow: new germplasm with pedigree, or new parents for existing GIDs."""

import logging

from brapi_importer.services.brapi.models import EntityKind, Germplasm, GermplasmList, Synonym

from .. import constants as c
from ..errors import ConflictError, MissingReferenceError, UnprocessableError
from ..mapping import MappedFile, MappedRow
from ..results import RowResult, statistic
from ..validators import assign_entry_numbers, check_required
from .base import WorkflowResolver, count_new

logger = logging.getLogger(__name__)

GERMPLASM = "germplasm"

_PARENT_COLUMNS = {
    "female": (c.FEMALE_PARENT_GID, c.FEMALE_PARENT_ENTRY_NO),
    "male": (c.MALE_PARENT_GID, c.MALE_PARENT_ENTRY_NO),
}


def _known(value: str) -> str | None:
    """A parent reference, or None when blank or explicitly unknown."""
    value = value.strip()
    if not value or value == c.UNKNOWN_PARENT:
        return None
    return value


def _entry(value: str) -> str | None:
    value = _known(value) or ""
    if value.isdigit():
        # "007" and "7" name the same entry
        value = str(int(value))
    return _known(value)


class GermplasmResolver(WorkflowResolver):
    """Plans germplasm creation in parent-before-child order."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._row_by_entry: dict[str, int] = {}
        # row index -> {"female"|"male": row index of a NEW parent in this file}
        self._file_parents: dict[int, dict[str, int]] = {}
        self._generations: list[list[int]] = []
        self._updated: list[Germplasm] = []
        self._list: GermplasmList | None = None

    async def resolve(self, mapped: MappedFile) -> list[RowResult]:
        rows = mapped.rows
        errors = self.ctx.errors

        check_required([r for r in rows if r.is_blank(c.GID)], [c.GERMPLASM_NAME], c.BLANK_GERMPLASM_FIELD_MSG, errors)
        self._check_female_parent_present(rows)

        entry_numbers = assign_entry_numbers(rows)
        self._row_by_entry = {entry: index for index, entry in entry_numbers.items()}

        await self._check_list_name()
        existing = await self._lookup_gids(rows)
        self._check_parent_entry_numbers(rows)

        results = [self._plan_row(row, existing, entry_numbers[row.row_index]) for row in rows]
        self._plan_pedigrees(rows, results, existing)
        self._generations = self._post_order(results)
        self._plan_list()

        self.attach_errors(results)
        return results

    def _check_female_parent_present(self, rows: list[MappedRow]) -> None:
        for row in rows:
            if row.get(c.FEMALE_PARENT_GID) or row.get(c.FEMALE_PARENT_ENTRY_NO):
                continue
            if row.get(c.MALE_PARENT_ENTRY_NO):
                self.ctx.errors.add(row.row_index, c.MALE_PARENT_ENTRY_NO, c.MISSING_FEMALE_PARENT_MSG, 422)
            elif row.get(c.MALE_PARENT_GID):
                self.ctx.errors.add(row.row_index, c.MALE_PARENT_GID, c.MISSING_FEMALE_PARENT_MSG, 422)

    async def _check_list_name(self) -> None:
        name = self.ctx.user_inputs.get(c.LIST_NAME)
        if not name:
            return
        found = await self.client.find_one(EntityKind.LIST, list_name=name, program_db_id=self.ctx.program_id)
        if found is not None:
            raise ConflictError(c.LIST_NAME_EXISTS_MSG)

    async def _lookup_gids(self, rows: list[MappedRow]) -> dict[str, Germplasm]:
        """Fetch every GID the file mentions, failing with all missing ones listed."""
        gids = {row.get(c.GID) for row in rows if row.get(c.GID)}
        parent_gids = {
            gid
            for row in rows
            for column in (c.FEMALE_PARENT_GID, c.MALE_PARENT_GID)
            if (gid := _known(row.get(column)))
        }
        existing = await self._find_by(
            EntityKind.GERMPLASM,
            "accession_number",
            gids | parent_gids,
            program_db_id=self.ctx.program_id,
        )

        missing_parents = parent_gids - existing.keys()
        if missing_parents:
            raise MissingReferenceError(c.MISSING_PARENTAL_GIDS_MSG % c.format_values(missing_parents))
        missing = gids - existing.keys()
        if missing:
            raise MissingReferenceError(c.MISSING_GIDS_MSG % c.format_values(missing))
        return existing

    def _check_parent_entry_numbers(self, rows: list[MappedRow]) -> None:
        referenced = {
            entry
            for row in rows
            for column in (c.FEMALE_PARENT_ENTRY_NO, c.MALE_PARENT_ENTRY_NO)
            if (entry := _entry(row.get(column)))
        }
        missing = referenced - self._row_by_entry.keys()
        if missing:
            raise MissingReferenceError(c.MISSING_PARENTAL_ENTRY_NO_MSG % c.format_values(missing))

    def _plan_row(self, row: MappedRow, existing: dict[str, Germplasm], entry_number: str) -> RowResult:
        result = RowResult(row_index=row.row_index)
        gid = row.get(c.GID)
        if gid:
            result.entities[GERMPLASM] = self.ctx.existing_state(existing[gid], EntityKind.GERMPLASM)
            return result

        name = row.get(c.GERMPLASM_NAME)
        germplasm = Germplasm(
            germplasm_name=name,
            default_display_name=name,
            program_db_id=self.ctx.program_id,
            seed_source=row.get(c.SOURCE) or None,
            synonyms=[Synonym(synonym=s.strip()) for s in row.get(c.SYNONYMS).split(";") if s.strip()],
            additional_info={"importEntryNumber": entry_number},
        )
        if row.get(c.BREEDING_METHOD):
            germplasm.additional_info["breedingMethod"] = row.get(c.BREEDING_METHOD)
        if row.get(c.EXTERNAL_UID):
            germplasm.add_reference(row.get(c.SOURCE) or "external", row.get(c.EXTERNAL_UID))
        result.entities[GERMPLASM] = self.ctx.new_state(germplasm, EntityKind.GERMPLASM)
        return result

    def _plan_pedigrees(self, rows: list[MappedRow], results: list[RowResult], existing: dict[str, Germplasm]) -> None:
        by_index = {result.row_index: result for result in results}
        for row in rows:
            state = by_index[row.row_index].entities[GERMPLASM]
            germplasm: Germplasm = state.brapi_object

            names: dict[str, str] = {}
            parent_db_ids: dict[str, str | None] = {}
            # NEW parents get their db id at commit
            file_parents: dict[str, int] = {}
            for parent, (gid_column, entry_column) in _PARENT_COLUMNS.items():
                gid = _known(row.get(gid_column))
                entry = _entry(row.get(entry_column))
                if gid:
                    names[parent] = existing[gid].germplasm_name
                    parent_db_ids[parent] = existing[gid].db_id
                    germplasm.additional_info[f"{parent}ParentGid"] = gid
                elif entry:
                    parent_state = by_index[self._row_by_entry[entry]].entities[GERMPLASM]
                    names[parent] = parent_state.brapi_object.germplasm_name
                    germplasm.additional_info[f"{parent}ParentEntryNo"] = entry
                    if parent_state.is_new:
                        file_parents[parent] = self._row_by_entry[entry]
                    else:
                        parent_db_ids[parent] = parent_state.brapi_object.db_id

            if "female" not in names:
                continue
            pedigree = names["female"] if "male" not in names else f"{names['female']}/{names['male']}"

            if state.is_new:
                germplasm.pedigree = pedigree
            elif germplasm.pedigree and germplasm.pedigree != pedigree:
                column = c.FEMALE_PARENT_GID if row.get(c.FEMALE_PARENT_GID) else c.FEMALE_PARENT_ENTRY_NO
                self.ctx.errors.add(row.row_index, column, c.PEDIGREE_EXISTS_MSG, 422)
                continue
            elif germplasm.pedigree != pedigree:
                germplasm.pedigree = pedigree
                self.ctx.tag_updated(germplasm)
                self._updated.append(germplasm)
            else:
                continue

            for parent, db_id in parent_db_ids.items():
                germplasm.additional_info[f"{parent}ParentDbId"] = db_id
            self._file_parents[row.row_index] = file_parents

    def _post_order(self, results: list[RowResult]) -> list[list[int]]:
        """Group NEW rows into generations whose parents are all in earlier ones.

        Raises:
            UnprocessableError: If entry-number parentage forms a cycle.
        """
        remaining = {r.row_index for r in results if r.entities[GERMPLASM].is_new}
        generations: list[list[int]] = []
        while remaining:
            ready = sorted(
                index
                for index in remaining
                if not any(p in remaining for p in self._file_parents.get(index, {}).values())
            )
            if not ready:
                raise UnprocessableError(c.CIRCULAR_DEPENDENCY_MSG)
            generations.append(ready)
            remaining.difference_update(ready)
        return generations

    def _plan_list(self) -> None:
        name = self.ctx.user_inputs.get(c.LIST_NAME)
        if not name:
            return
        self._list = GermplasmList(
            list_name=name,
            list_description=self.ctx.user_inputs.get(c.LIST_DESCRIPTION) or None,
            program_db_id=self.ctx.program_id,
            list_owner_person_db_id=self.ctx.user_id,
        )
        self.ctx.tag_new(self._list, EntityKind.LIST)

    def _link_file_parents(self, index: int, by_index: dict[int, RowResult]) -> Germplasm:
        germplasm = by_index[index].entities[GERMPLASM].brapi_object
        for parent, parent_index in self._file_parents.get(index, {}).items():
            parent_germplasm = by_index[parent_index].entities[GERMPLASM].brapi_object
            germplasm.additional_info[f"{parent}ParentDbId"] = parent_germplasm.db_id
        return germplasm

    async def commit(self, results: list[RowResult]) -> None:
        by_index = {result.row_index: result for result in results}

        for generation in self._generations:
            batch = [self._link_file_parents(index, by_index) for index in generation]
            await self._create(EntityKind.GERMPLASM, batch)

        # Existing germplasm may name parents created above
        for index in self._file_parents:
            if not by_index[index].entities[GERMPLASM].is_new:
                self._link_file_parents(index, by_index)
        await self._update(EntityKind.GERMPLASM, self._updated)

        if self._list is not None:
            self._list.data = [
                by_index[index].entities[GERMPLASM].brapi_object.accession_number
                for index in sorted(by_index)
            ]
            await self._create(EntityKind.LIST, [self._list])

    def statistics(self, results: list[RowResult]) -> dict[str, dict[str, int]]:
        pedigree_connections = sum(
            1
            for result in results
            if any(k in result.entities[GERMPLASM].brapi_object.additional_info for k in ("femaleParentGid", "femaleParentEntryNo"))
        )
        return {
            "Germplasm": statistic(count_new(results, GERMPLASM)),
            "Pedigree Connections": statistic(pedigree_connections),
        }
