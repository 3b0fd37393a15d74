"""Experiment workflows: create a new experiment, or append/overwrite observations.

Both workflows share the same template. The new-experiment workflow plans the
whole hierarchy (location, trial, study, observation unit) as NEW and fails if
the experiment title is taken. The append/overwrite workflow only resolves
existing records and hands observation values to the merge engine.
"""

import logging
from collections.abc import Iterable

from brapi_importer.services.brapi.models import (
    EntityKind,
    Germplasm,
    Location,
    Observation,
    ObservationLevel,
    ObservationUnit,
    ObservationUnitPosition,
    ObservationVariable,
    Study,
    Treatment,
    Trial,
)

from .. import constants as c
from ..errors import ConflictError, UnprocessableError, ValidatorError
from ..mapping import MappedFile, MappedRow
from ..merge import ObservationKey, observation_key, plan_observations
from ..results import EntityState, ObservationAction, RowResult, statistic
from ..validators import (
    check_environment_identity,
    check_required,
    check_single_title,
    check_test_or_check,
    find_duplicate_keys,
)
from .base import WorkflowResolver, count_new, unique_new

logger = logging.getLogger(__name__)

GERMPLASM = "germplasm"
LOCATION = "location"
TRIAL = "trial"
STUDY = "study"
UNIT = "observationUnit"


class ExperimentResolver(WorkflowResolver):
    """Resolves experiment rows; ``append`` selects the append/overwrite rules."""

    def __init__(self, *args, append: bool = False, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.append = append

    async def resolve(self, mapped: MappedFile) -> list[RowResult]:
        rows = mapped.rows
        errors = self.ctx.errors

        blank_message = c.BLANK_FIELD_OBS_MSG if self.append else c.BLANK_FIELD_EXPERIMENT_MSG
        check_required(rows, self.mapping.required_columns, blank_message, errors)
        check_test_or_check(rows, errors)
        title = check_single_title(rows)
        traits = await self._lookup_traits(mapped)

        if self.append:
            by_id_rows = [r for r in rows if not r.is_blank(c.OBS_UNIT_ID)]
            hierarchy_rows = [r for r in rows if r.is_blank(c.OBS_UNIT_ID)]
            check_required(hierarchy_rows, [c.ENV, c.EXP_UNIT_ID], c.BLANK_FIELD_OBS_MSG, errors)
        else:
            by_id_rows = []
            hierarchy_rows = rows
            for row in rows:
                if not row.is_blank(c.OBS_UNIT_ID):
                    errors.add(row.row_index, c.OBS_UNIT_ID, c.OBS_UNIT_ID_ON_NEW_MSG, 409)

        # Environment identity is a file-level invariant
        if check_environment_identity(hierarchy_rows, errors):
            raise ValidatorError(errors)

        results = {row.row_index: RowResult(row_index=row.row_index) for row in rows}
        germplasm = await self._lookup_germplasm(rows, results)

        if by_id_rows:
            await self._resolve_by_obs_unit_id(by_id_rows, results)
        if hierarchy_rows:
            trial_state = await self._resolve_trial(title, hierarchy_rows)
            if trial_state is not None:
                if self.append:
                    await self._resolve_existing_hierarchy(trial_state, hierarchy_rows, results)
                else:
                    self._plan_new_hierarchy(trial_state, hierarchy_rows, results, germplasm)
                    await self._resolve_new_locations(hierarchy_rows, results)

        if self.append:
            self._check_unique_units(rows, results)
        await self._plan_observations(mapped, results, traits)

        ordered = [results[row.row_index] for row in rows]
        self.attach_errors(ordered)
        return ordered

    async def _lookup_traits(self, mapped: MappedFile) -> dict[str, ObservationVariable]:
        """Match trait columns to the program's observation variables.

        Raises:
            UnprocessableError: Listing every trait (or timestamp) column
                without a matching variable.
        """
        names = {column.strip() for column in mapped.trait_columns}
        found = await self._find_by(
            EntityKind.VARIABLE,
            "observation_variable_name",
            names,
            program_db_id=self.ctx.program_id,
        )
        missing = names - found.keys()
        for column in mapped.timestamp_columns:
            trait = column.strip()[len(c.TIMESTAMP_PREFIX):].strip()
            if trait not in names:
                missing.add(column.strip())
        if missing:
            raise UnprocessableError(c.MISSING_TRAITS_MSG % ", ".join(sorted(missing)))
        return {column: found[column.strip()] for column in mapped.trait_columns}

    async def _lookup_germplasm(self, rows: list[MappedRow], results: dict[int, RowResult]) -> dict[str, Germplasm]:
        gids = {row.get(c.GERMPLASM_GID) for row in rows if row.get(c.GERMPLASM_GID)}
        found = await self._find_by(
            EntityKind.GERMPLASM,
            "accession_number",
            gids,
            program_db_id=self.ctx.program_id,
        )
        for row in rows:
            gid = row.get(c.GERMPLASM_GID)
            if not gid:
                continue
            if gid in found:
                results[row.row_index].entities[GERMPLASM] = self.ctx.existing_state(found[gid], EntityKind.GERMPLASM)
            else:
                self.ctx.errors.add(row.row_index, c.GERMPLASM_GID, c.MISSING_GERMPLASM_GID_MSG, 404)
        return found

    async def _resolve_by_obs_unit_id(self, rows: list[MappedRow], results: dict[int, RowResult]) -> None:
        """Resolve rows straight from their ObsUnitID, skipping title and environment."""
        source = self.ctx.origin_source(EntityKind.OBSERVATION_UNIT)
        ids = sorted({row.get(c.OBS_UNIT_ID) for row in rows})
        units = {
            unit.reference_id(source): unit
            for unit in await self.client.find(
                EntityKind.OBSERVATION_UNIT,
                external_reference_id=ids,
                external_reference_source=source,
            )
        }
        trials = await self._find_by(EntityKind.TRIAL, "trial_db_id", {u.trial_db_id for u in units.values() if u.trial_db_id})
        studies = await self._find_by(EntityKind.STUDY, "study_db_id", {u.study_db_id for u in units.values() if u.study_db_id})
        locations = await self._find_by(
            EntityKind.LOCATION,
            "location_db_id",
            {s.location_db_id for s in studies.values() if s.location_db_id},
        )

        for row in rows:
            unit = units.get(row.get(c.OBS_UNIT_ID))
            if unit is None:
                self.ctx.errors.add(row.row_index, c.OBS_UNIT_ID, c.UNKNOWN_OBS_UNIT_ID_MSG, 404)
                continue
            entities = results[row.row_index].entities
            if unit.trial_db_id in trials:
                entities[TRIAL] = self.ctx.existing_state(trials[unit.trial_db_id], EntityKind.TRIAL)
            study = studies.get(unit.study_db_id)
            if study is not None:
                if study.location_db_id in locations:
                    entities[LOCATION] = self.ctx.existing_state(locations[study.location_db_id], EntityKind.LOCATION)
                entities[STUDY] = self.ctx.existing_state(study, EntityKind.STUDY)
            entities[UNIT] = self.ctx.existing_state(unit, EntityKind.OBSERVATION_UNIT)

    async def _resolve_trial(self, title: str | None, rows: list[MappedRow]) -> EntityState | None:
        if not title:
            return None
        existing = await self.client.find_one(EntityKind.TRIAL, trial_name=title, program_db_id=self.ctx.program_id)

        if self.append:
            if existing is None:
                for row in rows:
                    if not row.is_blank(c.EXP_TITLE):
                        self.ctx.errors.add(row.row_index, c.EXP_TITLE, c.EXPERIMENT_NOT_FOUND_MSG, 404)
                return None
            return self.ctx.existing_state(existing, EntityKind.TRIAL)

        if existing is not None:
            raise ConflictError(c.EXPERIMENT_TITLE_EXISTS_MSG)
        trial = Trial(
            trial_name=title,
            trial_description=_first(rows, c.EXP_DESCRIPTION),
            program_db_id=self.ctx.program_id,
            additional_info={
                "experimentType": _first(rows, c.EXP_TYPE),
                "defaultObservationLevel": _first(rows, c.EXP_UNIT),
                "createdBy": self.ctx.user_id,
            },
        )
        return self.ctx.new_state(trial, EntityKind.TRIAL)

    def _plan_new_hierarchy(
        self,
        trial_state: EntityState,
        rows: list[MappedRow],
        results: dict[int, RowResult],
        germplasm: dict[str, Germplasm],
    ) -> None:
        trial: Trial = trial_state.brapi_object
        for group in find_duplicate_keys(rows, _unit_key):
            for row in group:
                self.ctx.errors.add(
                    row.row_index,
                    c.EXP_UNIT_ID,
                    c.UNIT_ID_NOT_UNIQUE_MSG % (row.get(c.EXP_UNIT_ID), row.get(c.ENV)),
                    409,
                )

        studies: dict[str, EntityState] = {}
        for row in rows:
            env = row.get(c.ENV)
            if not env:
                continue
            entities = results[row.row_index].entities
            entities[TRIAL] = trial_state

            if env not in studies:
                study = Study(
                    study_name=env,
                    study_type=row.get(c.EXP_TYPE) or None,
                    trial_name=trial.trial_name,
                    location_name=row.get(c.ENV_LOCATION) or None,
                    program_db_id=self.ctx.program_id,
                    seasons=[row.get(c.ENV_YEAR)] if row.get(c.ENV_YEAR) else [],
                )
                studies[env] = self.ctx.new_state(study, EntityKind.STUDY)
            entities[STUDY] = studies[env]

            if row.is_blank(c.EXP_UNIT_ID):
                continue
            germ = germplasm.get(row.get(c.GERMPLASM_GID))
            unit = ObservationUnit(
                observation_unit_name=row.get(c.EXP_UNIT_ID),
                program_db_id=self.ctx.program_id,
                trial_name=trial.trial_name,
                study_name=env,
                location_name=row.get(c.ENV_LOCATION) or None,
                germplasm_db_id=germ.db_id if germ else None,
                germplasm_name=germ.germplasm_name if germ else row.get(c.GERMPLASM_NAME) or None,
                observation_unit_position=_position(row),
                treatments=[Treatment(factor=row.get(c.TREATMENT_FACTORS))] if row.get(c.TREATMENT_FACTORS) else [],
            )
            entities[UNIT] = self.ctx.new_state(unit, EntityKind.OBSERVATION_UNIT)

    async def _resolve_new_locations(self, rows: list[MappedRow], results: dict[int, RowResult]) -> None:
        names = {row.get(c.ENV_LOCATION) for row in rows if row.get(c.ENV_LOCATION)}
        found = await self._find_by(EntityKind.LOCATION, "location_name", names, program_db_id=self.ctx.program_id)
        states: dict[str, EntityState] = {}
        for name in sorted(names):
            if name in found:
                states[name] = self.ctx.existing_state(found[name], EntityKind.LOCATION)
            else:
                location = Location(location_name=name, program_db_id=self.ctx.program_id)
                states[name] = self.ctx.new_state(location, EntityKind.LOCATION)
        for row in rows:
            name = row.get(c.ENV_LOCATION)
            if name and STUDY in results[row.row_index].entities:
                results[row.row_index].entities[LOCATION] = states[name]

    async def _resolve_existing_hierarchy(
        self,
        trial_state: EntityState,
        rows: list[MappedRow],
        results: dict[int, RowResult],
    ) -> None:
        """Find the stored environments and units that append rows point at."""
        trial: Trial = trial_state.brapi_object
        envs = {row.get(c.ENV) for row in rows if row.get(c.ENV)}
        studies = await self._find_by(EntityKind.STUDY, "study_name", envs, trial_db_id=trial.db_id)
        locations = await self._find_by(
            EntityKind.LOCATION,
            "location_db_id",
            {s.location_db_id for s in studies.values() if s.location_db_id},
        )
        study_states = {env: self.ctx.existing_state(study, EntityKind.STUDY) for env, study in studies.items()}

        if self._check_stored_environments(rows, studies, locations):
            raise ValidatorError(self.ctx.errors)

        unit_names = {row.get(c.EXP_UNIT_ID) for row in rows if row.get(c.EXP_UNIT_ID)}
        units: dict[tuple[str, str], ObservationUnit] = {}
        if studies and unit_names:
            for unit in await self.client.find(
                EntityKind.OBSERVATION_UNIT,
                study_db_id=sorted(s.db_id for s in studies.values()),
                observation_unit_name=sorted(unit_names),
            ):
                units[(unit.study_db_id, unit.observation_unit_name)] = unit
        unit_states: dict[tuple[str, str], EntityState] = {}

        for row in rows:
            env = row.get(c.ENV)
            if not env:
                continue
            entities = results[row.row_index].entities
            entities[TRIAL] = trial_state
            study = studies.get(env)
            if study is None:
                self.ctx.errors.add(row.row_index, c.ENV, c.ENVIRONMENT_NOT_FOUND_MSG, 404)
                continue
            entities[STUDY] = study_states[env]
            if study.location_db_id in locations:
                entities[LOCATION] = self.ctx.existing_state(locations[study.location_db_id], EntityKind.LOCATION)

            key = (study.db_id, row.get(c.EXP_UNIT_ID))
            if key not in units:
                if row.get(c.EXP_UNIT_ID):
                    self.ctx.errors.add(row.row_index, c.EXP_UNIT_ID, c.OBS_UNIT_NOT_FOUND_MSG, 404)
                continue
            if key not in unit_states:
                unit_states[key] = self.ctx.existing_state(units[key], EntityKind.OBSERVATION_UNIT)
            entities[UNIT] = unit_states[key]

    def _check_stored_environments(
        self,
        rows: list[MappedRow],
        studies: dict[str, Study],
        locations: dict[str, Location],
    ) -> bool:
        """Rows must agree with the location and year already stored for their environment."""
        mismatch = False
        for row in rows:
            study = studies.get(row.get(c.ENV))
            if study is None:
                continue
            location = locations.get(study.location_db_id)
            stored_location = location.location_name if location else study.location_name
            if row.get(c.ENV_LOCATION) and stored_location and row.get(c.ENV_LOCATION) != stored_location:
                self.ctx.errors.add(row.row_index, c.ENV_LOCATION, c.ENV_LOCATION_MISMATCH_MSG, 409)
                mismatch = True
            if row.get(c.ENV_YEAR) and study.seasons and row.get(c.ENV_YEAR) not in study.seasons:
                self.ctx.errors.add(row.row_index, c.ENV_YEAR, c.ENV_YEAR_MISMATCH_MSG, 409)
                mismatch = True
        return mismatch

    def _check_unique_units(self, rows: list[MappedRow], results: dict[int, RowResult]) -> None:
        """Each stored unit may be referenced by one row, by ObsUnitID or by environment."""

        def resolved_unit(row: MappedRow) -> str | None:
            state = results[row.row_index].entities.get(UNIT)
            return state.brapi_object.db_id if state is not None else None

        for group in find_duplicate_keys(rows, resolved_unit):
            entities = results[group[0].row_index].entities
            unit: ObservationUnit = entities[UNIT].brapi_object
            study = entities.get(STUDY)
            env = study.brapi_object.study_name if study is not None else unit.study_name
            message = c.UNIT_ID_NOT_UNIQUE_MSG % (unit.observation_unit_name, env or "")
            for row in group:
                column = c.EXP_UNIT_ID if row.is_blank(c.OBS_UNIT_ID) else c.OBS_UNIT_ID
                self.ctx.errors.add(row.row_index, column, message, 409)

    async def _plan_observations(
        self,
        mapped: MappedFile,
        results: dict[int, RowResult],
        traits: dict[str, ObservationVariable],
    ) -> None:
        if not traits:
            return
        existing_units = {
            state.brapi_object.db_id
            for result in results.values()
            if (state := result.entities.get(UNIT)) is not None and not state.is_new
        }
        existing: dict[ObservationKey, Observation] = {}
        if existing_units:
            for observation in await self.client.find(
                EntityKind.OBSERVATION,
                observation_unit_db_id=sorted(existing_units),
                observation_variable_db_id=sorted(v.db_id for v in traits.values()),
            ):
                existing[observation_key(observation)] = observation

        for row in mapped.rows:
            result = results[row.row_index]
            unit_state = result.entities.get(UNIT)
            if unit_state is None:
                continue
            result.observations = plan_observations(
                self.ctx, row, unit_state, traits, mapped.timestamp_columns, existing
            )

    async def commit(self, results: list[RowResult]) -> None:
        await self._create(EntityKind.LOCATION, unique_new(results, LOCATION))
        await self._create(EntityKind.TRIAL, unique_new(results, TRIAL))

        for result in results:
            study = result.entities.get(STUDY)
            if study is not None and study.is_new:
                study.brapi_object.trial_db_id = _db_id(result, TRIAL)
                study.brapi_object.location_db_id = _db_id(result, LOCATION)
        await self._create(EntityKind.STUDY, unique_new(results, STUDY))

        for result in results:
            unit = result.entities.get(UNIT)
            if unit is not None and unit.is_new:
                unit.brapi_object.trial_db_id = _db_id(result, TRIAL)
                unit.brapi_object.study_db_id = _db_id(result, STUDY)
                unit.brapi_object.location_db_id = _db_id(result, LOCATION)
        await self._create(EntityKind.OBSERVATION_UNIT, unique_new(results, UNIT))

        created, updated = [], []
        for result in results:
            for observation in result.observations:
                if observation.action == ObservationAction.CREATE:
                    unit = result.entities[UNIT].brapi_object
                    observation.brapi_object.observation_unit_db_id = unit.db_id
                    observation.brapi_object.study_db_id = unit.study_db_id
                    created.append(observation.brapi_object)
                elif observation.action == ObservationAction.OVERWRITE:
                    updated.append(observation.brapi_object)
        await self._create(EntityKind.OBSERVATION, created)
        await self._update(EntityKind.OBSERVATION, updated)

    def statistics(self, results: list[RowResult]) -> dict[str, dict[str, int]]:
        observations = [obs for result in results for obs in result.observations]
        gids = {
            state.brapi_object.db_id
            for result in results
            if (state := result.entities.get(GERMPLASM)) is not None
        }
        return {
            "Environments": statistic(count_new(results, STUDY)),
            "Observation Units": statistic(count_new(results, UNIT)),
            "GIDs": statistic(len(gids)),
            "Observations": statistic(_count_action(observations, ObservationAction.CREATE)),
            "Mutated Observations": statistic(_count_action(observations, ObservationAction.OVERWRITE)),
        }


def _unit_key(row: MappedRow) -> tuple[str, str] | None:
    if row.is_blank(c.ENV) or row.is_blank(c.EXP_UNIT_ID):
        return None
    return (row.get(c.ENV), row.get(c.EXP_UNIT_ID))


def _first(rows: Iterable[MappedRow], column: str) -> str | None:
    return next((row.get(column) for row in rows if row.get(column)), None)


def _db_id(result: RowResult, entity: str) -> str | None:
    state = result.entities.get(entity)
    return state.brapi_object.db_id if state is not None else None


def _count_action(observations: list[EntityState], action: ObservationAction) -> int:
    return sum(1 for obs in observations if obs.action == action)


def _position(row: MappedRow) -> ObservationUnitPosition:
    entry_type = c.TEST_CHECK_VALUES.get(row.get(c.TEST_CHECK).upper())
    relationships = [
        ObservationLevel(level_name=name, level_code=row.get(column))
        for name, column in (("rep", c.REP_NUM), ("block", c.BLOCK_NUM))
        if row.get(column)
    ]
    return ObservationUnitPosition(
        entry_type=entry_type.upper() if entry_type else None,
        observation_level=ObservationLevel(
            level_name=(row.get(c.EXP_UNIT) or "plot").lower(),
            level_code=row.get(c.EXP_UNIT_ID),
        ),
        observation_level_relationships=relationships,
        position_coordinate_x=row.get(c.ROW) or None,
        position_coordinate_y=row.get(c.COLUMN) or None,
    )
