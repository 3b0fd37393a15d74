"""Base class for the per-workflow entity resolvers."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from brapi_importer.services.brapi.models import BrAPIEntity, EntityKind

from ..mapping import MappedFile
from ..results import ImportContext, RowResult, apply_created
from ..workflows import WorkflowMapping

logger = logging.getLogger(__name__)


class WorkflowResolver(ABC):
    """Resolves every row of a file against the BrAPI store and commits the plan.

    ``resolve`` must never write. ``commit`` only writes what ``resolve``
    planned, so a preview and a commit of the same file tag every entity
    the same way.
    """

    def __init__(self, ctx: ImportContext, mapping: WorkflowMapping) -> None:
        self.ctx = ctx
        self.mapping = mapping
        self.client = ctx.client

    @abstractmethod
    async def resolve(self, mapped: MappedFile) -> list[RowResult]:
        """Tag each row's entities NEW or EXISTING.

        Row-scoped problems go to ``ctx.errors``; file-scoped problems raise.
        """
        ...

    @abstractmethod
    async def commit(self, results: list[RowResult]) -> None:
        """Write planned entities to the BrAPI store in dependency order."""
        ...

    @abstractmethod
    def statistics(self, results: list[RowResult]) -> dict[str, dict[str, int]]:
        ...

    async def _create(self, kind: EntityKind, pending: list[BrAPIEntity]) -> None:
        """Create planned entities and copy the assigned ids back onto them."""
        if not pending:
            return
        created = await self.client.create(kind, pending)
        apply_created(self.ctx.origin_source(kind), pending, created)
        logger.info("Import %s created %d %s", self.ctx.job_id, len(created), kind.value)

    async def _update(self, kind: EntityKind, entities: list[BrAPIEntity]) -> None:
        if not entities:
            return
        await self.client.update(kind, entities)
        logger.info("Import %s updated %d %s", self.ctx.job_id, len(entities), kind.value)

    async def _find_by(self, kind: EntityKind, field: str, values: set[str], **criteria: Any) -> dict[str, BrAPIEntity]:
        """Look entities up by a field, returning a field value -> entity map."""
        if not values:
            return {}
        found = await self.client.find(kind, **{field: sorted(values)}, **criteria)
        return {getattr(entity, field): entity for entity in found}

    def attach_errors(self, results: list[RowResult]) -> None:
        for result in results:
            result.field_errors = self.ctx.errors.for_row(result.row_index)


def unique_new(results: list[RowResult], entity: str) -> list[BrAPIEntity]:
    """Distinct NEW entities of one type across rows, in first-seen order."""
    seen: dict[int, BrAPIEntity] = {}
    for result in results:
        state = result.entities.get(entity)
        if state is not None and state.is_new:
            seen.setdefault(id(state.brapi_object), state.brapi_object)
    return list(seen.values())


def count_new(results: list[RowResult], entity: str) -> int:
    return len(unique_new(results, entity))
