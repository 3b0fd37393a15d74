"""In-memory BrAPI store for development and tests."""

import itertools
import logging
import uuid
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from .base import BrAPIClient, BrAPIStoreError, E, matches
from .models import BrAPIEntity, EntityKind, Germplasm

if TYPE_CHECKING:
    from brapi_importer.config import Settings

logger = logging.getLogger(__name__)


class InMemoryBrAPIClient(BrAPIClient):
    """BrAPI client backed by process-local dictionaries.

    Entities are copied on the way in and out so callers can never mutate
    stored state without going through ``update``.
    """

    def __init__(self, settings: "Settings") -> None:
        super().__init__(settings)
        self._store: dict[EntityKind, dict[str, BrAPIEntity]] = {kind: {} for kind in EntityKind}
        self._accession_counter = itertools.count(1)
        self.write_log: list[tuple[str, EntityKind, str]] = []

    async def find(self, kind: EntityKind, **criteria: Any) -> list[BrAPIEntity]:
        return [
            entity.model_copy(deep=True)
            for entity in self._store[kind].values()
            if matches(entity, criteria)
        ]

    async def create(self, kind: EntityKind, entities: Iterable[E]) -> list[E]:
        created = []
        for entity in entities:
            stored = entity.model_copy(deep=True)
            if stored.db_id is None:
                stored.db_id = uuid.uuid4().hex
            elif stored.db_id in self._store[kind]:
                raise BrAPIStoreError(f"{kind.value} {stored.db_id} already exists")
            if isinstance(stored, Germplasm) and not stored.accession_number:
                stored.accession_number = self._next_accession()
            self._store[kind][stored.db_id] = stored
            self.write_log.append(("create", kind, stored.db_id))
            created.append(stored.model_copy(deep=True))
        logger.debug("Created %d %s", len(created), kind.value)
        return created

    async def update(self, kind: EntityKind, entities: Iterable[E]) -> list[E]:
        updated = []
        for entity in entities:
            if entity.db_id not in self._store[kind]:
                raise BrAPIStoreError(f"{kind.value} {entity.db_id} does not exist")
            stored = entity.model_copy(deep=True)
            self._store[kind][stored.db_id] = stored
            self.write_log.append(("update", kind, stored.db_id))
            updated.append(stored.model_copy(deep=True))
        logger.debug("Updated %d %s", len(updated), kind.value)
        return updated

    def seed(self, kind: EntityKind, *entities: BrAPIEntity) -> list[BrAPIEntity]:
        """Insert entities directly, bypassing the write log."""
        seeded = []
        for entity in entities:
            stored = entity.model_copy(deep=True)
            if stored.db_id is None:
                stored.db_id = uuid.uuid4().hex
            if isinstance(stored, Germplasm) and not stored.accession_number:
                stored.accession_number = self._next_accession()
            self._store[kind][stored.db_id] = stored
            seeded.append(stored.model_copy(deep=True))
        return seeded

    def _next_accession(self) -> str:
        taken = {g.accession_number for g in self._store[EntityKind.GERMPLASM].values()}
        while True:
            candidate = str(next(self._accession_counter))
            if candidate not in taken:
                return candidate

    def count(self, kind: EntityKind) -> int:
        return len(self._store[kind])


_shared_client: InMemoryBrAPIClient | None = None


def shared_memory_client(settings: "Settings") -> InMemoryBrAPIClient:
    """Return the process-wide in-memory store, creating it on first use."""
    global _shared_client
    if _shared_client is None:
        logger.info("Using in-memory BrAPI store")
        _shared_client = InMemoryBrAPIClient(settings)
    return _shared_client


def reset_shared_memory_client() -> None:
    global _shared_client
    _shared_client = None
