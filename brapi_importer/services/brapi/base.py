"""Base BrAPI store client and factory."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, TypeVar

from .models import BrAPIEntity, EntityKind

if TYPE_CHECKING:
    from brapi_importer.config import Settings

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BrAPIEntity)

# Criteria keys that match against external references rather than fields
REFERENCE_ID = "external_reference_id"
REFERENCE_SOURCE = "external_reference_source"


class BrAPIStoreError(Exception):
    """The BrAPI store rejected or failed a request."""


def matches(entity: BrAPIEntity, criteria: dict[str, Any]) -> bool:
    """Check an entity against find criteria.

    Scalar values match by equality, collections by membership. The reference
    keys match when a single external reference satisfies both of them.
    """
    ref_id = criteria.get(REFERENCE_ID)
    ref_source = criteria.get(REFERENCE_SOURCE)
    if ref_id is not None or ref_source is not None:
        ids = _as_set(ref_id)
        if not any(
            (ids is None or ref.reference_id in ids)
            and (ref_source is None or ref.reference_source == ref_source)
            for ref in entity.external_references
        ):
            return False

    for key, expected in criteria.items():
        if key in (REFERENCE_ID, REFERENCE_SOURCE) or expected is None:
            continue
        actual = getattr(entity, key, None)
        allowed = _as_set(expected)
        if isinstance(actual, list):
            if not allowed.intersection(actual):
                return False
        elif actual not in allowed:
            return False
    return True


def _as_set(value: Any) -> set | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple, set, frozenset)):
        return set(value)
    return {value}


class BrAPIClient(ABC):
    """Abstract client for the BrAPI store.

    Implementations provide find/create/update per entity kind; entities are
    the pydantic models from ``brapi_importer.services.brapi.models``.
    """

    def __init__(self, settings: "Settings") -> None:
        self.settings = settings
        self.reference_source = settings.reference_source

    @abstractmethod
    async def find(self, kind: EntityKind, **criteria: Any) -> list[BrAPIEntity]:
        """Return all entities of ``kind`` matching every criterion."""
        ...

    @abstractmethod
    async def create(self, kind: EntityKind, entities: Iterable[E]) -> list[E]:
        """Create entities and return them with store-assigned db ids."""
        ...

    @abstractmethod
    async def update(self, kind: EntityKind, entities: Iterable[E]) -> list[E]:
        """Replace stored entities (matched by db id) and return them."""
        ...

    async def find_one(self, kind: EntityKind, **criteria: Any) -> BrAPIEntity | None:
        found = await self.find(kind, **criteria)
        return found[0] if found else None

    async def close(self) -> None:
        """Release any held connections."""
        return None


def get_brapi_client(settings: "Settings | None" = None) -> BrAPIClient:
    """Get the configured BrAPI client instance.

    Returns:
        BrAPIClient for the backend named in settings.
    """
    if settings is None:
        from brapi_importer.config import get_settings

        settings = get_settings()

    if settings.brapi_backend == "http":
        from brapi_importer.services.brapi.http import HttpBrAPIClient

        return HttpBrAPIClient(settings)

    from brapi_importer.services.brapi.memory import shared_memory_client

    return shared_memory_client(settings)
