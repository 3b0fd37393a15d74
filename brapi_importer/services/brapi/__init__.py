"""BrAPI store client module."""

from brapi_importer.services.brapi.base import (
    BrAPIClient,
    BrAPIStoreError,
    get_brapi_client,
)
from brapi_importer.services.brapi.http import HttpBrAPIClient
from brapi_importer.services.brapi.memory import InMemoryBrAPIClient
from brapi_importer.services.brapi.models import EntityKind, ExternalReference

__all__ = [
    "BrAPIClient",
    "BrAPIStoreError",
    "EntityKind",
    "ExternalReference",
    "HttpBrAPIClient",
    "InMemoryBrAPIClient",
    "get_brapi_client",
]
