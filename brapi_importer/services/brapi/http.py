"""BrAPI v2 client over HTTP using httpx."""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import httpx
from pydantic.alias_generators import to_camel

from .base import REFERENCE_ID, REFERENCE_SOURCE, BrAPIClient, BrAPIStoreError, E, matches
from .models import ENTITY_MODELS, BrAPIEntity, EntityKind

if TYPE_CHECKING:
    from brapi_importer.config import Settings

logger = logging.getLogger(__name__)

# Query parameter names for the reference criteria
_REFERENCE_PARAMS = {
    REFERENCE_ID: "externalReferenceId",
    REFERENCE_SOURCE: "externalReferenceSource",
}


class HttpBrAPIClient(BrAPIClient):
    """Talks to a remote BrAPI v2 server.

    Collection criteria are sent as one GET per value; results are re-checked
    locally because servers ignore filters they do not support.
    """

    def __init__(self, settings: "Settings", transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__(settings)
        headers = {"Accept": "application/json"}
        if settings.brapi_token:
            headers["Authorization"] = f"Bearer {settings.brapi_token}"
        self.page_size = settings.brapi_page_size
        self._http_client = httpx.AsyncClient(
            base_url=settings.brapi_base_url.rstrip("/"),
            headers=headers,
            timeout=settings.brapi_timeout_seconds,
            transport=transport,
        )

    async def find(self, kind: EntityKind, **criteria: Any) -> list[BrAPIEntity]:
        model = ENTITY_MODELS[kind]
        multi = {k: v for k, v in criteria.items() if isinstance(v, (list, tuple, set, frozenset))}
        single = {k: v for k, v in criteria.items() if k not in multi and v is not None}

        # Expand one collection criterion into separate requests
        param_sets: list[dict[str, Any]] = [single]
        if multi:
            key, values = next(iter(multi.items()))
            if not values:
                return []
            param_sets = [{**single, key: value} for value in values]

        found: dict[str, BrAPIEntity] = {}
        for params in param_sets:
            for data in await self._get_all(kind, self._query_params(params)):
                entity = model.model_validate(data)
                if matches(entity, criteria) and entity.db_id not in found:
                    found[entity.db_id] = entity
        return list(found.values())

    async def create(self, kind: EntityKind, entities: Iterable[E]) -> list[E]:
        payload = [entity.to_brapi() for entity in entities]
        if not payload:
            return []
        body = await self._request("POST", f"/{kind.value}", json=payload)
        model = ENTITY_MODELS[kind]
        created = [model.model_validate(data) for data in body["result"]["data"]]
        logger.info("Created %d %s in BrAPI store", len(created), kind.value)
        return created

    async def update(self, kind: EntityKind, entities: Iterable[E]) -> list[E]:
        model = ENTITY_MODELS[kind]
        updated = []
        for entity in entities:
            body = await self._request("PUT", f"/{kind.value}/{entity.db_id}", json=entity.to_brapi())
            updated.append(model.model_validate(body["result"]))
        logger.info("Updated %d %s in BrAPI store", len(updated), kind.value)
        return updated

    async def close(self) -> None:
        await self._http_client.aclose()

    def _query_params(self, criteria: dict[str, Any]) -> dict[str, Any]:
        return {_REFERENCE_PARAMS.get(key, to_camel(key)): value for key, value in criteria.items()}

    async def _get_all(self, kind: EntityKind, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow BrAPI pagination until every page has been read."""
        results: list[dict[str, Any]] = []
        page = 0
        while True:
            body = await self._request(
                "GET",
                f"/{kind.value}",
                params={**params, "page": page, "pageSize": self.page_size},
            )
            results.extend(body.get("result", {}).get("data", []))
            pagination = body.get("metadata", {}).get("pagination", {})
            total_pages = pagination.get("totalPages", 1) or 1
            page += 1
            if page >= total_pages:
                return results

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http_client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "BrAPI %s %s failed with %d: %s",
                method,
                url,
                e.response.status_code,
                e.response.text[:500],
            )
            raise BrAPIStoreError(
                f"BrAPI store returned {e.response.status_code} for {method} {url}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("BrAPI %s %s failed: %s", method, url, e)
            raise BrAPIStoreError(f"BrAPI store unreachable: {e}") from e
        return response.json()
