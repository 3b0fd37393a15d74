"""Tests for the BrAPI store clients."""

import json

import httpx
import pytest

from brapi_importer.config import BrAPIConfig, ImporterConfig, SecretsConfig, Settings
from brapi_importer.services.brapi import BrAPIStoreError, HttpBrAPIClient, InMemoryBrAPIClient, get_brapi_client
from brapi_importer.services.brapi.models import EntityKind, ExternalReference, Germplasm, Observation

BASE_URL = "http://brapi.test/brapi/v2"


def _germplasm(db_id: str, name: str, accession: str) -> dict:
    return {"germplasmDbId": db_id, "germplasmName": name, "accessionNumber": accession, "programDbId": "p1"}


def _page(data: list[dict], page: int = 0, total_pages: int = 1) -> dict:
    return {
        "metadata": {"pagination": {"currentPage": page, "totalPages": total_pages}},
        "result": {"data": data},
    }


@pytest.fixture
def http_settings() -> Settings:
    return Settings(
        config=ImporterConfig(brapi=BrAPIConfig(backend="http", base_url=BASE_URL + "/", page_size=2)),
        secrets=SecretsConfig(brapi_token="store-token"),
    )


def _client(settings: Settings, handler) -> HttpBrAPIClient:
    return HttpBrAPIClient(settings, transport=httpx.MockTransport(handler))


class TestInMemoryClient:
    @pytest.mark.asyncio
    async def test_find_by_field_and_membership(self, brapi_store: InMemoryBrAPIClient) -> None:
        brapi_store.seed(
            EntityKind.GERMPLASM,
            Germplasm(germplasm_name="A", program_db_id="p1"),
            Germplasm(germplasm_name="B", program_db_id="p1"),
            Germplasm(germplasm_name="C", program_db_id="p2"),
        )

        found = await brapi_store.find(EntityKind.GERMPLASM, germplasm_name=["A", "C"], program_db_id="p1")
        assert [g.germplasm_name for g in found] == ["A"]

    @pytest.mark.asyncio
    async def test_find_by_external_reference(self, brapi_store: InMemoryBrAPIClient) -> None:
        brapi_store.seed(
            EntityKind.GERMPLASM,
            Germplasm(
                germplasm_name="A",
                external_references=[ExternalReference(reference_source="src/germplasm", reference_id="r1")],
            ),
            Germplasm(
                germplasm_name="B",
                external_references=[ExternalReference(reference_source="other", reference_id="r1")],
            ),
        )

        found = await brapi_store.find(
            EntityKind.GERMPLASM, external_reference_id=["r1"], external_reference_source="src/germplasm"
        )
        assert [g.germplasm_name for g in found] == ["A"]

    @pytest.mark.asyncio
    async def test_create_assigns_ids_and_accessions(self, brapi_store: InMemoryBrAPIClient) -> None:
        (created,) = await brapi_store.create(EntityKind.GERMPLASM, [Germplasm(germplasm_name="A")])
        assert created.db_id
        assert created.accession_number == "1"
        assert brapi_store.write_log == [("create", EntityKind.GERMPLASM, created.db_id)]

    @pytest.mark.asyncio
    async def test_returned_entities_are_copies(self, brapi_store: InMemoryBrAPIClient) -> None:
        (stored,) = brapi_store.seed(EntityKind.OBSERVATION, Observation(value="1"))
        (found,) = await brapi_store.find(EntityKind.OBSERVATION)
        found.value = "2"

        (again,) = await brapi_store.find(EntityKind.OBSERVATION, observation_db_id=stored.db_id)
        assert again.value == "1"

    @pytest.mark.asyncio
    async def test_update_unknown_entity(self, brapi_store: InMemoryBrAPIClient) -> None:
        with pytest.raises(BrAPIStoreError):
            await brapi_store.update(EntityKind.OBSERVATION, [Observation(observation_db_id="missing")])

    def test_factory_defaults_to_memory(self, test_settings: Settings) -> None:
        assert isinstance(get_brapi_client(test_settings), InMemoryBrAPIClient)


class TestHttpClient:
    @pytest.mark.asyncio
    async def test_find_follows_pagination(self, http_settings: Settings) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            page = int(request.url.params["page"])
            data = [_germplasm("g1", "A", "1")] if page == 0 else [_germplasm("g2", "B", "2")]
            return httpx.Response(200, json=_page(data, page, total_pages=2))

        client = _client(http_settings, handler)
        found = await client.find(EntityKind.GERMPLASM, program_db_id="p1")
        await client.close()

        assert [g.germplasm_name for g in found] == ["A", "B"]
        assert [r.url.params["page"] for r in requests] == ["0", "1"]
        first = requests[0]
        assert first.url.path == "/brapi/v2/germplasm"
        assert first.url.params["programDbId"] == "p1"
        assert first.url.params["pageSize"] == "2"
        assert first.headers["Authorization"] == "Bearer store-token"

    @pytest.mark.asyncio
    async def test_collection_criteria_rechecked_locally(self, http_settings: Settings) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            # Server ignores the filter and returns everything
            seen.append(request.url.params["accessionNumber"])
            return httpx.Response(
                200, json=_page([_germplasm("g1", "A", "1"), _germplasm("g2", "B", "2"), _germplasm("g3", "C", "3")])
            )

        client = _client(http_settings, handler)
        found = await client.find(EntityKind.GERMPLASM, accession_number=["1", "3"])
        await client.close()

        assert seen == ["1", "3"]
        assert sorted(g.accession_number for g in found) == ["1", "3"]

    @pytest.mark.asyncio
    async def test_create_posts_camel_case(self, http_settings: Settings) -> None:
        bodies: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_page([_germplasm("g9", "New", "77")]))

        client = _client(http_settings, handler)
        (created,) = await client.create(EntityKind.GERMPLASM, [Germplasm(germplasm_name="New")])
        await client.close()

        assert bodies == [[{"germplasmName": "New", "externalReferences": [], "additionalInfo": {}, "synonyms": []}]]
        assert (created.db_id, created.accession_number) == ("g9", "77")

    @pytest.mark.asyncio
    async def test_update_puts_each_entity(self, http_settings: Settings) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(f"{request.method} {request.url.path}")
            body = json.loads(request.content)
            return httpx.Response(200, json={"result": body})

        client = _client(http_settings, handler)
        updated = await client.update(
            EntityKind.OBSERVATION,
            [Observation(observation_db_id="o1", value="4"), Observation(observation_db_id="o2", value="5")],
        )
        await client.close()

        assert paths == ["PUT /brapi/v2/observations/o1", "PUT /brapi/v2/observations/o2"]
        assert [o.value for o in updated] == ["4", "5"]

    @pytest.mark.asyncio
    async def test_error_status_raises_store_error(self, http_settings: Settings) -> None:
        client = _client(http_settings, lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(BrAPIStoreError, match="returned 500"):
            await client.find(EntityKind.TRIAL, trial_name="Test Exp")
        await client.close()

    @pytest.mark.asyncio
    async def test_unreachable_store(self, http_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(http_settings, handler)
        with pytest.raises(BrAPIStoreError, match="unreachable"):
            await client.find(EntityKind.TRIAL)
        await client.close()

    def test_factory_selects_http(self, http_settings: Settings) -> None:
        assert isinstance(get_brapi_client(http_settings), HttpBrAPIClient)
