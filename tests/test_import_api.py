"""Tests for the import HTTP API: upload, polling, preview and commit."""

import json

import pytest
from beanie import PydanticObjectId
from httpx import ASGITransport, AsyncClient

from brapi_importer.models import ImportJob, JobStatus
from brapi_importer.models.import_job import ORPHANED_JOB_MSG
from brapi_importer.services.brapi.models import EntityKind

from tests.conftest import PROGRAM_ID, USER_ID, get_test_app

BASE = f"/api/programs/{PROGRAM_ID}/import"
UPLOAD_URL = f"{BASE}/mappings/germplasm/workflows/germplasm/data"

GERMPLASM_CSV = "Germplasm Name,Entry No,Female Parent Entry No,Male Parent Entry No\nAlpha,1,,\nBeta,2,,\nCross,3,1,2\n"
LIST_FIELDS = {"List Name": "Spring crosses"}


async def _upload(
    client: AsyncClient,
    content: str = GERMPLASM_CSV,
    url: str = UPLOAD_URL,
    filename: str = "germplasm.csv",
    content_type: str = "text/csv",
    user_fields: dict | None = None,
):
    data = {"userFields": json.dumps(LIST_FIELDS if user_fields is None else user_fields)}
    files = {"file": (filename, content.encode("utf-8"), content_type)}
    return await client.post(url, files=files, data=data)


async def _upload_id(client: AsyncClient, **kwargs) -> str:
    response = await _upload(client, **kwargs)
    assert response.status_code == 202, response.text
    return response.json()["importId"]


@pytest.mark.asyncio
async def test_list_mappings(client: AsyncClient) -> None:
    response = await client.get(f"{BASE}/mappings")
    assert response.status_code == 200

    mappings = {m["workflowId"]: m for m in response.json()}
    assert set(mappings) == {"germplasm", "new-experiment", "append-overwrite", "sample-submission"}
    germplasm = mappings["germplasm"]
    assert germplasm["mappingId"] == "germplasm"
    assert germplasm["entityRules"] == ["germplasm", "lists"]
    assert [(u["name"], u["required"]) for u in germplasm["userInputs"]] == [
        ("List Name", True),
        ("List Description", False),
    ]
    assert mappings["new-experiment"]["dynamicColumns"] is True


@pytest.mark.asyncio
async def test_requires_authentication() -> None:
    async with AsyncClient(transport=ASGITransport(app=get_test_app()), base_url="http://test") as anonymous:
        response = await anonymous.get(f"{BASE}/mappings")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_upload_runs_preview(client: AsyncClient, shared_store) -> None:
    import_id = await _upload_id(client)

    response = await client.get(f"{BASE}/data/{import_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["importId"] == import_id
    assert body["workflowId"] == "germplasm"
    assert body["status"] == "succeeded"
    assert body["stage"] == "done"
    assert body["progress"] == {
        "statuscode": 200,
        "message": "Preview complete",
        "rowErrors": [],
        "total": 3,
        "finished": 3,
    }
    rows = body["preview"]["rows"]
    assert [row["germplasm"]["state"] for row in rows] == ["NEW", "NEW", "NEW"]
    assert rows[2]["germplasm"]["brAPIObject"]["pedigree"] == "Alpha/Beta"
    assert body["preview"]["statistics"]["Germplasm"] == {"newObjectCount": 3}
    assert shared_store.write_log == []


@pytest.mark.asyncio
async def test_progress_counts_mapped_rows(client: AsyncClient) -> None:
    content = "Germplasm Name,Entry No,Notes\nAlpha,1,\nBeta,2,\n,,stray note\n"
    import_id = await _upload_id(client, content=content, user_fields=LIST_FIELDS)

    body = (await client.get(f"{BASE}/data/{import_id}")).json()
    assert body["status"] == "succeeded"
    assert len(body["preview"]["rows"]) == 2
    assert (body["progress"]["total"], body["progress"]["finished"]) == (2, 2)


@pytest.mark.asyncio
async def test_commit_writes_to_store(client: AsyncClient, shared_store) -> None:
    import_id = await _upload_id(client)

    response = await client.put(f"{BASE}/data/{import_id}/commit")
    assert response.status_code == 202

    body = (await client.get(f"{BASE}/data/{import_id}")).json()
    assert body["status"] == "succeeded"
    assert body["progress"]["message"] == "Import committed"
    assert shared_store.count(EntityKind.GERMPLASM) == 3
    assert shared_store.count(EntityKind.LIST) == 1

    job = await ImportJob.get(PydanticObjectId(import_id))
    assert job.commit is True
    assert job.created_by == USER_ID


@pytest.mark.asyncio
async def test_commit_with_user_input_override(client: AsyncClient, shared_store) -> None:
    import_id = await _upload_id(client)

    response = await client.put(
        f"{BASE}/data/{import_id}/commit",
        json={"userInput": {"List Name": "Renamed list"}},
    )
    assert response.status_code == 202

    stored = await shared_store.find_one(EntityKind.LIST)
    assert stored.list_name == "Renamed list"


@pytest.mark.asyncio
async def test_row_errors_reported(client: AsyncClient, shared_store) -> None:
    content = "Germplasm Name,Entry No,Male Parent Entry No\nAlpha,1,\nBeta,2,1\n"
    import_id = await _upload_id(client, content=content)

    body = (await client.get(f"{BASE}/data/{import_id}")).json()
    assert body["status"] == "failed"
    progress = body["progress"]
    assert progress["statuscode"] == 422
    assert progress["message"] == "Multiple Errors"
    assert progress["finished"] == 1
    assert progress["rowErrors"] == [
        {
            "rowIndex": 1,
            "errors": [
                {
                    "field": "Male Parent Entry No",
                    "errorMessage": (
                        "Female parent is missing.  If the female parent is unknown, "
                        "specify GID or entry number 0 as the female parent"
                    ),
                    "httpStatusCode": 422,
                }
            ],
        }
    ]
    assert body["preview"]["rows"][1]["errors"][0]["field"] == "Male Parent Entry No"

    # Commit is refused the same way and writes nothing
    await client.put(f"{BASE}/data/{import_id}/commit")
    assert (await client.get(f"{BASE}/data/{import_id}")).json()["progress"]["statuscode"] == 422
    assert shared_store.write_log == []


@pytest.mark.asyncio
async def test_file_level_failure(client: AsyncClient) -> None:
    import_id = await _upload_id(client, content="Name,Entry No\nAlpha,1\n")

    body = (await client.get(f"{BASE}/data/{import_id}")).json()
    assert body["status"] == "failed"
    assert body["stage"] == "failed"
    assert body["progress"]["statuscode"] == 422
    assert body["progress"]["message"] == 'Column name "Germplasm Name" does not exist in file'
    assert body["preview"] is None


@pytest.mark.asyncio
async def test_missing_user_input(client: AsyncClient) -> None:
    import_id = await _upload_id(client, user_fields={})
    body = (await client.get(f"{BASE}/data/{import_id}")).json()
    assert body["progress"]["message"] == 'User input, "List Name" is required'


@pytest.mark.asyncio
async def test_running_job_is_locked(client: AsyncClient) -> None:
    import_id = await _upload_id(client)
    job = await ImportJob.get(PydanticObjectId(import_id))
    job.status = JobStatus.PROCESSING
    await job.save()

    response = await client.put(f"{BASE}/data/{import_id}/commit")
    assert response.status_code == 423
    assert response.json()["detail"] == "Another action is currently being performed on this import."

    polled = await client.get(f"{BASE}/data/{import_id}")
    assert polled.status_code == 202


@pytest.mark.asyncio
async def test_interrupted_job_is_failed_and_can_rerun(client: AsyncClient, shared_store) -> None:
    interrupted = await _upload_id(client, filename="interrupted.csv")
    finished = await _upload_id(client, filename="finished.csv")
    job = await ImportJob.get(PydanticObjectId(interrupted))
    job.status = JobStatus.PROCESSING
    await job.save()

    assert await ImportJob.fail_orphaned() == 1

    body = (await client.get(f"{BASE}/data/{interrupted}")).json()
    assert body["status"] == "failed"
    assert body["progress"]["statuscode"] == 500
    assert body["progress"]["message"] == ORPHANED_JOB_MSG
    assert (await client.get(f"{BASE}/data/{finished}")).json()["status"] == "succeeded"

    response = await client.put(f"{BASE}/data/{interrupted}/commit")
    assert response.status_code == 202
    assert (await client.get(f"{BASE}/data/{interrupted}")).json()["status"] == "succeeded"
    assert shared_store.count(EntityKind.GERMPLASM) == 3


@pytest.mark.asyncio
async def test_list_uploads(client: AsyncClient) -> None:
    first = await _upload_id(client, filename="first.csv")
    second = await _upload_id(client, filename="second.csv")

    response = await client.get(f"{BASE}/data")
    assert response.status_code == 200
    uploads = {u["importId"]: u for u in response.json()}
    assert set(uploads) == {first, second}
    assert uploads[second]["filename"] == "second.csv"
    assert uploads[second]["rowCount"] == 3
    assert uploads[second]["userFields"] == LIST_FIELDS


class TestUploadRejections:
    @pytest.mark.asyncio
    async def test_unknown_import(self, client: AsyncClient) -> None:
        for import_id in ("not-an-id", str(PydanticObjectId())):
            response = await client.get(f"{BASE}/data/{import_id}")
            assert response.status_code == 404
            assert response.json()["detail"] == "Upload with that id does not exist"

    @pytest.mark.asyncio
    async def test_other_program_cannot_see_upload(self, client: AsyncClient) -> None:
        import_id = await _upload_id(client)
        response = await client.get(f"/api/programs/other-program/import/data/{import_id}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, client: AsyncClient) -> None:
        response = await _upload(client, url=f"{BASE}/mappings/germplasm/workflows/nope/data")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_workflow_of_other_mapping(self, client: AsyncClient) -> None:
        response = await _upload(client, url=f"{BASE}/mappings/experiment/workflows/germplasm/data")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unsupported_file_type(self, client: AsyncClient) -> None:
        response = await _upload(client, filename="notes.pdf", content_type="application/pdf")
        assert response.status_code == 415

    @pytest.mark.asyncio
    async def test_empty_file(self, client: AsyncClient) -> None:
        response = await _upload(client, content="")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_user_fields(self, client: AsyncClient) -> None:
        files = {"file": ("germplasm.csv", GERMPLASM_CSV.encode("utf-8"), "text/csv")}
        response = await client.post(UPLOAD_URL, files=files, data={"userFields": "[1, 2]"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_xlsx(self, client: AsyncClient) -> None:
        response = await _upload(
            client,
            content="not a workbook",
            filename="germplasm.xlsx",
            content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
        assert response.status_code == 422
