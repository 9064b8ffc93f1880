from uuid import UUID, uuid4

import pytest
from conftest import FlakyReportStore, ScriptedConnector, transcript
from fastapi import status
from httpx import ASGITransport, AsyncClient

from src.fieldreport.domain.models.dialogue import AudioArtifact
from src.fieldreport.main import app
from src.fieldreport.services.session.service import get_session_service

START_PAYLOAD = {
    "owner_id": "mgr-001",
    "owner_name": "Pat Foreman",
    "project_id": "proj-42",
    "project_name": "Harbor Tower",
    "project_location": "Pier 7",
}


@pytest.fixture
def use_service():
    def _use(service):
        app.dependency_overrides[get_session_service] = lambda: service
        return service

    yield _use
    app.dependency_overrides.clear()


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_voice_session_produces_report(use_service, make_service):
    connector = ScriptedConnector(
        transcripts=[transcript("done", "arrived at 7", "materials on time")],
        audio=[AudioArtifact(content=b"recorded")],
    )
    service = use_service(make_service(connector))

    async with _client() as ac:
        start_resp = await ac.post("/api/v1/sessions/", json=START_PAYLOAD)
        assert start_resp.status_code == status.HTTP_201_CREATED
        body = start_resp.json()
        assert body["state"] == "CONNECTED"
        assert body["current_prompt"] == "When did you arrive?"
        session_id = body["session"]["id"]

        mode_resp = await ac.post(f"/api/v1/sessions/{session_id}/mode", json={"mode": "listening"})
        assert mode_resp.status_code == status.HTTP_200_OK
        assert mode_resp.json()["state"] == "LISTENING"

        for message in ["arrived at 7", "materials on time"]:
            event_resp = await ac.post(
                f"/api/v1/sessions/{session_id}/events",
                json={"role": "user", "payload": {"message": message}},
            )
            assert event_resp.status_code == status.HTTP_202_ACCEPTED
            assert event_resp.json() == {"status": "accepted"}

        end_resp = await ac.post(f"/api/v1/sessions/{session_id}/end")
        assert end_resp.status_code == status.HTTP_202_ACCEPTED
        assert end_resp.json()["session_id"] == session_id

        checklist_resp = await ac.get(f"/api/v1/sessions/{session_id}/checklist")
        assert checklist_resp.status_code == status.HTTP_200_OK
        progress = checklist_resp.json()
        assert [item["completed"] for item in progress["items"]] == [True, True, False, False]
        assert progress["summary"]["required_completed"] == 2
        assert progress["current_prompt"] is None

        final_status = await service.pipeline.get_run(UUID(session_id)).wait()
        assert final_status.phase.value == "COMPLETED"

        finalization_resp = await ac.get(f"/api/v1/sessions/{session_id}/finalization")
        assert finalization_resp.json()["phase"] == "COMPLETED"
        report_id = finalization_resp.json()["report_id"]

        report_resp = await ac.get(f"/api/v1/reports/{report_id}")
        assert report_resp.status_code == status.HTTP_200_OK
        report = report_resp.json()
        assert report["saved_to_cloud"] is True
        assert report["audio"]["size_bytes"] == len(b"recorded")
        assert report["checklist"]["completed_item_ids"] == ["arrival", "materials"]


async def test_second_start_for_same_supervisor_conflicts(use_service, make_service):
    connector = ScriptedConnector()
    service = use_service(make_service(connector))

    async with _client() as ac:
        first = await ac.post("/api/v1/sessions/", json=START_PAYLOAD)
        second = await ac.post("/api/v1/sessions/", json=START_PAYLOAD)
        other = await ac.post("/api/v1/sessions/", json={**START_PAYLOAD, "owner_id": "mgr-002"})

    assert first.status_code == status.HTTP_201_CREATED
    assert second.status_code == status.HTTP_409_CONFLICT
    assert other.status_code == status.HTTP_201_CREATED
    await service.aclose()


async def test_agent_connection_failure_is_bad_gateway(use_service, make_service):
    use_service(make_service(ScriptedConnector(connect_error=OSError("no route to agent"))))

    async with _client() as ac:
        response = await ac.post("/api/v1/sessions/", json=START_PAYLOAD)

    assert response.status_code == status.HTTP_502_BAD_GATEWAY


async def test_unknown_session_is_not_found(use_service, make_service):
    use_service(make_service(ScriptedConnector()))
    missing = uuid4()

    async with _client() as ac:
        get_resp = await ac.get(f"/api/v1/sessions/{missing}")
        end_resp = await ac.post(f"/api/v1/sessions/{missing}/end")
        finalization_resp = await ac.get(f"/api/v1/sessions/{missing}/finalization")
        report_resp = await ac.get("/api/v1/reports/rpt_20260304_mgr-001_000000000000")

    assert get_resp.status_code == status.HTTP_404_NOT_FOUND
    assert end_resp.status_code == status.HTTP_404_NOT_FOUND
    assert finalization_resp.status_code == status.HTTP_404_NOT_FOUND
    assert report_resp.status_code == status.HTTP_404_NOT_FOUND


async def test_invalid_mode_and_double_end(use_service, make_service):
    service = use_service(make_service(ScriptedConnector()))

    async with _client() as ac:
        session_id = (await ac.post("/api/v1/sessions/", json=START_PAYLOAD)).json()["session"]["id"]

        bad_mode = await ac.post(f"/api/v1/sessions/{session_id}/mode", json={"mode": "thinking"})
        assert bad_mode.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

        assert (await ac.post(f"/api/v1/sessions/{session_id}/end")).status_code == status.HTTP_202_ACCEPTED
        second_end = await ac.post(f"/api/v1/sessions/{session_id}/end")
        assert second_end.status_code == status.HTTP_409_CONFLICT

        late_event = await ac.post(f"/api/v1/sessions/{session_id}/events", json={"payload": "one more thing"})
        assert late_event.status_code == status.HTTP_409_CONFLICT

    await service.pipeline.get_run(UUID(session_id)).wait()


async def test_degraded_save_is_listed_and_can_be_retried(use_service, make_service, report_store):
    connector = ScriptedConnector(transcripts=[transcript("done", "safety briefing held")])
    service = use_service(make_service(connector, store=FlakyReportStore(report_store, failures=1)))

    async with _client() as ac:
        session_id = (await ac.post("/api/v1/sessions/", json=START_PAYLOAD)).json()["session"]["id"]
        await ac.post(f"/api/v1/sessions/{session_id}/end")
        degraded = await service.pipeline.get_run(UUID(session_id)).wait()
        assert degraded.phase.value == "DEGRADED"

        fallback_resp = await ac.get("/api/v1/reports/fallback")
        assert fallback_resp.status_code == status.HTTP_200_OK
        records = fallback_resp.json()
        assert [record["reportId"] for record in records] == [degraded.report_id]
        assert records[0]["savedToCloud"] is False

        retry_resp = await ac.post(f"/api/v1/sessions/{session_id}/finalization/retry")
        assert retry_resp.status_code == status.HTTP_200_OK
        assert retry_resp.json()["phase"] == "COMPLETED"
        assert retry_resp.json()["report_id"] == degraded.report_id

        report_resp = await ac.get(f"/api/v1/reports/{degraded.report_id}")
        assert report_resp.status_code == status.HTTP_200_OK

        reconciled_resp = await ac.get("/api/v1/reports/fallback")
        assert reconciled_resp.json() == []


async def test_checklist_endpoints(use_service, make_service):
    use_service(make_service(ScriptedConnector()))

    async with _client() as ac:
        items_resp = await ac.get("/api/v1/checklist/")
        prompt_resp = await ac.get("/api/v1/checklist/prompt")

    assert items_resp.status_code == status.HTTP_200_OK
    assert [item["id"] for item in items_resp.json()] == ["arrival", "materials", "safety", "weather"]
    assert prompt_resp.status_code == status.HTTP_200_OK
    assert "1. When did you arrive?" in prompt_resp.text
