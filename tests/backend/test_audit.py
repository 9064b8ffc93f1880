import json
import logging

import pytest
from conftest import FlakyReportStore, ScriptedConnector, make_pipeline, transcript

from src.fieldreport.domain.models.dialogue import DialogueEvent
from src.fieldreport.errors import AgentConnectionError
from src.fieldreport.services.session.controller import SessionController


def _audit_events(caplog):
    return [json.loads(record.getMessage()) for record in caplog.records if record.name == "audit"]


async def test_session_and_report_audit_trail(caplog, context, site_checklist, report_store, fallback):
    caplog.set_level(logging.INFO, logger="audit")
    connector = ScriptedConnector(transcripts=[transcript("done", "arrived early")])
    pipeline = make_pipeline(connector, FlakyReportStore(report_store, failures=1), fallback)
    controller = SessionController(connector, pipeline, site_checklist)

    session = await controller.start(context)
    controller.publish(DialogueEvent(payload="arrived early"))
    run = await controller.end()
    status = await run.wait()
    await pipeline.retry_persistence(session.id)

    events = _audit_events(caplog)
    assert [event["action"] for event in events] == [
        "start_session",
        "end_session",
        "persist_report_degraded",
        "persist_report",
    ]
    assert all(event["owner_id"] == "mgr-001" and event["project_id"] == "proj-42" for event in events)

    started, ended, degraded, persisted = events
    assert started["details"]["conversation_id"] == "conv-1"
    assert ended["resource_id"] == str(session.id)
    assert ended["details"]["required_completed"] == 1
    assert ended["details"]["required_total"] == 3
    assert degraded["resource_id"] == status.report_id
    assert degraded["details"]["persisted"] is False
    assert persisted["details"]["persisted"] is True
    assert persisted["details"]["transcript_events"] == 1
    # Audit lines never carry dialogue text.
    assert all("arrived early" not in json.dumps(event) for event in events)


async def test_failed_start_is_audited(caplog, context, site_checklist, report_store, fallback):
    caplog.set_level(logging.INFO, logger="audit")
    connector = ScriptedConnector(connect_error=OSError("agent unreachable"))
    controller = SessionController(connector, make_pipeline(connector, report_store, fallback), site_checklist)

    with pytest.raises(AgentConnectionError):
        await controller.start(context)

    (event,) = _audit_events(caplog)
    assert event["action"] == "start_session_failed"
    assert event["details"] == {"reason": "agent unreachable"}
    assert event["resource_id"] is None
