from __future__ import annotations

from typing import Dict, Optional
from uuid import UUID

from src.fieldreport.domain.models.checklist import ChecklistDefinition
from src.fieldreport.domain.models.session import ReportContext
from src.fieldreport.infra.storage.fallback import LocalFallbackLog, fallback_log
from src.fieldreport.infra.storage.reports import ReportStore, get_report_store_from_env
from src.fieldreport.services.agent.backends import ConversationalAgentConnector, get_agent_connector_from_env
from src.fieldreport.services.checklist.config import checklist_definition
from src.fieldreport.services.finalization.pipeline import FinalizationPipeline
from src.fieldreport.services.finalization.writer import FallbackReportWriter
from src.fieldreport.services.session.controller import SessionController


class SessionService:
    """Keeps one SessionController per supervisor and indexes their sessions.

    All controllers share the connector and the finalization pipeline; each
    controller owns its own session and checklist progress.
    """

    def __init__(
        self,
        connector: ConversationalAgentConnector,
        pipeline: FinalizationPipeline,
        checklist: ChecklistDefinition,
        *,
        store: Optional[ReportStore] = None,
        fallback: Optional[LocalFallbackLog] = None,
    ) -> None:
        self.connector = connector
        self.pipeline = pipeline
        self.checklist = checklist
        self.store = store
        self.fallback = fallback or fallback_log
        self._controllers: Dict[str, SessionController] = {}
        self._session_owners: Dict[UUID, str] = {}

    def controller_for(self, owner_id: str) -> SessionController:
        controller = self._controllers.get(owner_id)
        if controller is None:
            controller = SessionController(self.connector, self.pipeline, self.checklist)
            self._controllers[owner_id] = controller
        return controller

    async def start_session(self, context: ReportContext) -> SessionController:
        controller = self.controller_for(context.owner_id)
        previous = controller.session
        session = await controller.start(context)
        if previous is not None:
            self._session_owners.pop(previous.id, None)
        self._session_owners[session.id] = context.owner_id
        return controller

    def get_controller(self, session_id: UUID) -> Optional[SessionController]:
        owner_id = self._session_owners.get(session_id)
        if owner_id is None:
            return None
        controller = self._controllers.get(owner_id)
        if controller is None or controller.session is None or controller.session.id != session_id:
            return None
        return controller

    async def aclose(self) -> None:
        for controller in self._controllers.values():
            await controller.aclose()
        close_connector = getattr(self.connector, "aclose", None)
        if close_connector is not None:
            await close_connector()


def build_session_service() -> SessionService:
    """Wire the service from environment configuration."""

    connector = get_agent_connector_from_env()
    store = get_report_store_from_env()
    pipeline = FinalizationPipeline(connector, FallbackReportWriter(store, fallback_log))
    return SessionService(connector, pipeline, checklist_definition, store=store, fallback=fallback_log)


_session_service: Optional[SessionService] = None


def get_session_service() -> SessionService:
    """FastAPI dependency returning the process-wide session service."""

    global _session_service
    if _session_service is None:
        _session_service = build_session_service()
    return _session_service
