from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.fieldreport.domain.models.checklist import CompletionSummary
from src.fieldreport.domain.models.dialogue import DialogueEvent
from src.fieldreport.domain.models.session import ReportContext, Session, SessionState
from src.fieldreport.errors import AgentConnectionError, InvalidSessionState, SessionBusyError
from src.fieldreport.services.finalization.pipeline import FinalizationStatus
from src.fieldreport.services.session.controller import SessionController
from src.fieldreport.services.session.service import SessionService, get_session_service

router = APIRouter(prefix="/sessions", tags=["sessions"])


class StartSessionRequest(ReportContext):
    pass


class DialogueEventRequest(BaseModel):
    role: str = "user"
    payload: Union[str, Dict[str, Any]]
    timestamp: Optional[datetime] = None


class ModeChangeRequest(BaseModel):
    mode: str


class ChecklistItemProgress(BaseModel):
    index: int
    id: str
    question: str
    required: bool
    category: str
    completed: bool


class ChecklistProgressResponse(BaseModel):
    items: List[ChecklistItemProgress]
    summary: CompletionSummary
    current_prompt: Optional[str] = None


class SessionResponse(BaseModel):
    session: Session
    state: SessionState
    current_prompt: Optional[str] = None
    checklist: Optional[CompletionSummary] = None


def _session_response(controller: SessionController) -> SessionResponse:
    tracker = controller.tracker
    return SessionResponse(
        session=controller.session,
        state=controller.state,
        current_prompt=controller.current_prompt,
        checklist=tracker.summary() if tracker is not None else None,
    )


def _controller_or_404(service: SessionService, session_id: UUID) -> SessionController:
    controller = service.get_controller(session_id)
    if controller is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return controller


@router.post("/", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_session(
    payload: StartSessionRequest,
    service: SessionService = Depends(get_session_service),
) -> SessionResponse:
    """Open a voice conversation for a supervisor and project."""

    try:
        controller = await service.start_session(ReportContext(**payload.model_dump()))
    except SessionBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except AgentConnectionError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    return _session_response(controller)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: UUID, service: SessionService = Depends(get_session_service)) -> SessionResponse:
    return _session_response(_controller_or_404(service, session_id))


@router.post("/{session_id}/events", status_code=status.HTTP_202_ACCEPTED)
async def relay_event(
    session_id: UUID,
    payload: DialogueEventRequest,
    service: SessionService = Depends(get_session_service),
) -> dict:
    """Relay a live dialogue message into the session's event stream.

    The checklist is updated asynchronously; poll the checklist resource for
    progress.
    """

    controller = _controller_or_404(service, session_id)
    event_fields = payload.model_dump(exclude_none=True)
    try:
        controller.publish(DialogueEvent(**event_fields))
    except InvalidSessionState as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {"status": "accepted"}


@router.post("/{session_id}/mode", response_model=SessionResponse)
async def change_mode(
    session_id: UUID,
    payload: ModeChangeRequest,
    service: SessionService = Depends(get_session_service),
) -> SessionResponse:
    controller = _controller_or_404(service, session_id)
    try:
        controller.set_mode(payload.mode)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except InvalidSessionState as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _session_response(controller)


@router.get("/{session_id}/checklist", response_model=ChecklistProgressResponse)
async def get_checklist_progress(
    session_id: UUID,
    service: SessionService = Depends(get_session_service),
) -> ChecklistProgressResponse:
    controller = _controller_or_404(service, session_id)
    tracker = controller.tracker
    if tracker is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session has no checklist yet")

    progress = tracker.progress
    items = [
        ChecklistItemProgress(
            index=index,
            id=item.id,
            question=item.question,
            required=item.required,
            category=item.category.value,
            completed=progress.is_completed(index),
        )
        for index, item in enumerate(tracker.definition.items)
    ]
    return ChecklistProgressResponse(items=items, summary=tracker.summary(), current_prompt=controller.current_prompt)


@router.post("/{session_id}/end", response_model=FinalizationStatus, status_code=status.HTTP_202_ACCEPTED)
async def end_session(session_id: UUID, service: SessionService = Depends(get_session_service)) -> FinalizationStatus:
    """End the conversation. The report is finalized in the background."""

    controller = _controller_or_404(service, session_id)
    try:
        run = await controller.end()
    except InvalidSessionState as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return run.status


@router.get("/{session_id}/finalization", response_model=FinalizationStatus)
async def get_finalization(
    session_id: UUID,
    service: SessionService = Depends(get_session_service),
) -> FinalizationStatus:
    run = service.pipeline.get_run(session_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session has not been finalized")
    return run.status


@router.post("/{session_id}/finalization/retry", response_model=FinalizationStatus)
async def retry_finalization(
    session_id: UUID,
    service: SessionService = Depends(get_session_service),
) -> FinalizationStatus:
    """Persist a finalized session's report again (same report id)."""

    run = service.pipeline.get_run(session_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session has not been finalized")
    try:
        await service.pipeline.retry_persistence(session_id)
    except InvalidSessionState as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return run.status
