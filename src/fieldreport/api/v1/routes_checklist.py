from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from src.fieldreport.domain.models.checklist import ChecklistItem
from src.fieldreport.services.checklist.config import generate_agent_prompt
from src.fieldreport.services.session.service import SessionService, get_session_service

router = APIRouter(prefix="/checklist", tags=["checklist"])


@router.get("/", response_model=List[ChecklistItem])
async def list_checklist_items(service: SessionService = Depends(get_session_service)) -> List[ChecklistItem]:
    """Checklist items in interview order."""
    return list(service.checklist.items)


@router.get("/prompt", response_class=PlainTextResponse)
async def get_agent_prompt(service: SessionService = Depends(get_session_service)) -> str:
    """Interview instructions generated from the checklist for the voice agent."""
    return generate_agent_prompt(service.checklist)
