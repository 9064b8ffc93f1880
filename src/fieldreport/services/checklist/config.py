from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from src.fieldreport.config import settings
from src.fieldreport.domain.models.checklist import ChecklistDefinition, ChecklistItem

logger = logging.getLogger(__name__)


DEFAULT_CHECKLIST_ITEMS: List[dict] = [
    # Admin (required)
    {
        "id": "arrival_time",
        "question": "What time did you arrive at the site?",
        "keywords": ["arrive", "arrival time", "got to site", "started work", "got here"],
        "required": True,
        "order": 1,
        "category": "time",
    },
    {
        "id": "departure_time",
        "question": "What time did you leave the site?",
        "keywords": ["leave", "left", "departure time", "end of day", "finished"],
        "required": True,
        "order": 2,
        "category": "time",
    },
    {
        "id": "personnel_count",
        "question": "How many personnel were on site today?",
        "keywords": ["how many", "number of workers", "crew size", "total people", "personnel count"],
        "required": True,
        "order": 3,
        "category": "personnel",
    },
    {
        "id": "personnel_names",
        "question": "Please name the personnel present",
        "keywords": ["name", "who was there", "list the names", "crew members", "team members"],
        "required": True,
        "order": 4,
        "category": "personnel",
    },
    {
        "id": "onsite_activities",
        "question": "Describe the on-site team activities",
        "keywords": ["activities", "work", "tasks", "what they did", "team activities"],
        "required": True,
        "order": 5,
        "category": "general",
    },
    # Materials (optional)
    {
        "id": "material_deliveries",
        "question": "Were there any material deliveries by supplier?",
        "keywords": ["deliveries", "materials", "shipments", "supplies", "supplier"],
        "required": False,
        "order": 6,
        "category": "materials",
    },
    {
        "id": "materials_returned",
        "question": "Were any materials returned?",
        "keywords": ["returned", "return", "sent back", "materials back"],
        "required": False,
        "order": 7,
        "category": "materials",
    },
    {
        "id": "material_issues",
        "question": "Were there any issues with material delivery?",
        "keywords": ["issues", "problems", "delivery issues", "material problems"],
        "required": False,
        "order": 8,
        "category": "materials",
    },
    # Off-site (optional)
    {
        "id": "offsite_personnel_count",
        "question": "How many off-site or specialty personnel worked today?",
        "keywords": ["off-site", "offsite", "specialty", "off site personnel"],
        "required": False,
        "order": 9,
        "category": "personnel",
    },
    {
        "id": "offsite_total_hours",
        "question": "What were the total off-site hours?",
        "keywords": ["off-site hours", "offsite hours", "specialty hours"],
        "required": False,
        "order": 10,
        "category": "time",
    },
    {
        "id": "offsite_activities",
        "question": "What were the off-site team activities?",
        "keywords": ["off-site activities", "offsite work", "specialty activities"],
        "required": False,
        "order": 11,
        "category": "general",
    },
    # General
    {
        "id": "weather",
        "question": "How was the weather today?",
        "keywords": ["weather", "rain", "sunny", "temperature", "conditions"],
        "required": False,
        "order": 12,
        "category": "general",
    },
    {
        "id": "constraints_delays",
        "question": "Were there any constraints or delays?",
        "keywords": ["constraints", "delays", "hold ups", "issues", "problems"],
        "required": False,
        "order": 13,
        "category": "general",
    },
    {
        "id": "safety_incidents",
        "question": "Were there any safety incidents?",
        "keywords": ["safety", "incidents", "accidents", "injuries", "safety issues"],
        "required": True,
        "order": 14,
        "category": "safety",
    },
    {
        "id": "additional_notes",
        "question": "Any additional notes or observations?",
        "keywords": ["additional notes", "anything else", "other information", "final notes"],
        "required": False,
        "order": 15,
        "category": "general",
    },
]


def build_definition(raw_items: Iterable[Mapping[str, Any]]) -> ChecklistDefinition:
    """Validate raw item dicts and return them as a definition sorted by ``order``.

    Items without an explicit order keep their position in the input.
    """

    items = [ChecklistItem(**{"order": position, **raw}) for position, raw in enumerate(raw_items)]
    ids = [item.id for item in items]
    if len(set(ids)) != len(ids):
        raise ValueError("Checklist item ids must be unique")
    return ChecklistDefinition(items=tuple(sorted(items, key=lambda item: item.order)))


def load_checklist(path: Optional[Path] = None) -> ChecklistDefinition:
    """Load the checklist from a JSON file, or return the built-in default.

    The file must contain a list of ``{id, question, keywords, required,
    category, order}`` objects. A missing or invalid file is logged and the
    default checklist is used instead.
    """

    config_path = path or settings.checklist_config_path
    if config_path is None:
        return build_definition(DEFAULT_CHECKLIST_ITEMS)

    try:
        with Path(config_path).open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        return build_definition(raw)
    except (OSError, json.JSONDecodeError, ValidationError, ValueError, TypeError):
        logger.exception("Error loading checklist config from %s; using defaults", config_path)
        return build_definition(DEFAULT_CHECKLIST_ITEMS)


def generate_agent_prompt(definition: ChecklistDefinition, agent_name: str = "Roxy") -> str:
    """Render the interview instructions the voice agent runs with."""

    required = [item for item in definition.items if item.required]
    optional = [item for item in definition.items if not item.required]

    lines = [
        f"You are {agent_name}, a helpful AI assistant for construction daily reports.",
        "",
        "Your job is to conduct a friendly but thorough interview to collect the following information:",
        "",
        "REQUIRED QUESTIONS (must be asked):",
    ]
    lines.extend(f"{index}. {item.question}" for index, item in enumerate(required, start=1))

    if optional:
        lines.append("")
        lines.append("OPTIONAL QUESTIONS (ask if relevant):")
        lines.extend(f"{index}. {item.question}" for index, item in enumerate(optional, start=1))

    lines.extend(
        [
            "",
            "Be conversational and natural. Don't read these questions verbatim - adapt them to the flow of conversation.",
            "If the user volunteers information, acknowledge it and move on.",
            "Keep the interview focused but allow for natural conversation.",
        ]
    )
    return "\n".join(lines) + "\n"


checklist_definition: ChecklistDefinition = load_checklist()
