"""Live checklist completion driven by the dialogue event stream.

Completion is a reduction over the event sequence: ``advance`` maps a
progress value and one event to the next progress value, and ``fold`` applies
it to a whole sequence. ``ChecklistTracker`` only holds the latest value.
"""

from __future__ import annotations

import json
import logging
from typing import Any, FrozenSet, Iterable, Mapping, Optional

from src.fieldreport.domain.models.checklist import (
    ChecklistDefinition,
    ChecklistProgress,
    ChecklistSnapshot,
    CompletionSummary,
)
from src.fieldreport.domain.models.dialogue import DialogueEvent

logger = logging.getLogger(__name__)

# Fields checked, in order, for the message text of a structured payload.
TEXT_FIELDS = ("message", "text", "content")


def extract_text(payload: Any) -> str:
    """Return the lower-cased text of a dialogue payload."""

    if isinstance(payload, str):
        return payload.lower()

    if isinstance(payload, Mapping):
        for name in TEXT_FIELDS:
            value = payload.get(name)
            if value:
                return (value if isinstance(value, str) else str(value)).lower()
        return json.dumps(payload, default=str).lower()

    return str(payload).lower()


def match_items(definition: ChecklistDefinition, text: str, skip: FrozenSet[int] = frozenset()) -> FrozenSet[int]:
    """Indices of items (outside ``skip``) with a keyword contained in ``text``."""

    matched = set()
    for index, item in enumerate(definition.items):
        if index in skip:
            continue
        if any(keyword.lower() in text for keyword in item.keywords):
            matched.add(index)
    return frozenset(matched)


def advance(definition: ChecklistDefinition, progress: ChecklistProgress, event: DialogueEvent) -> ChecklistProgress:
    text = extract_text(event.payload)
    return progress.with_completed(match_items(definition, text, skip=progress.completed))


def fold(
    definition: ChecklistDefinition,
    events: Iterable[DialogueEvent],
    initial: Optional[ChecklistProgress] = None,
) -> ChecklistProgress:
    progress = initial or ChecklistProgress()
    for event in events:
        progress = advance(definition, progress, event)
    return progress


def summarize(definition: ChecklistDefinition, progress: ChecklistProgress) -> CompletionSummary:
    required_total = required_completed = optional_total = optional_completed = 0
    for index, item in enumerate(definition.items):
        done = progress.is_completed(index)
        if item.required:
            required_total += 1
            required_completed += done
        else:
            optional_total += 1
            optional_completed += done
    return CompletionSummary(
        required_completed=required_completed,
        required_total=required_total,
        optional_completed=optional_completed,
        optional_total=optional_total,
    )


class ChecklistTracker:
    """Tracks which checklist items have come up in one session's dialogue."""

    def __init__(self, definition: ChecklistDefinition) -> None:
        self._definition = definition
        self._progress = ChecklistProgress()

    @property
    def definition(self) -> ChecklistDefinition:
        return self._definition

    @property
    def progress(self) -> ChecklistProgress:
        return self._progress

    def observe(self, event: DialogueEvent) -> FrozenSet[int]:
        """Apply one event and return the indices it newly completed."""

        updated = advance(self._definition, self._progress, event)
        newly_completed = updated.completed - self._progress.completed
        self._progress = updated
        for index in sorted(newly_completed):
            logger.debug("Checklist item %s matched", self._definition.items[index].id)
        return newly_completed

    def next_prompt(self) -> Optional[str]:
        """Question of the first item not yet covered."""

        for index, item in enumerate(self._definition.items):
            if not self._progress.is_completed(index):
                return item.question
        return None

    def summary(self) -> CompletionSummary:
        return summarize(self._definition, self._progress)

    def snapshot(self) -> ChecklistSnapshot:
        return ChecklistSnapshot(
            completed_item_ids=[
                item.id for index, item in enumerate(self._definition.items) if self._progress.is_completed(index)
            ],
            summary=self.summary(),
        )
