from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, computed_field, field_validator


class ChecklistCategory(str, Enum):
    TIME = "time"
    PERSONNEL = "personnel"
    MATERIALS = "materials"
    SAFETY = "safety"
    GENERAL = "general"


class ChecklistItem(BaseModel):
    """One interview topic the agent is expected to cover."""

    model_config = ConfigDict(frozen=True)

    id: str
    question: str
    keywords: Tuple[str, ...] = ()
    required: bool = False
    category: ChecklistCategory = ChecklistCategory.GENERAL
    order: int = 0

    @field_validator("keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, value: Iterable[str]) -> Tuple[str, ...]:
        # An empty keyword would match every message.
        return tuple(kw.strip() for kw in value if kw and kw.strip())


class ChecklistDefinition(BaseModel):
    """Ordered, immutable list of checklist items for a session."""

    model_config = ConfigDict(frozen=True)

    items: Tuple[ChecklistItem, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    @property
    def first_prompt(self) -> Optional[str]:
        return self.items[0].question if self.items else None


@dataclass(frozen=True)
class ChecklistProgress:
    """Completion state for a checklist, addressed by item index.

    Values are never mutated in place; a new progress value is produced for
    every observed event. Completed indices only ever accumulate.
    """

    completed: FrozenSet[int] = field(default_factory=frozenset)

    def is_completed(self, index: int) -> bool:
        return index in self.completed

    def with_completed(self, indices: Iterable[int]) -> "ChecklistProgress":
        added = frozenset(indices)
        if added <= self.completed:
            return self
        return ChecklistProgress(completed=self.completed | added)


class CompletionSummary(BaseModel):
    required_completed: int
    required_total: int
    optional_completed: int
    optional_total: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def required_fraction(self) -> float:
        if self.required_total == 0:
            return 1.0
        return self.required_completed / self.required_total

    @computed_field  # type: ignore[prop-decorator]
    @property
    def optional_fraction(self) -> float:
        if self.optional_total == 0:
            return 1.0
        return self.optional_completed / self.optional_total

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_required_completed(self) -> bool:
        return self.required_completed == self.required_total


class ChecklistSnapshot(BaseModel):
    """Checklist state captured on a report when the session ended."""

    completed_item_ids: List[str] = []
    summary: CompletionSummary
