from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

from recap.models.base import utc_column, utcnow


class MeetingStatus(str, Enum):
    """Processing status of an uploaded recording."""
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES: FrozenSet[MeetingStatus] = frozenset({MeetingStatus.COMPLETED, MeetingStatus.FAILED})

# Forward-only edges; any non-terminal status may also drop to FAILED.
ALLOWED_TRANSITIONS: Dict[MeetingStatus, FrozenSet[MeetingStatus]] = {
    MeetingStatus.UPLOADING: frozenset({MeetingStatus.TRANSCRIBING, MeetingStatus.FAILED}),
    MeetingStatus.TRANSCRIBING: frozenset({MeetingStatus.SUMMARIZING, MeetingStatus.FAILED}),
    MeetingStatus.SUMMARIZING: frozenset({MeetingStatus.COMPLETED, MeetingStatus.FAILED}),
    MeetingStatus.COMPLETED: frozenset(),
    MeetingStatus.FAILED: frozenset(),
}


def can_transition(current: MeetingStatus, target: MeetingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class Meeting(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    title: str = Field(default="Untitled Meeting")
    date: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    duration: Optional[str] = None
    participants: Optional[str] = None
    audio_path: Optional[str] = None
    status: str = Field(default=MeetingStatus.UPLOADING.value, index=True)
    transcription: Optional[str] = None
    summary: Optional[str] = None
    key_decisions: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    action_items: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(index=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
