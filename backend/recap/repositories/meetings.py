from __future__ import annotations

from typing import Any, Optional
from sqlalchemy import func, or_
from sqlmodel import Session, col, select

from recap.models.base import utcnow
from recap.models.meeting import Meeting


class MeetingsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, meeting: Meeting) -> Meeting:
        now = utcnow()
        meeting.created_at = now
        meeting.updated_at = now
        self.session.add(meeting)
        self.session.commit()
        self.session.refresh(meeting)
        return meeting

    def get(self, meeting_id: int, owner_id: str) -> Optional[Meeting]:
        # Owner filter keeps one user's meetings invisible to another
        statement = select(Meeting).where(Meeting.id == meeting_id, Meeting.owner_id == owner_id)
        return self.session.exec(statement).first()

    def get_by_id(self, meeting_id: int) -> Optional[Meeting]:
        """Unscoped lookup for the background pipeline, never for request handlers."""
        return self.session.get(Meeting, meeting_id)

    def list_by_owner(self, owner_id: str) -> list[Meeting]:
        statement = (
            select(Meeting)
            .where(Meeting.owner_id == owner_id)
            .order_by(col(Meeting.created_at).desc(), col(Meeting.id).desc())
        )
        return list(self.session.exec(statement))

    def search(self, owner_id: str, text: str) -> list[Meeting]:
        needle = (text or "").lower()
        statement = (
            select(Meeting)
            .where(
                Meeting.owner_id == owner_id,
                or_(
                    func.lower(col(Meeting.title)).contains(needle, autoescape=True),
                    func.lower(col(Meeting.summary)).contains(needle, autoescape=True),
                    func.lower(col(Meeting.participants)).contains(needle, autoescape=True),
                ),
            )
            .order_by(col(Meeting.created_at).desc(), col(Meeting.id).desc())
        )
        return list(self.session.exec(statement))

    def update(self, meeting_id: int, **fields: Any) -> Optional[Meeting]:
        """Merge ``fields`` into the row and refresh ``updated_at``.

        No status checks happen here; callers own the state machine.
        Returns None when the row no longer exists.
        """
        meeting = self.session.get(Meeting, meeting_id)
        if meeting is None:
            return None
        for key, value in fields.items():
            setattr(meeting, key, value)
        meeting.updated_at = utcnow()
        self.session.add(meeting)
        self.session.commit()
        self.session.refresh(meeting)
        return meeting

    def delete(self, meeting_id: int, owner_id: str) -> bool:
        meeting = self.get(meeting_id, owner_id)
        if meeting is None:
            return False
        self.session.delete(meeting)
        self.session.commit()
        return True
