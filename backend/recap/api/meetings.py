from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
import logging
import uuid

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from sqlmodel import Session

from recap.config import Settings
from recap.deps import get_current_owner, get_pipeline_runner, get_session, get_settings
from recap.models.base import as_utc, utcnow
from recap.models.meeting import Meeting, MeetingStatus
from recap.repositories.meetings import MeetingsRepository
from recap.services.pipeline import PipelineRunner

logger = logging.getLogger("recap.api")


router = APIRouter(prefix="/meetings", tags=["meetings"])

_CHUNK = 1024 * 1024


class MeetingStatusView(BaseModel):
    id: int
    status: str
    failure_reason: Optional[str] = None
    updated_at: datetime


def _store_upload(upload: UploadFile, settings: Settings) -> Path:
    """Copy the upload into upload_dir, enforcing extension and size limits."""
    ext = Path(upload.filename or "").suffix.lower()
    if ext not in settings.allowed_extensions:
        allowed = ", ".join(settings.allowed_extensions)
        raise HTTPException(status_code=400, detail=f"Invalid file type. Only {allowed} files are allowed.")

    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    dest = settings.upload_dir / f"{uuid.uuid4().hex}{ext}"
    written = 0
    try:
        with dest.open("wb") as out:
            while True:
                chunk = upload.file.read(_CHUNK)
                if not chunk:
                    break
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    raise HTTPException(status_code=413, detail="File too large")
                out.write(chunk)
    except BaseException:
        dest.unlink(missing_ok=True)
        raise
    if written == 0:
        dest.unlink(missing_ok=True)
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return dest


@router.post("")
def upload_meeting(
    audio: Optional[UploadFile] = File(default=None),
    title: Optional[str] = Form(default=None),
    date: Optional[datetime] = Form(default=None),
    duration: Optional[str] = Form(default=None),
    participants: Optional[str] = Form(default=None),
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    runner: PipelineRunner = Depends(get_pipeline_runner),
) -> Meeting:
    if audio is None or not audio.filename:
        raise HTTPException(status_code=400, detail="No audio file provided")

    path = _store_upload(audio, settings)
    when = as_utc(date) if date else utcnow()
    meeting = Meeting(
        owner_id=owner_id,
        title=(title or "").strip() or f"Meeting {when:%Y-%m-%d}",
        date=when,
        duration=duration,
        participants=participants,
        audio_path=str(path),
        status=MeetingStatus.UPLOADING.value,
    )
    meeting = MeetingsRepository(session).create(meeting)
    logger.info("Meeting %s created for %s; queueing pipeline", meeting.id, owner_id)

    # Fire and forget; the client polls for progress
    runner.submit(meeting.id, str(path))  # type: ignore[arg-type]
    return meeting


@router.get("")
def list_meetings(
    search: Optional[str] = None,
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
) -> List[Meeting]:
    repo = MeetingsRepository(session)
    if search:
        return repo.search(owner_id, search)
    return repo.list_by_owner(owner_id)


@router.get("/{meeting_id}")
def get_meeting(
    meeting_id: int,
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
) -> Meeting:
    meeting = MeetingsRepository(session).get(meeting_id, owner_id)
    if meeting is None:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return meeting


@router.get("/{meeting_id}/status")
def get_meeting_status(
    meeting_id: int,
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
) -> MeetingStatusView:
    meeting = MeetingsRepository(session).get(meeting_id, owner_id)
    if meeting is None:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return MeetingStatusView(
        id=meeting.id,  # type: ignore[arg-type]
        status=meeting.status,
        failure_reason=meeting.failure_reason,
        updated_at=meeting.updated_at,
    )


@router.delete("/{meeting_id}")
def delete_meeting(
    meeting_id: int,
    owner_id: str = Depends(get_current_owner),
    session: Session = Depends(get_session),
) -> Dict[str, str]:
    repo = MeetingsRepository(session)
    meeting = repo.get(meeting_id, owner_id)
    if meeting is None:
        raise HTTPException(status_code=404, detail="Meeting not found")

    message = "Meeting deleted successfully"
    if meeting.audio_path:
        try:
            Path(meeting.audio_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Meeting %s: could not remove %s: %s", meeting_id, meeting.audio_path, e)
            message = "Meeting deleted; the audio file could not be removed"

    repo.delete(meeting_id, owner_id)
    return {"message": message}
