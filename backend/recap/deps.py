from __future__ import annotations

from typing import Iterator, Optional

from fastapi import Header, HTTPException, Request
from sqlmodel import Session

from recap.config import Settings
from recap.models.base import engine
from recap.services.notifications import build_notifier
from recap.services.pipeline import MeetingPipeline, PipelineRunner
from recap.services.summarization import build_summarizer
from recap.services.transcription import build_transcriber


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_owner(x_user_id: Optional[str] = Header(default=None)) -> str:
    # Identity is resolved upstream; we only trust the forwarded user id
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id.strip()


def get_pipeline_runner(request: Request) -> PipelineRunner:
    return request.app.state.pipeline_runner


def build_pipeline_runner(settings: Settings) -> PipelineRunner:
    pipeline = MeetingPipeline(
        session_factory=lambda: Session(engine),
        transcriber=build_transcriber(settings),
        summarizer=build_summarizer(settings),
        notifier=build_notifier(settings),
    )
    return PipelineRunner(pipeline, max_workers=settings.worker_pool_size)
