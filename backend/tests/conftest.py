from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple

import pytest

# -----------------------------------------------------------------------------
# Environment defaults for tests (before any recap import builds Settings)
# -----------------------------------------------------------------------------

os.environ.setdefault("RECAP_HOME", tempfile.mkdtemp(prefix="recap-tests-"))

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from recap.config import Settings  # noqa: E402
from recap.deps import get_session  # noqa: E402
from recap.main import create_app  # noqa: E402
from recap.models import integration as _integration_models  # noqa: E402,F401
from recap.models import meeting as _meeting_models  # noqa: E402,F401
from recap.models.integration import Integration  # noqa: E402
from recap.models.meeting import Meeting, MeetingStatus  # noqa: E402
from recap.repositories.integrations import IntegrationsRepository  # noqa: E402
from recap.repositories.meetings import MeetingsRepository  # noqa: E402
from recap.services.pipeline import MeetingPipeline  # noqa: E402
from recap.services.summarization import SummarizationError, SummaryResult  # noqa: E402
from recap.services.transcription import TranscriptionError, TranscriptionResult  # noqa: E402


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------


@pytest.fixture()
def engine(tmp_path: Path) -> Iterator[Engine]:
    eng = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Callable[[], Session]:
    return lambda: Session(engine)


@pytest.fixture()
def session(engine: Engine) -> Iterator[Session]:
    with Session(engine) as s:
        yield s


# -----------------------------------------------------------------------------
# Fake collaborators
# -----------------------------------------------------------------------------


class FakeTranscriber:
    def __init__(self, text: str = "Alice: we ship on Friday. Bob: I will write the release notes.",
                 error: Optional[Exception] = None, before: Optional[Callable[[], None]] = None) -> None:
        self.text = text
        self.error = error
        self.before = before
        self.calls: List[Path] = []
        self._lock = threading.Lock()

    def transcribe(self, audio_path: Path) -> TranscriptionResult:
        with self._lock:
            self.calls.append(Path(audio_path))
        if self.before is not None:
            self.before()
        if self.error is not None:
            raise self.error
        return TranscriptionResult(text=self.text)


class FakeSummarizer:
    def __init__(self, result: Optional[SummaryResult] = None, error: Optional[Exception] = None) -> None:
        self.result = result or SummaryResult(
            summary="Release moves to Friday.",
            key_decisions=["Ship on Friday"],
            action_items=["Bob writes the release notes"],
        )
        self.error = error
        self.calls: List[str] = []

    def summarize(self, transcript: str) -> SummaryResult:
        self.calls.append(transcript)
        if self.error is not None:
            raise self.error
        return self.result


class RecordingNotifier:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: List[Tuple[Meeting, List[Integration]]] = []

    def notify(self, meeting: Meeting, integrations: Any) -> list:
        self.calls.append((meeting, list(integrations)))
        if self.error is not None:
            raise self.error
        return []


class InlineRunner:
    """Runs the pipeline in the calling thread so API tests are deterministic."""

    def __init__(self, pipeline: MeetingPipeline) -> None:
        self.pipeline = pipeline
        self.submitted: List[Tuple[int, str]] = []

    def submit(self, meeting_id: int, audio_path: str) -> None:
        self.submitted.append((meeting_id, audio_path))
        self.pipeline.process(meeting_id, audio_path)

    def shutdown(self, wait: bool = True) -> None:
        pass


@pytest.fixture()
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture()
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def pipeline(session_factory, transcriber, summarizer, notifier) -> MeetingPipeline:
    return MeetingPipeline(
        session_factory=session_factory,
        transcriber=transcriber,
        summarizer=summarizer,
        notifier=notifier,  # type: ignore[arg-type]
    )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


@pytest.fixture()
def audio_file(tmp_path: Path) -> Path:
    path = tmp_path / "uploads" / "standup.wav"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"RIFF....WAVEfmt fake audio")
    return path


@pytest.fixture()
def make_meeting(session_factory) -> Callable[..., Meeting]:
    def _make(owner_id: str = "alice", audio_path: Optional[Path] = None, **fields: Any) -> Meeting:
        fields.setdefault("title", "Weekly sync")
        fields.setdefault("status", MeetingStatus.UPLOADING.value)
        with session_factory() as s:
            return MeetingsRepository(s).create(
                Meeting(owner_id=owner_id, audio_path=str(audio_path) if audio_path else None, **fields)
            )
    return _make


@pytest.fixture()
def make_integration(session_factory) -> Callable[..., Integration]:
    def _make(owner_id: str = "alice", type: str = "email", settings: Optional[dict] = None,
              is_enabled: bool = True) -> Integration:
        if settings is None:
            settings = (
                {"channel_id": "C123", "webhook_url": None}
                if type == "slack"
                else {"recipients": ["team@example.com"], "subject": "Meeting Summary: {title}"}
            )
        with session_factory() as s:
            return IntegrationsRepository(s).create(
                Integration(owner_id=owner_id, type=type, settings=settings, is_enabled=is_enabled)
            )
    return _make


@pytest.fixture()
def get_meeting(session_factory) -> Callable[[int], Optional[Meeting]]:
    def _get(meeting_id: int) -> Optional[Meeting]:
        with session_factory() as s:
            return MeetingsRepository(s).get_by_id(meeting_id)
    return _get


@pytest.fixture()
def status_history(monkeypatch) -> List[Tuple[int, str]]:
    """Records every status persisted through MeetingsRepository.update."""
    history: List[Tuple[int, str]] = []
    original = MeetingsRepository.update

    def recording_update(self, meeting_id, **fields):
        result = original(self, meeting_id, **fields)
        if "status" in fields and result is not None:
            history.append((meeting_id, fields["status"]))
        return result

    monkeypatch.setattr(MeetingsRepository, "update", recording_update)
    return history


# -----------------------------------------------------------------------------
# App + client
# -----------------------------------------------------------------------------


@pytest.fixture()
def app_settings(tmp_path: Path) -> Settings:
    home = tmp_path / "home"
    return Settings(
        home_dir=home,
        data_dir=home / "data",
        upload_dir=home / "uploads",
        models_dir=home / "models",
        logs_dir=home / "logs",
        database_path=home / "data" / "unused.db",
    )


@pytest.fixture()
def runner(pipeline) -> InlineRunner:
    return InlineRunner(pipeline)


@pytest.fixture()
def client(app_settings, runner, engine) -> Iterator[TestClient]:
    app = create_app(settings=app_settings, runner=runner)  # type: ignore[arg-type]

    def _session_override() -> Iterator[Session]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def alice() -> dict:
    return {"X-User-Id": "alice"}


@pytest.fixture()
def bob() -> dict:
    return {"X-User-Id": "bob"}


__all__ = [
    "FakeTranscriber",
    "FakeSummarizer",
    "RecordingNotifier",
    "InlineRunner",
    "TranscriptionError",
    "SummarizationError",
]
