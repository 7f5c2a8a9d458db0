"""Background processing of uploaded recordings.

``MeetingPipeline.process`` drives one meeting through

    uploading -> transcribing -> summarizing -> completed

or drops it to ``failed`` from any non-terminal step. Every status write is
checked against ``ALLOWED_TRANSITIONS`` on a freshly read row, so a terminal
meeting is never rewritten. Notifications and artifact cleanup run after
``completed`` is committed and cannot change the status.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from sqlmodel import Session

from recap.models.meeting import Meeting, MeetingStatus, can_transition
from recap.repositories.integrations import IntegrationsRepository
from recap.repositories.meetings import MeetingsRepository
from recap.services.notifications import NotificationFanout
from recap.services.summarization import Summarizer
from recap.services.transcription import Transcriber

logger = logging.getLogger("recap.pipeline")

SessionFactory = Callable[[], Session]


class MeetingNotFound(LookupError):
    pass


class InvalidTransition(RuntimeError):
    def __init__(self, meeting_id: int, current: MeetingStatus, target: MeetingStatus) -> None:
        super().__init__(f"Meeting {meeting_id}: illegal status change {current.value} -> {target.value}")
        self.meeting_id = meeting_id
        self.current = current
        self.target = target


_locks: Dict[int, threading.Lock] = {}
_locks_guard = threading.Lock()


def _get_lock(meeting_id: int) -> threading.Lock:
    with _locks_guard:
        if meeting_id not in _locks:
            _locks[meeting_id] = threading.Lock()
        return _locks[meeting_id]


class MeetingPipeline:
    def __init__(
        self,
        session_factory: SessionFactory,
        transcriber: Transcriber,
        summarizer: Summarizer,
        notifier: NotificationFanout,
    ) -> None:
        self._session_factory = session_factory
        self._transcriber = transcriber
        self._summarizer = summarizer
        self._notifier = notifier

    # -- persistence helpers -------------------------------------------------

    def _load(self, meeting_id: int) -> Optional[Meeting]:
        with self._session_factory() as session:
            return MeetingsRepository(session).get_by_id(meeting_id)

    def _advance(self, meeting_id: int, target: MeetingStatus, **fields: Any) -> Meeting:
        """Persist ``target`` (and ``fields``) if the edge from the stored status is legal."""
        with self._session_factory() as session:
            repo = MeetingsRepository(session)
            meeting = repo.get_by_id(meeting_id)
            if meeting is None:
                raise MeetingNotFound(f"Meeting {meeting_id} not found")
            current = MeetingStatus(meeting.status)
            if not can_transition(current, target):
                raise InvalidTransition(meeting_id, current, target)
            updated = repo.update(meeting_id, status=target.value, **fields)
            if updated is None:
                raise MeetingNotFound(f"Meeting {meeting_id} not found")
            return updated

    def _fail(self, meeting_id: int, step: str, error: BaseException) -> None:
        logger.error("Meeting %s failed during %s: %s", meeting_id, step, error)
        try:
            self._advance(meeting_id, MeetingStatus.FAILED, failure_reason=f"{step} failed: {error}"[:1000])
        except (MeetingNotFound, InvalidTransition) as e:
            logger.warning("Meeting %s: could not record failure: %s", meeting_id, e)
        except Exception:
            logger.exception("Meeting %s: failed to persist failed status", meeting_id)

    # -- entry point ---------------------------------------------------------

    def process(self, meeting_id: int, audio_path: str) -> Optional[MeetingStatus]:
        """Run the whole pipeline for one meeting.

        Returns the terminal status reached, or None when the run was skipped
        (meeting missing, already past ``uploading``, or deleted mid-run).
        """
        # Entries are kept so every caller for an id shares one lock
        with _get_lock(meeting_id):
            return self._run(meeting_id, Path(audio_path))

    def _run(self, meeting_id: int, audio_path: Path) -> Optional[MeetingStatus]:
        meeting = self._load(meeting_id)
        if meeting is None:
            logger.warning("Meeting %s not found; nothing to process", meeting_id)
            return None
        if meeting.status != MeetingStatus.UPLOADING.value:
            logger.warning("Meeting %s is %s, not uploading; skipping", meeting_id, meeting.status)
            return None

        step = "transcription"
        try:
            # Step 1: transcription
            self._advance(meeting_id, MeetingStatus.TRANSCRIBING)
            logger.info("Meeting %s: transcribing %s", meeting_id, audio_path.name)
            transcript = self._transcriber.transcribe(audio_path)

            # Step 2
            step = "summarization"
            self._advance(meeting_id, MeetingStatus.SUMMARIZING, transcription=transcript.text)

            # Step 3: summarization
            logger.info("Meeting %s: summarizing %d characters", meeting_id, len(transcript.text))
            result = self._summarizer.summarize(transcript.text)

            # Step 4
            step = "saving summary"
            self._advance(
                meeting_id,
                MeetingStatus.COMPLETED,
                summary=result.summary,
                key_decisions=list(result.key_decisions),
                action_items=list(result.action_items),
            )
            logger.info("Meeting %s: completed", meeting_id)
        except MeetingNotFound:
            logger.warning("Meeting %s was deleted while processing; stopping", meeting_id)
            return None
        except InvalidTransition as e:
            logger.error("%s; stopping", e)
            return None
        except Exception as e:
            # Collaborator and persistence faults alike; the artifact is kept
            self._fail(meeting_id, step, e)
            return MeetingStatus.FAILED

        # Steps 5 and 6 are best effort; the meeting stays completed
        self._notify(meeting_id)
        self._cleanup(meeting_id, audio_path)
        return MeetingStatus.COMPLETED

    def _notify(self, meeting_id: int) -> None:
        try:
            with self._session_factory() as session:
                meeting = MeetingsRepository(session).get_by_id(meeting_id)
                if meeting is None:
                    return
                integrations = IntegrationsRepository(session).list_by_owner(meeting.owner_id)
            self._notifier.notify(meeting, integrations)
        except Exception:
            logger.exception("Meeting %s: notification step failed", meeting_id)

    def _cleanup(self, meeting_id: int, audio_path: Path) -> None:
        try:
            if audio_path.exists():
                audio_path.unlink()
                logger.info("Meeting %s: removed %s", meeting_id, audio_path)
            with self._session_factory() as session:
                MeetingsRepository(session).update(meeting_id, audio_path=None)
        except Exception:
            logger.exception("Meeting %s: failed to clean up %s", meeting_id, audio_path)


class PipelineRunner:
    """Runs ``MeetingPipeline.process`` on a bounded pool of worker threads."""

    def __init__(self, pipeline: MeetingPipeline, max_workers: int = 4) -> None:
        self._pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="recap-pipeline")

    def submit(self, meeting_id: int, audio_path: str) -> Future:
        future = self._executor.submit(self._pipeline.process, meeting_id, audio_path)

        def _log_crash(f: Future) -> None:
            exc = f.exception()
            if exc is not None:
                logger.error("Pipeline for meeting %s crashed", meeting_id, exc_info=exc)

        future.add_done_callback(_log_crash)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
