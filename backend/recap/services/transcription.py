from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from recap.config import Settings

logger = logging.getLogger("recap.transcription")


class TranscriptionError(RuntimeError):
    """Raised for any upstream fault while turning audio into text."""


@dataclass
class TranscriptionResult:
    text: str
    duration: Optional[float] = None  # seconds, when the engine reports it


class Transcriber(Protocol):
    def transcribe(self, audio_path: Path) -> TranscriptionResult:
        ...


class OpenAITranscriber:
    """Hosted Whisper through the OpenAI audio API."""

    def __init__(self, settings: Optional[Settings] = None, client: Any = None) -> None:
        self._settings = settings or Settings()
        self._client = client
        self._client_lock = threading.Lock()

    def _get_client(self) -> Any:
        # Built on first use so the app can start without credentials
        with self._client_lock:
            if self._client is None:
                from openai import OpenAI

                self._client = OpenAI(
                    api_key=self._settings.openai_api_key,
                    timeout=self._settings.openai_timeout_seconds,
                    max_retries=self._settings.openai_max_retries,
                )
            return self._client

    def transcribe(self, audio_path: Path) -> TranscriptionResult:
        path = Path(audio_path)
        try:
            client = self._get_client()
            with path.open("rb") as fh:
                resp = client.audio.transcriptions.create(
                    file=fh,
                    model=self._settings.transcription_model,
                )
        except Exception as e:
            raise TranscriptionError(f"Failed to transcribe audio: {e}") from e

        text = getattr(resp, "text", None)
        if not isinstance(text, str):
            raise TranscriptionError("Transcription response did not contain text")
        return TranscriptionResult(text=text, duration=getattr(resp, "duration", None))


class LocalWhisperTranscriber:
    """faster-whisper running on this machine, with a cached model."""

    def __init__(self, settings: Optional[Settings] = None, model: Any = None) -> None:
        self._settings = settings or Settings()
        self._model = model
        self._model_lock = threading.Lock()

    def _ensure_model(self) -> Any:
        with self._model_lock:
            if self._model is not None:
                return self._model
            # Lazy import to avoid heavy module import during app startup
            from faster_whisper import WhisperModel  # type: ignore

            download_root = str((self._settings.models_dir / "whisper" / "faster-whisper").resolve())
            device = self._settings.whisper_device
            compute_type = "float16" if device == "cuda" else "default"
            self._model = WhisperModel(
                self._settings.whisper_model_id,
                device=device,
                compute_type=compute_type,
                download_root=download_root,
            )
            return self._model

    def transcribe(self, audio_path: Path) -> TranscriptionResult:
        try:
            model = self._ensure_model()
            seg_iter, info = model.transcribe(
                str(audio_path),
                vad_filter=True,
                task="transcribe",
                beam_size=1,
                temperature=0.0,
                condition_on_previous_text=False,
            )
            # Segments are lazy; decoding happens while iterating
            parts = [(seg.text or "").strip() for seg in seg_iter]
        except Exception as e:
            raise TranscriptionError(f"Failed to transcribe audio: {e}") from e

        text = " ".join(p for p in parts if p)
        duration = float(getattr(info, "duration", 0.0) or 0.0) or None
        return TranscriptionResult(text=text, duration=duration)


def build_transcriber(settings: Settings) -> Transcriber:
    if settings.transcription_backend == "local":
        logger.info("Using local faster-whisper transcription (%s)", settings.whisper_model_id)
        return LocalWhisperTranscriber(settings)
    return OpenAITranscriber(settings)
