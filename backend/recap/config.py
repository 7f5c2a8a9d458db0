from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional, Tuple
from pydantic import Field
from pydantic_settings import BaseSettings
import os


def _home() -> Path:
    return Path(os.getenv("RECAP_HOME", "") or Path.home() / ".meeting-recap")


class Settings(BaseSettings):
    app_name: str = "Meeting Recap"

    # Base data dir (e.g., ~/.meeting-recap); override with RECAP_HOME
    home_dir: Path = Field(default_factory=_home)
    data_dir: Path = Field(default_factory=lambda: _home() / "data")
    upload_dir: Path = Field(default_factory=lambda: _home() / "uploads")
    models_dir: Path = Field(default_factory=lambda: _home() / "models")
    logs_dir: Path = Field(default_factory=lambda: _home() / "logs")

    database_path: Path = Field(default_factory=lambda: _home() / "data" / "meeting_recap.db")

    # Upload intake
    max_upload_bytes: int = 100 * 1024 * 1024
    allowed_extensions: Tuple[str, ...] = (".mp3", ".mp4", ".m4a", ".wav")

    # Background pipeline
    worker_pool_size: int = 4

    # Collaborators
    transcription_backend: Literal["openai", "local"] = "openai"
    summarization_backend: Literal["openai", "local"] = "openai"
    openai_api_key: Optional[str] = None  # None -> client reads OPENAI_API_KEY
    transcription_model: str = "whisper-1"
    summary_model: str = "gpt-4o"
    openai_timeout_seconds: float = 600.0
    openai_max_retries: int = 0

    # Local engines (optional "local" extra)
    whisper_model_id: str = "small"
    whisper_device: Literal["auto", "cpu", "cuda"] = "auto"
    llm_model_path: Optional[Path] = None

    # Notifications
    slack_bot_token: Optional[str] = None
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: Optional[str] = None

    class Config:
        env_prefix = "RECAP_"
        case_sensitive = False

    def ensure_dirs(self) -> None:
        for d in [self.home_dir, self.data_dir, self.upload_dir, self.models_dir, self.logs_dir]:
            d.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
