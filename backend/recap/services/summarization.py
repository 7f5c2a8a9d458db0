from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
import json
import logging
import threading

from recap.config import Settings

logger = logging.getLogger("recap.summarization")


FALLBACK_SUMMARY = "No summary available"

# What a JS-style client produces when it stringifies an object by mistake
OBJECT_PLACEHOLDER = "[object Object]"

SYSTEM_PROMPT = (
    "You are an expert meeting summarizer. Analyze the meeting transcription and "
    "provide a structured summary in JSON format with the following fields:\n"
    "- summary: A concise bullet-point summary of the main topics discussed, as one string\n"
    "- keyDecisions: An array of key decisions made during the meeting, each a string\n"
    "- actionItems: An array of specific action items with assignees if mentioned, each a string\n"
    "Respond with valid JSON only."
)


class SummarizationError(RuntimeError):
    """Raised for upstream faults and responses that cannot be parsed."""


@dataclass
class SummaryResult:
    summary: str
    key_decisions: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)


class Summarizer(Protocol):
    def summarize(self, transcript: str) -> SummaryResult:
        ...


def _clean_items(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    out: List[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        text = item.strip()
        if not text or text == OBJECT_PLACEHOLDER:
            continue
        out.append(text)
    return out


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def normalize_summary(data: Any) -> SummaryResult:
    """Coerce a model's JSON object into a SummaryResult.

    A non-string summary is replaced by FALLBACK_SUMMARY; list entries that
    are not text, or are the object placeholder, are dropped.
    """
    if not isinstance(data, dict):
        raise SummarizationError("Summary response was not a JSON object")

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = FALLBACK_SUMMARY

    return SummaryResult(
        summary=summary.strip(),
        key_decisions=_clean_items(_first_present(data, "keyDecisions", "key_decisions")),
        action_items=_clean_items(_first_present(data, "actionItems", "action_items")),
    )


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse model output, tolerating prose around a single JSON object."""
    t = (text or "").strip()
    try:
        parsed = json.loads(t)
    except ValueError:
        # Try to extract the first {...} block
        start = t.find("{")
        end = t.rfind("}")
        if start == -1 or end <= start:
            raise SummarizationError("Summary response was not valid JSON")
        try:
            parsed = json.loads(t[start : end + 1])
        except ValueError as e:
            raise SummarizationError(f"Summary response was not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise SummarizationError("Summary response was not a JSON object")
    return parsed


def _user_prompt(transcript: str) -> str:
    return f"Please analyze this meeting transcription and provide a structured summary:\n\n{transcript}"


class OpenAISummarizer:
    """Chat completion in JSON mode."""

    def __init__(self, settings: Optional[Settings] = None, client: Any = None) -> None:
        self._settings = settings or Settings()
        self._client = client
        self._client_lock = threading.Lock()

    def _get_client(self) -> Any:
        with self._client_lock:
            if self._client is None:
                from openai import OpenAI

                self._client = OpenAI(
                    api_key=self._settings.openai_api_key,
                    timeout=self._settings.openai_timeout_seconds,
                    max_retries=self._settings.openai_max_retries,
                )
            return self._client

    def summarize(self, transcript: str) -> SummaryResult:
        try:
            client = self._get_client()
            resp = client.chat.completions.create(
                model=self._settings.summary_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": _user_prompt(transcript)},
                ],
                response_format={"type": "json_object"},
            )
            content = resp.choices[0].message.content or "{}"
        except Exception as e:
            raise SummarizationError(f"Failed to summarize meeting: {e}") from e
        return normalize_summary(parse_json_object(content))


class LlamaSummarizer:
    """Local GGUF model through llama-cpp-python."""

    def __init__(self, settings: Optional[Settings] = None, llm: Any = None) -> None:
        self._settings = settings or Settings()
        self._llm = llm
        self._llm_lock = threading.Lock()

    def _resolve_model_path(self) -> Path:
        if self._settings.llm_model_path:
            p = Path(self._settings.llm_model_path).expanduser()
            if p.exists():
                return p
            raise FileNotFoundError(f"LLM model file not found: {p}")
        found = sorted((self._settings.models_dir / "llm").glob("**/*.gguf"))
        if found:
            return found[0]
        raise FileNotFoundError("No local LLM model configured or found. Set RECAP_LLM_MODEL_PATH.")

    def _ensure_llm(self) -> Any:
        with self._llm_lock:
            if self._llm is None:
                from llama_cpp import Llama  # type: ignore

                self._llm = Llama(model_path=str(self._resolve_model_path()), n_ctx=32768, verbose=False)
            return self._llm

    def summarize(self, transcript: str) -> SummaryResult:
        try:
            llm = self._ensure_llm()
            resp = llm.create_chat_completion(
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": _user_prompt(transcript)},
                ],
                temperature=0.2,
                response_format={"type": "json_object"},
            )
            content = str(resp["choices"][0]["message"]["content"] or "")
        except Exception as e:
            raise SummarizationError(f"Failed to summarize meeting: {e}") from e
        return normalize_summary(parse_json_object(content))


def build_summarizer(settings: Settings) -> Summarizer:
    if settings.summarization_backend == "local":
        logger.info("Using local llama.cpp summarization")
        return LlamaSummarizer(settings)
    return OpenAISummarizer(settings)
