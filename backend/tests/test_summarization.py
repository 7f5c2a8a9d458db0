from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from recap.config import Settings
from recap.services.summarization import (
    FALLBACK_SUMMARY,
    LlamaSummarizer,
    OpenAISummarizer,
    SummarizationError,
    build_summarizer,
    normalize_summary,
    parse_json_object,
)


class FakeCompletions:
    def __init__(self, content=None, error=None) -> None:
        self.content = content
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(completions: FakeCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_list_summary_is_replaced_by_fallback() -> None:
    result = normalize_summary({"summary": ["point one", "point two"], "keyDecisions": [], "actionItems": []})
    assert result.summary == FALLBACK_SUMMARY


def test_missing_or_blank_summary_uses_fallback() -> None:
    assert normalize_summary({}).summary == FALLBACK_SUMMARY
    assert normalize_summary({"summary": "   "}).summary == FALLBACK_SUMMARY


def test_non_text_entries_are_dropped() -> None:
    result = normalize_summary(
        {
            "summary": "Budget approved.",
            "keyDecisions": ["Approve budget", {"decision": "hire"}, 42, None, "[object Object]", "  "],
            "actionItems": ["  Carol books venue  ", ["nested"], "[object Object]"],
        }
    )
    assert result.summary == "Budget approved."
    assert result.key_decisions == ["Approve budget"]
    assert result.action_items == ["Carol books venue"]


def test_snake_case_keys_are_accepted() -> None:
    result = normalize_summary({"summary": "ok", "key_decisions": ["a"], "action_items": ["b"]})
    assert result.key_decisions == ["a"]
    assert result.action_items == ["b"]


def test_non_list_collections_become_empty() -> None:
    result = normalize_summary({"summary": "ok", "keyDecisions": "ship it", "actionItems": {"x": 1}})
    assert result.key_decisions == []
    assert result.action_items == []


def test_non_object_payload_is_an_error() -> None:
    with pytest.raises(SummarizationError):
        normalize_summary(["not", "an", "object"])


def test_parse_json_object_tolerates_surrounding_prose() -> None:
    text = 'Here you go:\n{"summary": "Short", "keyDecisions": []}\nThanks!'
    assert parse_json_object(text)["summary"] == "Short"


@pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]", "{broken"])
def test_parse_json_object_rejects_garbage(text: str) -> None:
    with pytest.raises(SummarizationError):
        parse_json_object(text)


def test_openai_summarizer_normalizes_response() -> None:
    completions = FakeCompletions(
        content=json.dumps(
            {
                "summary": "Team agreed on the roadmap.",
                "keyDecisions": ["Adopt roadmap v2", {"bad": True}],
                "actionItems": ["Dana drafts the plan"],
            }
        )
    )
    summarizer = OpenAISummarizer(Settings(summary_model="gpt-test"), client=_client(completions))

    result = summarizer.summarize("transcript text")

    assert result.summary == "Team agreed on the roadmap."
    assert result.key_decisions == ["Adopt roadmap v2"]
    assert result.action_items == ["Dana drafts the plan"]
    assert completions.kwargs["model"] == "gpt-test"
    assert completions.kwargs["response_format"] == {"type": "json_object"}
    assert "transcript text" in completions.kwargs["messages"][-1]["content"]


def test_openai_summarizer_wraps_upstream_errors() -> None:
    summarizer = OpenAISummarizer(Settings(), client=_client(FakeCompletions(error=ConnectionError("reset"))))
    with pytest.raises(SummarizationError, match="reset"):
        summarizer.summarize("transcript")


def test_openai_summarizer_rejects_malformed_json() -> None:
    summarizer = OpenAISummarizer(Settings(), client=_client(FakeCompletions(content="not json at all")))
    with pytest.raises(SummarizationError):
        summarizer.summarize("transcript")


def test_llama_summarizer_uses_local_model() -> None:
    class FakeLlama:
        def create_chat_completion(self, **kwargs):
            self.kwargs = kwargs
            content = json.dumps({"summary": "Local summary", "keyDecisions": ["d"], "actionItems": []})
            return {"choices": [{"message": {"content": content}}]}

    llm = FakeLlama()
    result = LlamaSummarizer(Settings(), llm=llm).summarize("hello")

    assert result.summary == "Local summary"
    assert result.key_decisions == ["d"]
    assert llm.kwargs["response_format"] == {"type": "json_object"}


def test_llama_summarizer_without_model_fails_cleanly(tmp_path) -> None:
    settings = Settings(models_dir=tmp_path / "models", llm_model_path=tmp_path / "missing.gguf")
    with pytest.raises(SummarizationError):
        LlamaSummarizer(settings).summarize("hello")


def test_build_summarizer_follows_backend_setting() -> None:
    assert isinstance(build_summarizer(Settings(summarization_backend="openai")), OpenAISummarizer)
    assert isinstance(build_summarizer(Settings(summarization_backend="local")), LlamaSummarizer)
