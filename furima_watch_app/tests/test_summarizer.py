"""
Tests for the Gemini client's error mapping, using a stand-in SDK client.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest
from google.genai import errors

from furima_watch_app.errors import FatalConfigError, RateLimitError, SummarizerError, TransientIOError
from furima_watch_app.settings import Settings
from furima_watch_app.summarizer import GeminiSummarizer


def api_error(cls: type, code: int, status: str) -> errors.APIError:
    return cls(code, {"error": {"code": code, "message": f"{status} from server", "status": status}})


class FakeModels:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.calls: List[Dict[str, Any]] = []

    def generate_content(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def make_client(outcome: Any) -> GeminiSummarizer:
    fake = SimpleNamespace(models=FakeModels(outcome))
    return GeminiSummarizer(Settings(GEMINI_API_KEY="secret"), client=fake)


def test_generate_returns_text() -> None:
    response = SimpleNamespace(
        text="## Report\nbody",
        usage_metadata=SimpleNamespace(prompt_token_count=120, candidates_token_count=30),
    )
    summarizer = make_client(response)
    assert summarizer.generate("gemini-2.0-flash", "prompt") == "## Report\nbody"
    assert summarizer.client.models.calls == [{"model": "gemini-2.0-flash", "contents": "prompt"}]


def test_rate_limit_is_distinguished() -> None:
    with pytest.raises(RateLimitError):
        make_client(api_error(errors.ClientError, 429, "RESOURCE_EXHAUSTED")).generate("m", "p")


@pytest.mark.parametrize(
    "outcome",
    [
        api_error(errors.ServerError, 500, "INTERNAL"),
        api_error(errors.ClientError, 400, "INVALID_ARGUMENT"),
        SimpleNamespace(text=None, prompt_feedback="blocked"),
    ],
)
def test_other_failures_raise_summarizer_error(outcome: Any) -> None:
    with pytest.raises(SummarizerError) as excinfo:
        make_client(outcome).generate("m", "p")
    assert not isinstance(excinfo.value, RateLimitError)


def test_connection_error_is_transient() -> None:
    with pytest.raises(TransientIOError):
        make_client(httpx.ConnectError("refused")).generate("m", "p")


def test_missing_api_key() -> None:
    with pytest.raises(FatalConfigError):
        GeminiSummarizer(Settings(GEMINI_API_KEY=None))
