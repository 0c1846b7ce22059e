"""
Gemini text generation client.

This module wraps the ``google-genai`` SDK.  Rate-limit responses (HTTP
429) are raised as ``RateLimitError`` so that the analysis can back off and
retry; every other API failure is raised as ``SummarizerError`` and
connection problems as ``TransientIOError``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx
from google import genai
from google.genai import errors, types

from .errors import FatalConfigError, RateLimitError, SummarizerError, TransientIOError
from .settings import Settings

logger = logging.getLogger(__name__)


class GeminiSummarizer:
    """Client for the Gemini ``generate_content`` call."""

    def __init__(self, settings: Settings, client: Optional[Any] = None) -> None:
        if not settings.GEMINI_API_KEY:
            raise FatalConfigError(["GEMINI_API_KEY"])
        self.settings = settings
        self.client = client or genai.Client(
            api_key=settings.GEMINI_API_KEY,
            # milliseconds
            http_options=types.HttpOptions(timeout=settings.SUMMARIZER_TIMEOUT * 1000),
        )

    def generate(self, model: str, prompt: str) -> str:
        """Submit ``prompt`` to ``model`` and return the generated text."""
        started = time.monotonic()
        try:
            response = self.client.models.generate_content(model=model, contents=prompt)
        except errors.APIError as exc:
            if exc.code == 429:
                raise RateLimitError(f"Gemini rate limit (429): {exc.message}") from exc
            raise SummarizerError(f"Gemini request failed ({exc.code}): {exc.message}") from exc
        except httpx.TransportError as exc:
            raise TransientIOError(f"Gemini request failed: {exc}") from exc

        text = response.text
        if not text:
            raise SummarizerError(f"Gemini returned an empty response: {getattr(response, 'prompt_feedback', None)}")

        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            logger.debug(
                "Gemini %s answered in %.1fs (%s prompt tokens, %s output tokens)",
                model,
                time.monotonic() - started,
                usage.prompt_token_count,
                usage.candidates_token_count,
            )
        else:
            logger.debug("Gemini %s answered in %.1fs", model, time.monotonic() - started)
        return text
