"""
Application configuration and environment variable parsing.

``Settings`` is read from the environment once per process and then passed
into every component.  It is frozen so that a run cannot change its own
configuration half way through.  The smaller ``BargainPolicy`` and
``AnalysisConfig`` objects carry just the tunables of the bargain detector
and the analysis orchestrator.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import FatalConfigError
from .prompt import placeholder_hint

STATISTICS = ("mean", "median")


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class BargainPolicy:
    """Thresholds used to decide whether a listing is a bargain."""

    statistic: str = "median"
    min_cohort_size: int = 10
    discount_threshold: float = 0.75
    price_floor: int = 500
    cohort_window_days: int = 7

    def __post_init__(self) -> None:
        if self.statistic not in STATISTICS:
            raise ValueError(f"Unknown cohort statistic: {self.statistic}")
        if not 0 < self.discount_threshold < 1:
            raise ValueError(f"Discount threshold must be in (0, 1): {self.discount_threshold}")
        if self.min_cohort_size < 1:
            raise ValueError(f"Minimum cohort size must be positive: {self.min_cohort_size}")


@dataclass(frozen=True)
class AnalysisConfig:
    """Tunables of the chunked market analysis."""

    prompt_template: Optional[str] = None
    model: str = "gemini-2.0-flash"
    window_days: int = 7
    sample_cap: int = 0
    chunk_size: int = 400
    inter_chunk_delay: float = 60.0
    rate_limit_backoff: float = 90.0
    max_retries_per_chunk: int = 1
    max_categories: int = 50
    max_chunk_tokens: int = 0
    output_dir: str = "."

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError(f"Chunk size must be positive: {self.chunk_size}")
        if self.sample_cap < 0:
            raise ValueError(f"Sample size cannot be negative: {self.sample_cap}")


@dataclass(frozen=True)
class Settings:
    """Configuration values loaded from environment variables."""

    SQLITE_DB: str = field(default_factory=lambda: os.getenv("SQLITE_DB", "furima.db"))
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Scraping
    ENABLE_MERCARI: bool = field(default_factory=lambda: _env_bool("ENABLE_MERCARI", True))
    ENABLE_YAHOO: bool = field(default_factory=lambda: _env_bool("ENABLE_YAHOO", True))
    KEYWORDS: str = field(default_factory=lambda: os.getenv("KEYWORDS", ""))
    DEFAULT_KEYWORDS: str = field(default_factory=lambda: os.getenv("DEFAULT_KEYWORDS", "ゲーム"))
    AUTO_KEYWORD: bool = field(default_factory=lambda: _env_bool("AUTO_KEYWORD", False))
    SCRAPE_DELAY_SECONDS: float = field(default_factory=lambda: _env_float("SCRAPE_DELAY_SECONDS", 3.0))
    PAGE_TIMEOUT_MS: int = field(default_factory=lambda: _env_int("PAGE_TIMEOUT_MS", 30000))
    HEADLESS: bool = field(default_factory=lambda: _env_bool("HEADLESS", True))
    POLL_INTERVAL: int = field(default_factory=lambda: _env_int("POLL_INTERVAL", 60))
    RETENTION_DAYS: int = field(default_factory=lambda: _env_int("RETENTION_DAYS", 90))

    # Bargain detection
    BARGAIN_STATISTIC: str = field(default_factory=lambda: os.getenv("BARGAIN_STATISTIC", "median"))
    MIN_COHORT_SIZE: int = field(default_factory=lambda: _env_int("MIN_COHORT_SIZE", 10))
    DISCOUNT_THRESHOLD: float = field(default_factory=lambda: _env_float("DISCOUNT_THRESHOLD", 0.75))
    PRICE_FLOOR: int = field(default_factory=lambda: _env_int("PRICE_FLOOR", 500))
    COHORT_WINDOW_DAYS: int = field(default_factory=lambda: _env_int("COHORT_WINDOW_DAYS", 7))
    COOLDOWN_HOURS: float = field(default_factory=lambda: _env_float("COOLDOWN_HOURS", 24.0))

    # E-mail notifier
    EMAIL_USER: Optional[str] = field(default_factory=lambda: _env_str("EMAIL_USER"))
    EMAIL_PASSWORD: Optional[str] = field(default_factory=lambda: _env_str("EMAIL_PASSWORD"))
    EMAIL_TO: Optional[str] = field(default_factory=lambda: _env_str("EMAIL_TO"))
    SMTP_HOST: str = field(default_factory=lambda: os.getenv("SMTP_HOST", "smtp.gmail.com"))
    SMTP_PORT: int = field(default_factory=lambda: _env_int("SMTP_PORT", 587))

    # Summarizer and analysis
    GEMINI_API_KEY: Optional[str] = field(default_factory=lambda: _env_str("GEMINI_API_KEY"))
    GEMINI_PROMPT: Optional[str] = field(default_factory=lambda: _env_str("GEMINI_PROMPT"))
    GEMINI_MODEL: str = field(default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-2.0-flash"))
    SUMMARIZER_TIMEOUT: int = field(default_factory=lambda: _env_int("SUMMARIZER_TIMEOUT", 300))
    ANALYSIS_DAYS: int = field(default_factory=lambda: _env_int("ANALYSIS_DAYS", 7))
    SAMPLE_SIZE: int = field(default_factory=lambda: _env_int("SAMPLE_SIZE", 0))
    CHUNK_SIZE: int = field(default_factory=lambda: _env_int("CHUNK_SIZE", 400))
    CHUNK_DELAY_SECONDS: float = field(default_factory=lambda: _env_float("CHUNK_DELAY_SECONDS", 60.0))
    RATE_LIMIT_BACKOFF_SECONDS: float = field(
        default_factory=lambda: _env_float("RATE_LIMIT_BACKOFF_SECONDS", 90.0)
    )
    MAX_RETRIES_PER_CHUNK: int = field(default_factory=lambda: _env_int("MAX_RETRIES_PER_CHUNK", 1))
    MAX_CHUNK_TOKENS: int = field(default_factory=lambda: _env_int("MAX_CHUNK_TOKENS", 1000000))
    REPORT_DIR: str = field(default_factory=lambda: os.getenv("REPORT_DIR", "."))

    def keyword_list(self) -> List[str]:
        return _split_csv(self.KEYWORDS)

    def default_keyword_list(self) -> List[str]:
        return _split_csv(self.DEFAULT_KEYWORDS)

    def email_recipients(self) -> List[str]:
        return _split_csv(self.EMAIL_TO)

    def bargain_policy(self) -> BargainPolicy:
        try:
            return BargainPolicy(
                statistic=self.BARGAIN_STATISTIC.strip().lower(),
                min_cohort_size=self.MIN_COHORT_SIZE,
                discount_threshold=self.DISCOUNT_THRESHOLD,
                price_floor=self.PRICE_FLOOR,
                cohort_window_days=self.COHORT_WINDOW_DAYS,
            )
        except ValueError as exc:
            raise FatalConfigError(
                ["BARGAIN_STATISTIC", "MIN_COHORT_SIZE", "DISCOUNT_THRESHOLD"], str(exc)
            ) from exc

    def analysis_config(self) -> AnalysisConfig:
        try:
            return AnalysisConfig(
                prompt_template=self.GEMINI_PROMPT,
                model=self.GEMINI_MODEL,
                window_days=self.ANALYSIS_DAYS,
                sample_cap=self.SAMPLE_SIZE,
                chunk_size=self.CHUNK_SIZE,
                inter_chunk_delay=self.CHUNK_DELAY_SECONDS,
                rate_limit_backoff=self.RATE_LIMIT_BACKOFF_SECONDS,
                max_retries_per_chunk=self.MAX_RETRIES_PER_CHUNK,
                max_chunk_tokens=self.MAX_CHUNK_TOKENS,
                output_dir=self.REPORT_DIR,
            )
        except ValueError as exc:
            raise FatalConfigError(["CHUNK_SIZE", "SAMPLE_SIZE"], str(exc)) from exc

    def require_analysis(self) -> None:
        """Raise ``FatalConfigError`` unless the analysis can be run."""
        missing = []
        if not self.GEMINI_API_KEY:
            missing.append("GEMINI_API_KEY")
        if not self.GEMINI_PROMPT:
            missing.append("GEMINI_PROMPT")
        if missing:
            hint = ""
            if "GEMINI_PROMPT" in missing:
                hint = placeholder_hint()
            raise FatalConfigError(missing, hint)


def get_settings() -> Settings:
    """Factory function to create a new Settings instance.

    Using a function rather than a global instance ensures environment
    variables are read each time the settings are needed, which is
    useful for testing and dynamic reloads.
    """
    return Settings()
