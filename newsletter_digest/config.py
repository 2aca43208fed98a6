"""Configuration management for Newsletter Digest."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from .models import Source


@dataclass(frozen=True)
class ModelVariant:
    """One chat model the classifier may call."""

    model_id: str
    max_tokens: int


@dataclass
class LLMConfig:
    """Configuration for the categorization model provider."""

    provider: str = "groq"
    base_url: str = "https://api.groq.com/openai/v1"
    region: str = "us-east-1"
    models: list[ModelVariant] = field(
        default_factory=lambda: [
            ModelVariant("llama-3.1-8b-instant", 3000),
            ModelVariant("llama-3.3-70b-versatile", 4000),
        ]
    )
    temperature: float = 0.3
    max_retries: int = 2
    call_timeout: float = 25.0
    retry_delay: float = 2.0
    prompt_item_limit: int = 20


@dataclass
class FetchConfig:
    """Configuration for feed downloads and parsing."""

    timeout: float = 10.0
    cache_bust: bool = True
    entries_per_feed: int = 8
    max_items: int = 25


@dataclass
class PipelineConfig:
    """Wall-clock budget for one invocation."""

    budget_seconds: float = 20.0
    execution_limit_seconds: float = 26.0


FOCUS_AREAS = {
    "actionable": (
        "Focus on Actionable Tools",
        "Prioritize tools and products I can use immediately",
    ),
    "business": (
        "Business & Investment Focus",
        "Highlight funding, acquisitions, and business opportunities",
    ),
    "research": (
        "Research & Breakthroughs",
        "Focus on scientific advances and technical innovations",
    ),
    "safety": (
        "Safety & Regulation",
        "Emphasize AI safety, ethics, and regulatory developments",
    ),
    "creative": (
        "Creative & Content Tools",
        "Highlight tools for content creation and creative work",
    ),
    "industry": (
        "Industry Applications",
        "Focus on AI applications in specific industries",
    ),
}

DEFAULT_FOCUS_AREA = "actionable"

BEDROCK_DEFAULT_MODELS = [
    ModelVariant("amazon.nova-micro-v1:0", 3000),
    ModelVariant("amazon.nova-lite-v1:0", 4000),
]


def resolve_focus_area(focus_area: str | None) -> str:
    """Expand a preset key into its description, or pass free text through."""
    text = (focus_area or "").strip() or DEFAULT_FOCUS_AREA
    preset = FOCUS_AREAS.get(text.lower())
    if preset:
        title, description = preset
        return f"{title}: {description}"
    return text


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


class Config:
    """Main configuration manager."""

    FEEDS_FILE = "feeds.json"

    DEFAULT_SOURCES = [
        Source(
            "The Rundown University",
            "https://kill-the-newsletter.com/feeds/j3o5qsdo3qyhv731fbsi.xml",
        ),
        Source(
            "Superhuman",
            "https://kill-the-newsletter.com/feeds/a46l1m0i8euwqe63m10a.xml",
        ),
        Source(
            "AI Fire",
            "https://kill-the-newsletter.com/feeds/zaazvf0he2v851mjk1xi.xml",
        ),
        Source(
            "AI Secret",
            "https://kill-the-newsletter.com/feeds/6pvsjo3xm8ysgyfprfbs.xml",
        ),
        Source(
            "Future//Proof",
            "https://kill-the-newsletter.com/feeds/6fsx1zjrdbk8pgmqniek.xml",
        ),
        Source(
            "AI Essentials",
            "https://kill-the-newsletter.com/feeds/owiptwtkmqlaot94d3k0.xml",
        ),
    ]

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.aws_region = os.getenv(
            "CURRENT_AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        )
        self.llm_provider = os.getenv("LLM_PROVIDER", "groq").strip().lower()
        if self.llm_provider not in ("groq", "bedrock"):
            raise ValueError(
                f"LLM_PROVIDER must be 'groq' or 'bedrock', got {self.llm_provider!r}"
            )
        self.llm_api_key = os.getenv("GROQ_API_KEY") or os.getenv("LLM_API_KEY", "")
        self.llm_api_key_secret_name = os.getenv("LLM_API_KEY_SECRET_NAME", "")
        self.llm_base_url = os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1")
        self.llm_models = [
            model.strip()
            for model in os.getenv("LLM_MODELS", "").split(",")
            if model.strip()
        ]
        self.llm_max_retries = _env_int("LLM_MAX_RETRIES", 2)
        self.llm_call_timeout = _env_float("LLM_CALL_TIMEOUT", 25.0)
        self.llm_retry_delay = _env_float("LLM_RETRY_DELAY", 2.0)
        self.feed_timeout = _env_float("FEED_TIMEOUT", 10.0)
        self.feed_cache_bust = _env_bool("FEED_CACHE_BUST", True)
        self.max_items = _env_int("MAX_ITEMS", 25)
        self.entries_per_feed = _env_int("ENTRIES_PER_FEED", 8)
        self.budget_seconds = _env_float("DIGEST_BUDGET_SECONDS", 20.0)
        self.execution_limit_seconds = _env_float("EXECUTION_LIMIT_SECONDS", 26.0)
        self.feeds_file = os.getenv("FEEDS_FILE", self.FEEDS_FILE)
        self.cloudwatch_namespace = os.getenv("CLOUDWATCH_NAMESPACE", "")

    def get_default_sources(self) -> list[Source]:
        """Get default sources from the feeds file, or the built-in list."""
        feeds_file = Path(self.feeds_file)
        if not feeds_file.exists():
            # Try in Lambda root directory
            feeds_file = Path("/var/task") / self.feeds_file

        if not feeds_file.exists():
            return list(self.DEFAULT_SOURCES)

        try:
            with open(feeds_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in feeds file: {e}") from e

        sources = [
            Source(feed.get("name") or feed["url"], feed["url"])
            for feed in data.get("feeds", [])
            if feed.get("enabled", True) and "url" in feed
        ]
        if not sources:
            raise ValueError(f"No enabled feeds found in {self.feeds_file}")
        return sources

    def get_llm_config(self) -> LLMConfig:
        """Get model provider configuration."""
        config = LLMConfig(
            provider=self.llm_provider,
            base_url=self.llm_base_url,
            region=self.aws_region,
            max_retries=self.llm_max_retries,
            call_timeout=self.llm_call_timeout,
            retry_delay=self.llm_retry_delay,
        )
        if self.llm_models:
            # First model is the fast one and gets the smaller token budget
            config.models = [
                ModelVariant(model, 3000 if index == 0 else 4000)
                for index, model in enumerate(self.llm_models)
            ]
        elif self.llm_provider == "bedrock":
            config.models = list(BEDROCK_DEFAULT_MODELS)
        return config

    def get_fetch_config(self) -> FetchConfig:
        """Get feed fetching configuration."""
        return FetchConfig(
            timeout=self.feed_timeout,
            cache_bust=self.feed_cache_bust,
            entries_per_feed=self.entries_per_feed,
            max_items=self.max_items,
        )

    def get_pipeline_config(self) -> PipelineConfig:
        """Get time budget configuration."""
        return PipelineConfig(
            budget_seconds=self.budget_seconds,
            execution_limit_seconds=self.execution_limit_seconds,
        )
