"""Data models for Newsletter Digest."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

CATEGORY_KEYS = (
    "latestNews",
    "helpfulArticles",
    "fullArticleLinks",
    "freeResources",
    "freeTrials",
    "newAITools",
    "promptSection",
)

PRIORITIES = ("high", "medium", "low")

NO_TITLE = "No title"
NO_SUMMARY = "No summary available"
NO_LINK = "#"


class FallbackReason:
    """Values reported in ``fallbackReason``."""

    NO_CONTENT = "no_content"
    TIMEOUT = "timeout"
    AI_UNAVAILABLE = "ai_unavailable"
    INVALID_RESPONSE = "invalid_response"
    EMPTY_DIGEST = "empty_digest"


@dataclass(frozen=True)
class Source:
    """A newsletter feed to aggregate."""

    name: str
    feed_url: str


@dataclass
class FeedItem:
    """Represents a single normalized RSS/Atom entry."""

    title: str
    summary: str
    link: str
    published: datetime
    source: str


@dataclass
class AggregatedBatch:
    """Time-ordered, capped items from every source of one run."""

    items: list[FeedItem] = field(default_factory=list)
    sources_total: int = 0
    sources_failed: int = 0
    fresh_items: int = 0

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __getitem__(self, index):
        return self.items[index]


@dataclass
class DigestItem:
    """One categorized entry of the digest."""

    title: str
    summary: str
    link: str
    source: str
    priority: str = "medium"


Digest = dict[str, list[DigestItem]]


def empty_digest() -> Digest:
    """Return a digest with all seven categories present and empty."""
    return {key: [] for key in CATEGORY_KEYS}


def count_digest_items(digest: Digest | None) -> int:
    if not digest:
        return 0
    return sum(len(items) for items in digest.values())


@dataclass
class DigestResult:
    """Outcome of one pipeline invocation, serialized for the client."""

    success: bool
    digest: Digest | None
    processed_at: datetime
    total_items: int
    processing_time_ms: int
    used_fallback: bool
    fallback_reason: str | None = None
    error: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase response body."""
        body: dict[str, Any] = {
            "success": self.success,
            "digest": (
                {key: [asdict(item) for item in items] for key, items in self.digest.items()}
                if self.digest is not None
                else None
            ),
            "processedAt": self.processed_at.isoformat(),
            "totalItems": self.total_items,
            "processingTimeMs": self.processing_time_ms,
            "usedFallback": self.used_fallback,
        }
        if self.fallback_reason is not None:
            body["fallbackReason"] = self.fallback_reason
        if self.error is not None:
            body["error"] = self.error
        if self.message is not None:
            body["message"] = self.message
        return body
