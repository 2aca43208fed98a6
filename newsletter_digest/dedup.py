"""In-run deduplication of feed items."""

import hashlib

from .logging_config import create_execution_logger
from .models import NO_LINK, FeedItem


class Deduplicator:
    """Drops repeated items within a single aggregation run."""

    def __init__(self, execution_id: str | None = None):
        self.logger = create_execution_logger("deduplicator", execution_id)

    def generate_item_id(self, item: FeedItem) -> str:
        """Generate a unique identifier for a feed item.

        Uses the link when it is a real URL. Link-less items are hashed over
        every field, so only exact repeats collapse.
        """
        if item.link and item.link != NO_LINK:
            return item.link

        hash_input = "\x1f".join(
            (item.source, item.title, item.summary, item.published.isoformat())
        )
        return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()

    def filter_unique(self, items: list[FeedItem]) -> list[FeedItem]:
        """Keep the first occurrence of every item, preserving order."""
        seen: set[str] = set()
        unique = []
        for item in items:
            item_id = self.generate_item_id(item)
            if item_id in seen:
                self.logger.debug(
                    "Skipping duplicate item",
                    item_title=item.title,
                    source_name=item.source,
                )
                continue
            seen.add(item_id)
            unique.append(item)

        if len(unique) < len(items):
            self.logger.info(
                f"Removed {len(items) - len(unique)} duplicate items",
                duplicates=len(items) - len(unique),
            )
        return unique
