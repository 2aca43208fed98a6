"""Concurrent multi-source feed aggregation."""

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

from .dedup import Deduplicator
from .fetcher import BoundedFetcher
from .logging_config import create_execution_logger
from .models import AggregatedBatch, FeedItem, Source
from .rss import FeedProcessor

FRESHNESS_WINDOW = timedelta(hours=24)


class FeedAggregator:
    """Fetches every source concurrently and merges the results."""

    def __init__(
        self,
        fetcher: BoundedFetcher,
        processor: FeedProcessor,
        max_items: int = 25,
        cache_bust: bool = True,
        deduplicator: Deduplicator | None = None,
        execution_id: str | None = None,
    ):
        self.fetcher = fetcher
        self.processor = processor
        self.max_items = max_items
        self.cache_bust = cache_bust
        self.deduplicator = deduplicator or Deduplicator(execution_id)
        self.logger = create_execution_logger("aggregator", execution_id)

    def fetch_source(self, source: Source) -> list[FeedItem]:
        """Download and parse a single source."""
        raw_text = self.fetcher.fetch(source.feed_url, cache_bust=self.cache_bust)
        return self.processor.parse_feed(raw_text, source.name)

    def aggregate(self, sources: list[Source]) -> AggregatedBatch:
        """Fetch all sources and return the newest items first.

        A failing source is logged and contributes no items.
        """
        self.logger.log_execution_start(source_count=len(sources))
        if not sources:
            self.logger.log_execution_end(success=True, total_items=0)
            return AggregatedBatch()

        all_items: list[FeedItem] = []
        failed = 0
        with ThreadPoolExecutor(
            max_workers=len(sources), thread_name_prefix="feed"
        ) as executor:
            futures = [
                (source, executor.submit(self.fetch_source, source))
                for source in sources
            ]
            for source, future in futures:
                try:
                    items = future.result()
                except Exception as e:
                    failed += 1
                    self.logger.warning(
                        f"Feed {source.name} failed: {e}",
                        source_name=source.name,
                        feed_url=source.feed_url,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    continue
                all_items.extend(items)
                self.logger.log_feed_processing(source.name, len(items))

        all_items.sort(key=lambda item: item.published, reverse=True)
        unique_items = self.deduplicator.filter_unique(all_items)
        batch_items = unique_items[: self.max_items]

        cutoff = datetime.now(UTC) - FRESHNESS_WINDOW
        fresh = sum(1 for item in batch_items if item.published >= cutoff)

        self.logger.log_execution_end(
            success=True,
            total_items=len(all_items),
            batch_items=len(batch_items),
            fresh_items=fresh,
            sources_failed=failed,
        )
        return AggregatedBatch(
            items=batch_items,
            sources_total=len(sources),
            sources_failed=failed,
            fresh_items=fresh,
        )
