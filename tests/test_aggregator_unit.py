"""Unit tests for concurrent feed aggregation."""

from datetime import UTC, datetime, timedelta

import requests

from newsletter_digest.aggregator import FeedAggregator
from newsletter_digest.errors import FetchTimeout
from newsletter_digest.models import Source
from newsletter_digest.rss import FeedProcessor


class FakeFetcher:
    """Serves canned documents, or raises canned errors, by URL."""

    def __init__(self, documents):
        self.documents = documents
        self.calls = []

    def fetch(self, url, timeout=None, cache_bust=False):
        self.calls.append((url, cache_bust))
        outcome = self.documents[url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def atom_feed(prefix, dates):
    entries = "".join(
        f"<entry><id>urn:{prefix}:{i}</id><title>{prefix} {i}</title>"
        f'<link href="https://example.com/{prefix}/{i}"/>'
        f"<published>{date.isoformat()}</published></entry>"
        for i, date in enumerate(dates)
    )
    return f'<feed xmlns="http://www.w3.org/2005/Atom"><title>{prefix}</title>{entries}</feed>'


BASE = datetime(2024, 5, 1, tzinfo=UTC)


class TestFeedAggregatorUnit:
    """Unit tests for FeedAggregator."""

    def test_merges_and_sorts_newest_first(self):
        fetcher = FakeFetcher(
            {
                "https://a.test/feed": atom_feed("a", [BASE, BASE + timedelta(hours=5)]),
                "https://b.test/feed": atom_feed("b", [BASE + timedelta(hours=2)]),
            }
        )
        aggregator = FeedAggregator(fetcher, FeedProcessor())

        batch = aggregator.aggregate(
            [Source("A", "https://a.test/feed"), Source("B", "https://b.test/feed")]
        )

        assert [item.title for item in batch] == ["a 1", "b 0", "a 0"]
        assert [item.source for item in batch] == ["A", "B", "A"]
        assert batch.sources_total == 2
        assert batch.sources_failed == 0

    def test_failing_sources_contribute_nothing(self):
        fetcher = FakeFetcher(
            {
                "https://ok.test/feed": atom_feed("ok", [BASE, BASE]),
                "https://slow.test/feed": FetchTimeout("https://slow.test/feed", 10),
                "https://down.test/feed": requests.ConnectionError("refused"),
                "https://json.test/feed": '{"error": "feed expired"}',
            }
        )
        aggregator = FeedAggregator(fetcher, FeedProcessor())

        batch = aggregator.aggregate(
            [
                Source("Slow", "https://slow.test/feed"),
                Source("Ok", "https://ok.test/feed"),
                Source("Down", "https://down.test/feed"),
                Source("Json", "https://json.test/feed"),
            ]
        )

        assert len(batch) == 2
        assert {item.source for item in batch} == {"Ok"}
        assert batch.sources_failed == 2

    def test_truncates_to_max_items(self):
        documents = {
            f"https://{name}.test/feed": atom_feed(
                name, [BASE + timedelta(minutes=i) for i in range(8)]
            )
            for name in ("a", "b", "c", "d")
        }
        aggregator = FeedAggregator(FakeFetcher(documents), FeedProcessor())

        batch = aggregator.aggregate(
            [Source(name, f"https://{name}.test/feed") for name in ("a", "b", "c", "d")]
        )

        assert len(batch) == 25

    def test_duplicate_links_across_sources_collapsed(self):
        shared = atom_feed("shared", [BASE])
        fetcher = FakeFetcher(
            {"https://one.test/feed": shared, "https://two.test/feed": shared}
        )
        aggregator = FeedAggregator(fetcher, FeedProcessor())

        batch = aggregator.aggregate(
            [Source("One", "https://one.test/feed"), Source("Two", "https://two.test/feed")]
        )

        assert len(batch) == 1

    def test_linkless_untitled_entries_all_kept(self):
        entries = "".join(
            f"<entry><summary>Story number {i}</summary>"
            f"<updated>2024-05-0{i + 1}T10:00:00Z</updated></entry>"
            for i in range(3)
        )
        document = f'<feed xmlns="http://www.w3.org/2005/Atom"><title>Bare</title>{entries}</feed>'
        fetcher = FakeFetcher({"https://bare.test/feed": document})
        aggregator = FeedAggregator(fetcher, FeedProcessor())

        batch = aggregator.aggregate([Source("Bare", "https://bare.test/feed")])

        assert len(batch) == 3
        assert {item.title for item in batch} == {"No title"}
        assert {item.link for item in batch} == {"#"}

    def test_no_sources_gives_empty_batch(self):
        aggregator = FeedAggregator(FakeFetcher({}), FeedProcessor())

        batch = aggregator.aggregate([])

        assert len(batch) == 0
        assert batch.items == []

    def test_cache_bust_forwarded_to_fetcher(self):
        fetcher = FakeFetcher({"https://a.test/feed": atom_feed("a", [BASE])})
        aggregator = FeedAggregator(fetcher, FeedProcessor(), cache_bust=False)

        aggregator.aggregate([Source("A", "https://a.test/feed")])

        assert fetcher.calls == [("https://a.test/feed", False)]

    def test_fresh_items_counted(self):
        now = datetime.now(UTC)
        fetcher = FakeFetcher(
            {
                "https://a.test/feed": atom_feed(
                    "a", [now - timedelta(hours=1), now - timedelta(days=3)]
                )
            }
        )
        aggregator = FeedAggregator(fetcher, FeedProcessor())

        batch = aggregator.aggregate([Source("A", "https://a.test/feed")])

        assert batch.fresh_items == 1
