"""Property-based tests for feed aggregation."""

from datetime import UTC, datetime

from hypothesis import given, settings
from hypothesis import strategies as st

from newsletter_digest.aggregator import FeedAggregator
from newsletter_digest.models import Source
from newsletter_digest.rss import FeedProcessor


class DocumentFetcher:
    def __init__(self, documents):
        self.documents = documents

    def fetch(self, url, timeout=None, cache_bust=False):
        return self.documents[url]


dates = st.datetimes(
    min_value=datetime(2000, 1, 1), max_value=datetime(2030, 1, 1)
).map(lambda d: d.replace(microsecond=0, tzinfo=UTC))


class TestFeedAggregatorProperties:
    """Property-based tests for FeedAggregator."""

    @settings(deadline=None, max_examples=40)
    @given(
        st.lists(st.lists(dates, max_size=8), min_size=1, max_size=5),
        st.integers(min_value=1, max_value=30),
    )
    def test_sorted_and_capped(self, per_source_dates, cap):
        """Output is newest first and holds min(total items, cap) entries."""
        documents = {}
        sources = []
        for index, source_dates in enumerate(per_source_dates):
            url = f"https://source{index}.test/feed"
            entries = "".join(
                f"<entry><id>urn:{index}:{i}</id><title>Item {index}-{i}</title>"
                f'<link href="https://source{index}.test/{i}"/>'
                f"<published>{date.isoformat()}</published></entry>"
                for i, date in enumerate(source_dates)
            )
            documents[url] = (
                '<feed xmlns="http://www.w3.org/2005/Atom"><title>t</title>'
                f"{entries}</feed>"
            )
            sources.append(Source(f"Source {index}", url))

        aggregator = FeedAggregator(
            DocumentFetcher(documents), FeedProcessor(), max_items=cap
        )
        batch = aggregator.aggregate(sources)

        total = sum(len(source_dates) for source_dates in per_source_dates)
        assert len(batch) == min(total, cap)
        published = [item.published for item in batch]
        assert published == sorted(published, reverse=True)
