"""Unit tests for the feed parser on specific document formats."""

from datetime import UTC, datetime, timedelta

from newsletter_digest.models import FeedItem
from newsletter_digest.rss import ATOM, RSS, FeedProcessor

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>The Rundown</title>
  <id>urn:feed:rundown</id>
  <entry>
    <id>urn:entry:1</id>
    <title>First &amp; foremost</title>
    <link rel="alternate" type="text/html" href="https://example.com/first"/>
    <published>2024-05-01T10:00:00Z</published>
    <summary type="html">&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</summary>
  </entry>
  <entry>
    <id>urn:entry:2</id>
    <title>Second</title>
    <link href="https://example.com/second"/>
    <updated>2024-05-02T08:30:00+02:00</updated>
    <content type="html">&lt;div&gt;&lt;h2&gt;Big news&lt;/h2&gt;&lt;p&gt;Details inside.&lt;/p&gt;&lt;/div&gt;</content>
  </entry>
</feed>
"""

RSS_FEED = """<?xml version="1.0"?>
<rss version="2.0">
  <channel>
    <title>AI Fire</title>
    <item>
      <title><![CDATA[Tool <em>launch</em>]]></title>
      <link>https://example.com/tool</link>
      <description><![CDATA[<p>A new tool for <a href="https://x.test">agents</a>.</p>]]></description>
      <pubDate>Wed, 01 May 2024 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""


def atom_entries(count: int) -> str:
    entries = "".join(
        f"<entry><id>urn:entry:{i}</id><title>Entry {i}</title>"
        f'<link href="https://example.com/{i}"/>'
        f"<published>2024-05-01T{i % 24:02d}:00:00Z</published></entry>"
        for i in range(count)
    )
    return f'<feed xmlns="http://www.w3.org/2005/Atom"><title>t</title>{entries}</feed>'


class TestFeedProcessorUnit:
    """Unit tests for specific RSS/Atom feed formats."""

    def test_atom_parsing(self):
        processor = FeedProcessor()

        items = processor.parse_feed(ATOM_FEED, "The Rundown")

        assert len(items) == 2
        first, second = items
        assert isinstance(first, FeedItem)
        assert first.title == "First & foremost"
        assert first.summary == "Hello world"
        assert first.link == "https://example.com/first"
        assert first.source == "The Rundown"
        assert first.published == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)

        assert second.link == "https://example.com/second"
        assert "Big news" in second.summary
        assert "Details inside." in second.summary
        assert "<h2>" not in second.summary
        assert second.published == datetime(2024, 5, 2, 6, 30, tzinfo=UTC)

    def test_rss_2_0_parsing_with_cdata(self):
        processor = FeedProcessor()

        items = processor.parse_feed(RSS_FEED, "AI Fire")

        assert len(items) == 1
        item = items[0]
        assert "launch" in item.title
        assert "<em>" not in item.title
        assert item.summary.startswith("A new tool for agents")
        assert "<p>" not in item.summary
        assert item.link == "https://example.com/tool"
        assert item.published == datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    def test_json_error_body_yields_no_items(self):
        processor = FeedProcessor()

        assert processor.parse_feed('{"error": "Feed not found"}', "Broken") == []
        assert processor.parse_feed('{"message": "rate limited"}', "Broken") == []

    def test_non_feed_content_yields_no_items(self):
        processor = FeedProcessor()

        assert processor.parse_feed("", "Empty") == []
        assert processor.parse_feed("Service unavailable", "Plain") == []
        assert processor.parse_feed("<html><body>Oops</body></html>", "Html") == []

    def test_entries_capped_in_document_order(self):
        processor = FeedProcessor()

        items = processor.parse_feed(atom_entries(12), "Busy")

        assert [item.title for item in items] == [f"Entry {i}" for i in range(8)]

    def test_custom_entry_cap(self):
        processor = FeedProcessor(entries_per_feed=3)

        assert len(processor.parse_feed(atom_entries(5), "Busy")) == 3

    def test_missing_fields_use_placeholders(self):
        processor = FeedProcessor()
        document = (
            '<feed xmlns="http://www.w3.org/2005/Atom"><title>t</title>'
            "<entry><id>urn:entry:bare</id></entry></feed>"
        )

        before = datetime.now(UTC)
        items = processor.parse_feed(document, "Sparse")
        after = datetime.now(UTC)

        assert len(items) == 1
        item = items[0]
        assert item.title == "No title"
        assert item.summary == "No summary available"
        assert item.link == "#"
        assert before <= item.published <= after

    def test_invalid_date_becomes_now(self):
        processor = FeedProcessor()
        document = (
            '<feed xmlns="http://www.w3.org/2005/Atom"><title>t</title>'
            "<entry><id>urn:e</id><title>Undated</title>"
            "<published>not a date</published></entry></feed>"
        )

        items = processor.parse_feed(document, "Sloppy")

        assert len(items) == 1
        assert items[0].published.tzinfo is not None
        assert datetime.now(UTC) - items[0].published < timedelta(minutes=1)

    def test_summary_truncated_with_ellipsis(self):
        processor = FeedProcessor()
        long_text = "word " * 200
        document = (
            '<rss version="2.0"><channel><title>t</title><item>'
            f"<title>Long</title><description>{long_text}</description>"
            "</item></channel></rss>"
        )

        items = processor.parse_feed(document, "Verbose")

        assert len(items[0].summary) == 300
        assert items[0].summary.endswith("...")

    def test_short_summary_not_truncated(self):
        processor = FeedProcessor()

        assert processor.truncate("short text") == "short text"

    def test_detect_format_prefers_atom(self):
        processor = FeedProcessor()

        assert processor.detect_format(ATOM_FEED) == ATOM
        assert processor.detect_format(RSS_FEED) == RSS

    def test_parse_date_naive_assumed_utc(self):
        processor = FeedProcessor()

        published = processor.parse_date("2024-01-01 10:00:00")

        assert published == datetime(2024, 1, 1, 10, 0, tzinfo=UTC)

    def test_html_cleaning_specific_cases(self):
        processor = FeedProcessor()

        assert processor.clean_html_content("") == ""
        assert processor.clean_html_content("  plain\n\ttext  ") == "plain text"
        assert (
            processor.clean_html_content(
                "<p>Keep</p><script>alert(1)</script><style>p{}</style>"
            )
            == "Keep"
        )

    def test_escaped_angle_brackets_preserved(self):
        processor = FeedProcessor()

        assert (
            processor.clean_html_content("<p>Context &gt; 1M tokens &lt;3</p>")
            == "Context > 1M tokens <3"
        )
