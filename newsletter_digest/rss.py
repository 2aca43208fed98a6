"""RSS/Atom feed parsing module for Newsletter Digest."""

import json
from datetime import UTC, datetime

import feedparser
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .errors import FeedFormatError
from .logging_config import create_execution_logger
from .models import NO_LINK, NO_SUMMARY, NO_TITLE, FeedItem

ATOM = "atom"
RSS = "rss"


class FeedProcessor:
    """Turns raw feed documents into normalized FeedItem objects."""

    def __init__(
        self,
        entries_per_feed: int = 8,
        summary_limit: int = 300,
        execution_id: str | None = None,
    ):
        """Initialize FeedProcessor with configuration.

        Args:
            entries_per_feed: Maximum entries read from each document
            summary_limit: Maximum summary length, ellipsis included
            execution_id: Execution ID for logging context
        """
        self.entries_per_feed = entries_per_feed
        self.summary_limit = summary_limit
        self.logger = create_execution_logger("feed_processor", execution_id)

    def parse_feed(self, raw_text: str, source_name: str) -> list[FeedItem]:
        """Parse one feed document. Never raises.

        Args:
            raw_text: Body returned by the feed URL
            source_name: Name of the source the document belongs to

        Returns:
            Up to ``entries_per_feed`` items in document order, or an empty
            list when the body is not a usable feed
        """
        try:
            feed_format = self.detect_format(raw_text)
            feed = feedparser.parse(raw_text)
        except FeedFormatError as e:
            self.logger.warning(
                f"Skipping source {source_name}: {e}", source_name=source_name
            )
            return []
        except Exception as e:
            self.logger.error(
                f"Failed to parse feed from {source_name}: {e}",
                source_name=source_name,
                error=str(e),
            )
            return []

        if feed.bozo and hasattr(feed, "bozo_exception"):
            self.logger.warning(
                f"Feed parsing warning for {source_name}: {feed.bozo_exception}",
                source_name=source_name,
                bozo_exception=str(feed.bozo_exception),
            )

        entries = feed.entries[: self.entries_per_feed]
        items = []
        for entry in entries:
            try:
                items.append(self.normalize_item(entry, source_name))
            except Exception as e:
                self.logger.warning(
                    f"Failed to normalize entry from {source_name}: {e}",
                    source_name=source_name,
                    error=str(e),
                )

        self.logger.info(
            "Successfully parsed feed",
            source_name=source_name,
            feed_format=feed_format,
            feed_version=feed.get("version", ""),
            items_count=len(items),
            total_entries=len(feed.entries),
        )
        return items

    def detect_format(self, raw_text: str) -> str:
        """Classify a document as Atom or RSS.

        Raises:
            FeedFormatError: If the body is an upstream error payload or has
                no feed entries at all
        """
        if not raw_text or not raw_text.strip():
            raise FeedFormatError("empty response body")

        stripped = raw_text.lstrip()
        if stripped.startswith("{"):
            try:
                payload = json.loads(stripped)
            except ValueError:
                payload = None
            if isinstance(payload, dict) and ("error" in payload or "message" in payload):
                detail = payload.get("error") or payload.get("message")
                raise FeedFormatError(f"feed service returned an error: {detail}")

        if "<" not in raw_text:
            raise FeedFormatError("response is not XML")

        # Atom entries take priority over RSS items
        if "<entry" in raw_text:
            return ATOM
        if "<item" in raw_text:
            return RSS
        raise FeedFormatError("no <entry> or <item> elements found")

    def normalize_item(self, raw_item, source_name: str) -> FeedItem:
        """Normalize a feedparser entry into a FeedItem.

        Missing fields get fixed placeholders; the entry is never dropped.
        """
        title = self.clean_html_content(raw_item.get("title") or "") or NO_TITLE

        content = raw_item.get("summary") or ""
        if not content and raw_item.get("content"):
            # Atom content is a list of typed values
            contents = raw_item.get("content")
            if isinstance(contents, list):
                content = contents[0].get("value", "") if contents else ""
            else:
                content = str(contents)
        if not content:
            content = raw_item.get("description") or ""
        summary = self.truncate(self.clean_html_content(content)) or NO_SUMMARY

        link = raw_item.get("link") or ""
        if not link:
            for candidate in raw_item.get("links") or []:
                if candidate.get("href"):
                    link = candidate["href"]
                    break
        link = link.strip() or NO_LINK

        published = self.parse_date(
            raw_item.get("published")
            or raw_item.get("updated")
            or raw_item.get("pubDate")
        )

        return FeedItem(
            title=title,
            summary=summary,
            link=link,
            published=published,
            source=source_name,
        )

    def parse_date(self, value: str | None) -> datetime:
        """Parse a feed date, falling back to the current UTC instant."""
        if not value:
            return datetime.now(UTC)
        try:
            published = date_parser.parse(value)
            if published.tzinfo is None:
                published = published.replace(tzinfo=UTC)
            return published.astimezone(UTC)
        except (ValueError, TypeError, OverflowError):
            self.logger.debug("Unparsable date, using now", raw_date=str(value)[:64])
            return datetime.now(UTC)

    def truncate(self, text: str) -> str:
        if len(text) <= self.summary_limit:
            return text
        return text[: self.summary_limit - 3].rstrip() + "..."

    def clean_html_content(self, content: str) -> str:
        """Remove HTML tags from content and normalize whitespace.

        Args:
            content: Raw content that may contain HTML

        Returns:
            Clean text content without HTML tags
        """
        if not content:
            return ""

        if "<" not in content and ">" not in content:
            return " ".join(content.split())

        soup = BeautifulSoup(content, "html.parser")

        for script in soup(["script", "style"]):
            script.decompose()

        text = soup.get_text(separator=" ")

        return " ".join(text.split())
