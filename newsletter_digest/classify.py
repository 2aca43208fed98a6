"""Digest categorization with a language model and deterministic fallback."""

import json
import re
import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

import requests

from .config import LLMConfig, ModelVariant
from .errors import (
    ClassificationExhausted,
    ModelCallError,
    ModelTimeout,
    ResponseParseError,
    SchemaValidationError,
)
from .llm import ChatClient
from .logging_config import create_execution_logger
from .models import (
    CATEGORY_KEYS,
    NO_LINK,
    NO_SUMMARY,
    NO_TITLE,
    PRIORITIES,
    Digest,
    DigestItem,
    FeedItem,
    count_digest_items,
    empty_digest,
)

PROMPT_TEMPLATE = """You are an expert AI newsletter editor. Analyze the following RSS feed content and organize it into exactly 7 categories.

Focus Area: {focus_area}

Categorize content into these 7 fields:
1. "latestNews" - Breaking AI news, company announcements, major releases
2. "helpfulArticles" - Educational content, tutorials, how-to guides
3. "fullArticleLinks" - Extract and verify all article URLs for "read more"
4. "freeResources" - PDFs, templates, downloads, free tools, resources
5. "freeTrials" - Beta access, free trials, limited-time offers
6. "newAITools" - New AI tools, product launches, software releases
7. "promptSection" - AI prompts, prompt engineering tips, prompt libraries

For each category, create an array of items with:
- title: Clear, engaging title
- summary: 2-3 sentence summary
- link: Direct URL to article/resource, copied from the content below
- source: Which newsletter this came from, copied from the content below
- priority: "high", "medium", or "low"

RSS CONTENT TO PROCESS:
{content}

IMPORTANT: Respond ONLY with valid JSON. Do not wrap in code blocks or add any other text. Return ONLY the JSON object in this exact format:
{schema}
"""

_ITEM_SHAPE = '[{"title": "...", "summary": "...", "link": "...", "source": "...", "priority": "..."}]'
_CODE_FENCE = re.compile(r"```(?:json|JSON)?\s*")


def create_fallback_digest(batch: Sequence[FeedItem]) -> Digest:
    """Distribute items round-robin over the seven categories.

    Item ``i`` lands in category ``i % 7`` with priority high below index 10,
    medium below 20 and low after that.
    """
    digest = empty_digest()
    for index, item in enumerate(batch):
        category = CATEGORY_KEYS[index % len(CATEGORY_KEYS)]
        if index < 10:
            priority = "high"
        elif index < 20:
            priority = "medium"
        else:
            priority = "low"
        digest[category].append(
            DigestItem(
                title=item.title,
                summary=item.summary,
                link=item.link,
                source=item.source,
                priority=priority,
            )
        )
    return digest


def clean_response(raw: str) -> str:
    """Strip code fences and any prose around the outermost JSON object."""
    text = _CODE_FENCE.sub("", (raw or "").strip())
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        text = text[first : last + 1]
    return text


def _text(value, placeholder: str) -> str:
    if value is None:
        return placeholder
    return str(value).strip() or placeholder


def validate_digest(data) -> Digest:
    """Coerce parsed model output into a seven-category digest.

    Raises:
        SchemaValidationError: If the payload is not an object carrying at
            least one category, or a category is not a list
    """
    if not isinstance(data, dict):
        raise SchemaValidationError(
            f"Expected a JSON object, got {type(data).__name__}"
        )
    if not any(key in data for key in CATEGORY_KEYS):
        raise SchemaValidationError(
            f"No digest categories in response, keys: {sorted(data)[:10]}"
        )

    digest = empty_digest()
    for key in CATEGORY_KEYS:
        entries = data.get(key)
        if entries is None:
            continue
        if not isinstance(entries, list):
            raise SchemaValidationError(
                f"Category {key} must be a list, got {type(entries).__name__}"
            )
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            priority = str(entry.get("priority") or "").strip().lower()
            digest[key].append(
                DigestItem(
                    title=_text(entry.get("title"), NO_TITLE),
                    summary=_text(entry.get("summary"), NO_SUMMARY),
                    link=_text(entry.get("link"), NO_LINK),
                    source=_text(entry.get("source"), "Unknown"),
                    priority=priority if priority in PRIORITIES else "medium",
                )
            )
    return digest


class DigestClassifier:
    """Asks a chat model to sort feed items into the digest categories."""

    def __init__(
        self,
        client: ChatClient,
        config: LLMConfig,
        execution_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the classifier.

        Args:
            client: Chat client shared read-only across calls
            config: Models, retry and timeout settings
            execution_id: Execution ID for logging context
            sleep: Pause between exhausted attempts
            clock: Monotonic clock the deadline is measured against
        """
        self.client = client
        self.config = config
        self.sleep = sleep
        self.clock = clock
        self.logger = create_execution_logger("classifier", execution_id)

    def classify(
        self,
        batch: Sequence[FeedItem],
        focus_area: str,
        deadline: float | None = None,
    ) -> Digest:
        """Categorize ``batch`` into a digest.

        Args:
            batch: Time-ordered feed items
            focus_area: Editorial lens passed to the model
            deadline: Absolute ``clock()`` value after which no call starts

        Raises:
            ClassificationExhausted: If no model call succeeded
            ResponseParseError: If the reply cannot be turned into a digest
        """
        prompt = self.build_prompt(batch, focus_area)
        self.logger.info(
            "Sending batch to model",
            items=len(batch),
            prompt_length=len(prompt),
            focus_area=focus_area,
        )
        raw = self.call_with_retry([{"role": "user", "content": prompt}], deadline)
        digest = self.parse_response(raw)
        self.logger.info(
            "Parsed model digest", total_items=count_digest_items(digest)
        )
        return digest

    def build_prompt(self, batch: Sequence[FeedItem], focus_area: str) -> str:
        content = [
            {
                "title": item.title,
                "summary": item.summary,
                "link": item.link,
                "source": item.source,
            }
            for item in list(batch)[: self.config.prompt_item_limit]
        ]
        schema = "{\n" + ",\n".join(
            f'  "{key}": {_ITEM_SHAPE}' for key in CATEGORY_KEYS
        ) + "\n}"
        return PROMPT_TEMPLATE.format(
            focus_area=focus_area,
            content=json.dumps(content, indent=2, ensure_ascii=False),
            schema=schema,
        )

    def attempt_plan(self) -> Iterator[tuple[int, ModelVariant, bool]]:
        """Yield ``(attempt, model, last_model_of_attempt)`` in call order."""
        models = self.config.models
        for attempt in range(1, self.config.max_retries + 2):
            for index, variant in enumerate(models):
                yield attempt, variant, index == len(models) - 1

    def call_with_retry(
        self, messages: list[dict[str, str]], deadline: float | None = None
    ) -> str:
        """Try every model on every attempt until one answers."""
        total_attempts = self.config.max_retries + 1
        last_error: Exception | None = None

        for attempt, variant, last_in_attempt in self.attempt_plan():
            timeout = self.config.call_timeout
            if deadline is not None:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    raise ClassificationExhausted(
                        "Time budget spent before any model answered"
                    ) from last_error
                timeout = min(timeout, remaining)

            try:
                content = self.call_model(variant, messages, timeout)
            except ModelCallError as e:
                last_error = e
                self.logger.log_model_attempt(
                    variant.model_id, attempt, total_attempts, success=False, error=str(e)
                )
                if last_in_attempt and attempt < total_attempts:
                    delay = self.config.retry_delay
                    if deadline is not None:
                        delay = max(0.0, min(delay, deadline - self.clock()))
                    self.logger.info(f"Waiting {delay:.1f}s before retry", delay=delay)
                    self.sleep(delay)
                continue

            self.logger.log_model_attempt(
                variant.model_id, attempt, total_attempts, success=True
            )
            return content

        raise ClassificationExhausted(
            f"All {len(self.config.models)} models failed on {total_attempts} attempts"
        ) from last_error

    def call_model(
        self, variant: ModelVariant, messages: list[dict[str, str]], timeout: float
    ) -> str:
        """Run one model call, giving up waiting after ``timeout`` seconds.

        The request keeps running on its worker thread after a timeout; only
        the wait is abandoned.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm")
        try:
            future = executor.submit(
                self.client.complete,
                messages,
                variant.model_id,
                variant.max_tokens,
                self.config.temperature,
                timeout,
            )
            return future.result(timeout=timeout)
        except (FuturesTimeoutError, requests.Timeout) as e:
            raise ModelTimeout(variant.model_id, timeout) from e
        except Exception as e:
            raise ModelCallError(variant.model_id, str(e)) from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def parse_response(self, raw: str) -> Digest:
        """Clean the model reply and turn it into a validated digest."""
        cleaned = clean_response(raw)
        try:
            data = json.loads(cleaned)
        except ValueError as e:
            self.logger.warning(
                "Model response is not valid JSON",
                response_preview=cleaned[:200],
                error=str(e),
            )
            raise ResponseParseError(f"Model response is not valid JSON: {e}") from e
        return validate_digest(data)
