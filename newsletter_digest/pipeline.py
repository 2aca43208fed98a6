"""Pipeline orchestration: aggregate, classify within budget, fall back."""

import time
from collections.abc import Callable
from datetime import UTC, datetime

from .aggregator import FeedAggregator
from .classify import DigestClassifier, create_fallback_digest
from .config import PipelineConfig
from .errors import ClassificationError, ModelTimeout, ResponseParseError
from .logging_config import create_execution_logger
from .models import (
    Digest,
    DigestResult,
    FallbackReason,
    FeedItem,
    Source,
    count_digest_items,
)


class DigestPipeline:
    """Produces a DigestResult for every invocation, degraded if necessary."""

    def __init__(
        self,
        aggregator: FeedAggregator,
        classifier: DigestClassifier | None,
        config: PipelineConfig | None = None,
        execution_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the pipeline.

        Args:
            aggregator: Fetches and merges the sources
            classifier: Model-backed categorizer, or None when no model is
                configured
            config: Time budget settings
            execution_id: Execution ID for logging context
            clock: Monotonic clock used for every budget decision
        """
        self.aggregator = aggregator
        self.classifier = classifier
        self.config = config or PipelineConfig()
        self.clock = clock
        self.logger = create_execution_logger("pipeline", execution_id)

    def run(self, sources: list[Source], focus_area: str) -> DigestResult:
        """Run one digest: fetch, budget check, classify or fall back.

        Never raises. Content that was aggregated before an unexpected error
        still comes back as a fallback digest.
        """
        started = self.clock()
        self.logger.log_execution_start(source_count=len(sources), focus_area=focus_area)
        items: list[FeedItem] = []

        try:
            batch = self.aggregator.aggregate(sources)
            items = list(batch)

            elapsed = self.clock() - started
            self.logger.info(
                f"Aggregated {len(items)} items in {elapsed:.2f}s",
                batch_items=len(items),
                sources_failed=batch.sources_failed,
                fresh_items=batch.fresh_items,
                elapsed_seconds=elapsed,
            )

            if not items:
                digest, reason = create_fallback_digest(items), FallbackReason.NO_CONTENT
            elif elapsed > self.config.budget_seconds:
                self.logger.warning(
                    "Running out of time, skipping model categorization",
                    elapsed_seconds=elapsed,
                    budget_seconds=self.config.budget_seconds,
                )
                digest, reason = create_fallback_digest(items), FallbackReason.TIMEOUT
            else:
                digest, reason = self.categorize(items, focus_area, started)

            result = self._result(digest, started, reason)
            self.logger.log_execution_end(
                success=True,
                total_items=result.total_items,
                used_fallback=result.used_fallback,
                fallback_reason=result.fallback_reason,
            )
            return result

        except Exception as e:
            self.logger.error(
                f"Pipeline error: {e}", error=str(e), error_type=type(e).__name__
            )
            result = self.emergency_result(items, e, started)
            self.logger.log_execution_end(success=result.success, error=str(e))
            return result

    def categorize(
        self, items: list[FeedItem], focus_area: str, started: float
    ) -> tuple[Digest, str | None]:
        """Ask the classifier, substituting the fallback digest on any failure."""
        if self.classifier is None:
            self.logger.warning("No model configured, using fallback digest")
            return create_fallback_digest(items), FallbackReason.AI_UNAVAILABLE

        deadline = started + self.config.execution_limit_seconds
        try:
            digest = self.classifier.classify(items, focus_area, deadline=deadline)
        except ResponseParseError as e:
            self.logger.warning(f"Model response unusable, using fallback: {e}")
            return create_fallback_digest(items), FallbackReason.INVALID_RESPONSE
        except ClassificationError as e:
            self.logger.warning(f"Model categorization failed, using fallback: {e}")
            reason = (
                FallbackReason.TIMEOUT
                if isinstance(e, ModelTimeout) or isinstance(e.__cause__, ModelTimeout)
                else FallbackReason.AI_UNAVAILABLE
            )
            return create_fallback_digest(items), reason

        if count_digest_items(digest) == 0:
            self.logger.warning("Model returned an empty digest, using fallback")
            return create_fallback_digest(items), FallbackReason.EMPTY_DIGEST
        return digest, None

    def _result(
        self, digest: Digest, started: float, reason: str | None
    ) -> DigestResult:
        total = count_digest_items(digest)
        if reason is None and total == 0:
            reason = FallbackReason.EMPTY_DIGEST
        return DigestResult(
            success=True,
            digest=digest,
            processed_at=datetime.now(UTC),
            total_items=total,
            processing_time_ms=self._elapsed_ms(started),
            used_fallback=reason is not None,
            fallback_reason=reason,
        )

    def emergency_result(
        self, items: list[FeedItem], error: Exception, started: float
    ) -> DigestResult:
        """Best-effort result after an unexpected error."""
        if not items:
            return failure_result(error, self._elapsed_ms(started))

        digest = create_fallback_digest(items)
        self.logger.info("Created emergency fallback digest", batch_items=len(items))
        return DigestResult(
            success=True,
            digest=digest,
            processed_at=datetime.now(UTC),
            total_items=count_digest_items(digest),
            processing_time_ms=self._elapsed_ms(started),
            used_fallback=True,
            fallback_reason=_error_reason(error),
            message=str(error),
        )

    def _elapsed_ms(self, started: float) -> int:
        return int((self.clock() - started) * 1000)


def _error_reason(error: Exception) -> str:
    if "timeout" in str(error).lower():
        return FallbackReason.TIMEOUT
    return FallbackReason.AI_UNAVAILABLE


def failure_result(error: Exception, processing_time_ms: int) -> DigestResult:
    """Result for a request that produced no content at all."""
    return DigestResult(
        success=False,
        digest=None,
        processed_at=datetime.now(UTC),
        total_items=0,
        processing_time_ms=processing_time_ms,
        used_fallback=True,
        fallback_reason=_error_reason(error),
        error="Failed to generate digest",
        message=str(error),
    )
