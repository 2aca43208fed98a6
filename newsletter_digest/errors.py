"""Exceptions raised across the digest pipeline."""


class DigestError(Exception):
    """Base class for all Newsletter Digest errors."""


class FetchError(DigestError):
    """A feed could not be downloaded."""


class FetchTimeout(FetchError):
    """A feed download exceeded its time budget."""

    def __init__(self, url: str, timeout_seconds: float):
        self.url = url
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Request timeout after {int(timeout_seconds * 1000)}ms: {url}")


class FeedFormatError(DigestError):
    """Downloaded content is not a usable RSS/Atom document."""


class ClassificationError(DigestError):
    """The language model could not produce a usable digest."""


class ModelCallError(ClassificationError):
    """A single model call failed."""

    def __init__(self, model: str, message: str):
        self.model = model
        super().__init__(f"{model}: {message}")


class ModelTimeout(ModelCallError):
    """A single model call did not answer before its deadline."""

    def __init__(self, model: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(model, f"model call timeout after {timeout_seconds:.1f}s")


class ClassificationExhausted(ClassificationError):
    """Every model failed on every attempt."""


class ResponseParseError(ClassificationError):
    """The model response is not valid JSON after cleanup."""


class SchemaValidationError(ResponseParseError):
    """The model response is JSON but not a digest."""


class RequestMalformed(DigestError):
    """The inbound request body cannot be understood."""
