"""Bounded HTTP fetching for feed documents."""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

import requests
from urllib3.exceptions import ReadTimeoutError

from .errors import FetchTimeout
from .logging_config import create_execution_logger

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
}


class BoundedFetcher:
    """Performs GET requests that never outlive their time budget."""

    CHUNK_SIZE = 8192

    def __init__(
        self,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        execution_id: str | None = None,
    ):
        """Initialize the fetcher.

        Args:
            timeout: Default wall-clock budget per request, in seconds
            session: Optional preconfigured requests session
            execution_id: Execution ID for logging context
        """
        self.timeout = timeout
        self.logger = create_execution_logger("fetcher", execution_id)
        self.session = session or requests.Session()
        self.session.headers.update(
            {"User-Agent": "Newsletter-Digest/1.0 (RSS/Atom aggregator)"}
        )

    def fetch(
        self, url: str, timeout: float | None = None, cache_bust: bool = False
    ) -> str:
        """Download ``url`` and return its body as text.

        The budget covers connecting, waiting for headers and reading the
        whole body. A server that keeps trickling bytes cannot stretch it.

        Args:
            url: Address to GET
            timeout: Budget in seconds, defaults to the fetcher's
            cache_bust: Append a timestamp parameter and no-cache headers

        Returns:
            Decoded response body

        Raises:
            FetchTimeout: If the budget runs out before the body is read
            requests.RequestException: Any other transport or HTTP error
        """
        budget = self.timeout if timeout is None else timeout
        params = None
        headers = None
        if cache_bust:
            params = {"_": str(int(time.time() * 1000))}
            headers = dict(NO_CACHE_HEADERS)

        started = time.monotonic()
        self.logger.debug("Fetching", url=url, timeout=budget, cache_bust=cache_bust)

        in_flight: dict[str, requests.Response] = {}
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fetch")
        future = executor.submit(
            self._download, url, params, headers, budget, started + budget, in_flight
        )
        try:
            response, content = future.result(timeout=budget)
        except FuturesTimeoutError as e:
            # Unblocks the worker if it is parked on a socket read
            if "response" in in_flight:
                in_flight["response"].close()
            raise FetchTimeout(url, budget) from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        content_type = response.headers.get("Content-Type", "")
        encoding = response.encoding if "charset" in content_type.lower() else None
        try:
            text = content.decode(encoding or "utf-8", errors="replace")
        except LookupError:
            text = content.decode("utf-8", errors="replace")

        self.logger.info(
            "Feed downloaded successfully",
            url=url,
            status_code=response.status_code,
            content_length=len(content),
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        return text

    def _download(self, url, params, headers, budget, deadline, in_flight):
        try:
            response = self.session.get(
                url, params=params, headers=headers, timeout=budget, stream=True
            )
        except requests.Timeout as e:
            raise FetchTimeout(url, budget) from e
        in_flight["response"] = response

        try:
            response.raise_for_status()
            chunks = []
            for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise FetchTimeout(url, budget)
                chunks.append(chunk)
        except requests.Timeout as e:
            raise FetchTimeout(url, budget) from e
        except requests.ConnectionError as e:
            # iter_content wraps body read timeouts in ConnectionError
            if e.args and isinstance(e.args[0], ReadTimeoutError):
                raise FetchTimeout(url, budget) from e
            raise
        finally:
            response.close()

        return response, b"".join(chunks)
