"""
HTTP access for drivers with retry, backoff and a circuit breaker.

- Exponential backoff for timeouts, connection errors and 5xx responses
- Retry-After aware handling of HTTP 429
- Circuit breaker that suspends a source after repeated failures
- Typed errors so drivers can tell "absent" (404) from "broken"
"""

import asyncio
import httpx
from typing import Any, Dict, Optional
from datetime import datetime, timedelta
from core.config import settings
from core.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    NetworkError,
    PageFetchError,
    RateLimitError,
    ResourceNotFoundError,
)
import logging

logger = logging.getLogger(__name__)


class HttpFetcher:
    """
    Shared async HTTP client for one source.

    Attributes:
        max_retries: Maximum number of attempts per request
        retry_delay: Initial backoff in seconds, doubled per attempt
        timeout: Request timeout in seconds
        circuit_breaker_threshold: Failures before the circuit opens
        circuit_breaker_timeout: Seconds before an open circuit resets
    """

    def __init__(
        self,
        source: str,
        headers: Optional[Dict[str, str]] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60
    ):
        self.source = source
        self.headers = headers or {"Accept": "application/json"}
        self.max_retries = max_retries or settings.MAX_RETRIES
        self.retry_delay = settings.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._client = client
        self._owns_client = client is None

        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = circuit_breaker_threshold
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = circuit_breaker_timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _is_circuit_open(self) -> bool:
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info(f"Circuit breaker reset for {self.source}")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for {self.source}. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        GET with retries.

        Raises:
            CircuitOpenError: The source is suspended
            AuthenticationError: HTTP 401/403
            ResourceNotFoundError: HTTP 404
            RateLimitError: HTTP 429 on the last attempt
            NetworkError: Timeouts, connection errors or 5xx after all retries
        """
        if self._is_circuit_open():
            raise CircuitOpenError(
                f"Circuit breaker is open for {self.source}",
                context={
                    "source": self.source,
                    "url": url,
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            delay = self.retry_delay * (2 ** attempt)

            try:
                logger.debug(f"GET {url} attempt {attempt + 1}/{self.max_retries}")
                response = await self.client.get(url, params=params)
            except httpx.TimeoutException as e:
                if not is_last:
                    logger.warning(f"Timeout fetching {url}. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Request timeout after {self.max_retries} attempts",
                    context={"source": self.source, "url": url, "timeout": self.timeout},
                    original_exception=e
                )
            except httpx.TransportError as e:
                if not is_last:
                    logger.warning(f"Network error fetching {url}. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Network error after {self.max_retries} attempts",
                    context={"source": self.source, "url": url},
                    original_exception=e
                )

            if response.status_code in (401, 403):
                self._record_failure()
                raise AuthenticationError(
                    f"Access denied for {url}",
                    context={"source": self.source, "url": url, "status_code": response.status_code}
                )

            if response.status_code == 404:
                raise ResourceNotFoundError(
                    f"Resource not found: {url}",
                    context={"source": self.source, "url": url, "status_code": 404}
                )

            if response.status_code == 429:
                retry_after = _retry_after_seconds(response, delay)
                if not is_last:
                    logger.warning(f"Rate limited by {self.source}. Retrying after {retry_after} seconds")
                    await asyncio.sleep(retry_after)
                    continue
                self._record_failure()
                raise RateLimitError(
                    f"Rate limit exceeded for {url}",
                    context={"source": self.source, "url": url, "status_code": 429},
                    retry_after=int(retry_after)
                )

            if response.status_code >= 500:
                if not is_last:
                    logger.warning(
                        f"Server error {response.status_code} from {url}. "
                        f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                self._record_failure()
                raise NetworkError(
                    f"Server error after {self.max_retries} attempts",
                    context={
                        "source": self.source,
                        "url": url,
                        "status_code": response.status_code,
                        "response_body": response.text[:500]
                    }
                )

            if response.status_code >= 400:
                raise PageFetchError(
                    f"Unexpected status {response.status_code} for {url}",
                    context={"source": self.source, "url": url, "status_code": response.status_code}
                )

            self._record_success()
            return response

        raise NetworkError(
            "Max retries exceeded",
            context={"source": self.source, "url": url}
        )

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self.get(url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise PageFetchError(
                "Failed to parse JSON response",
                context={"source": self.source, "url": url, "response_body": response.text[:500]},
                original_exception=e
            )

    async def get_text(self, url: str, params: Optional[Dict[str, Any]] = None) -> str:
        response = await self.get(url, params=params)
        return response.text


def _retry_after_seconds(response: httpx.Response, default: float) -> float:
    value = response.headers.get("Retry-After")
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default
