"""
Tiny Mackerel API client.

Posts service and host metric values to the Mackerel tsdb endpoints,
retrying server errors (5xx), rate limiting (429) and network errors with
exponential backoff. Other error responses are returned immediately.
"""

import asyncio
import http.client
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from . import __version__
from .errors import MackerelError, SerializationError
from .models import HostMetricValue, ServiceMetricValue

logger = logging.getLogger("forwarder.mackerel")

DEFAULT_BASE_URL = "https://api.mackerelio.com/"
DEFAULT_TIMEOUT = 30.0


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter. Delays are in seconds."""
    min_delay: float = 0.1
    max_delay: float = 30.0
    jitter: float = 1.0
    max_count: int = 10

    def retrying(self, before_sleep: Optional[Callable[[RetryCallState], None]] = None) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_count),
            wait=wait_exponential(multiplier=self.min_delay, min=self.min_delay, max=self.max_delay)
            + wait_random(0, self.jitter),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep,
            reraise=True,
        )


def is_retryable(exc: BaseException) -> bool:
    """Server errors, 429 and transport errors are worth another attempt."""
    if isinstance(exc, MackerelError):
        return exc.retryable
    if isinstance(exc, SerializationError):
        return False
    return isinstance(exc, (URLError, OSError, TimeoutError, http.client.HTTPException))


def _read_error_body(e: HTTPError) -> str:
    try:
        return e.read().decode("utf-8", errors="replace")
    except Exception:
        return str(e.reason)


class MackerelClient:
    """Client for the Mackerel metrics API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        user_agent: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize Mackerel client.

        Args:
            api_key: Mackerel API key, sent as X-Api-Key
            base_url: Base URL of the Mackerel API
            user_agent: User-Agent header, defaults to mackerel-cloudwatch-forwarder/<version>
            timeout: Timeout of each request attempt in seconds
            retry_policy: Backoff settings for retryable failures
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent or f"mackerel-cloudwatch-forwarder/{__version__}"
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

    def urlfor(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Api-Key": self.api_key,
            "User-Agent": self.user_agent,
        }

    def _send(self, path: str, body: bytes) -> None:
        """Single POST attempt. Raises MackerelError on non-2xx responses."""
        req = Request(self.urlfor(path), data=body, headers=self._headers(), method="POST")
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                resp.read()
        except HTTPError as e:
            raise MackerelError(e.code, _read_error_body(e), path) from e

    async def post_json(self, path: str, payload: Any) -> None:
        """
        POST a JSON payload, retrying according to the retry policy.

        Raises:
            SerializationError: if the payload can not be encoded
            MackerelError: on a fatal response, or the last retryable one
            URLError/OSError: when the last attempt failed on the network
        """
        try:
            body = json.dumps(payload, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"failed to encode request to {path}: {e}") from e

        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "POST %s failed (attempt %d/%d), retrying in %.2fs: %s",
                path, state.attempt_number, self.retry_policy.max_count,
                state.next_action.sleep if state.next_action else 0.0,
                state.outcome.exception() if state.outcome else None,
            )

        loop = asyncio.get_running_loop()
        async for attempt in self.retry_policy.retrying(before_sleep=log_retry):
            with attempt:
                await loop.run_in_executor(None, self._send, path, body)

    async def post_service_metric_values(self, service: str, values: Sequence[ServiceMetricValue]) -> None:
        """Post values of one service. An empty batch is not sent."""
        if not values:
            return
        path = f"/api/v0/services/{quote(service, safe='')}/tsdb"
        await self.post_json(path, [v.to_payload() for v in values])
        logger.debug("posted %d service metric value(s) to %s", len(values), service)

    async def post_host_metric_values(self, values: Sequence[HostMetricValue]) -> None:
        """Post host metric values. An empty batch is not sent."""
        if not values:
            return
        await self.post_json("/api/v0/tsdb", [v.to_payload() for v in values])
        logger.debug("posted %d host metric value(s)", len(values))
