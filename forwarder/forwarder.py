"""
Forwarder: fetches metrics from CloudWatch and posts them to Mackerel.

One invocation:
  1. resolve the Mackerel client (API key lookup happens once per process)
  2. compile the forward settings and fetch the last complete minute
  3. merge the values with those that failed to post last time
  4. post every service and the host metrics concurrently
  5. keep what failed for the next invocation

Fetch errors do not stop publishing; they are raised after it.
"""

import asyncio
import logging
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .apikey import ApiKeyResolver
from .buffer import MetricBuffer
from .errors import ApiKeyNotFoundError, DeadlineExceeded, SerializationError
from .extractor import INGESTION_DELAY_SECONDS, evaluation_window, fetch_metric_values
from .interfaces import MetricsRetrieval
from .mackerel import DEFAULT_BASE_URL, MackerelClient, RetryPolicy
from .models import MetricValue, parse_metric_specs
from .query import compile_queries

logger = logging.getLogger("forwarder")

# Values that failed to post are retried for this long
RETENTION_SECONDS = 6 * 60 * 60
# Invocation budget when the caller gives no timeout
DEFAULT_TIMEOUT = 50.0
# Subtracted from the caller's timeout to leave room for cleanup
SAFETY_MARGIN = 10.0
# Budget used when the caller's timeout is within the safety margin
MIN_BUDGET = 1.0
# Part of the budget reserved for posting; fetching stops before it
PUBLISH_ALLOWANCE = 10.0


class Forwarder:
    """Forwards metrics of AWS CloudWatch to Mackerel."""

    def __init__(
        self,
        retrieval: MetricsRetrieval,
        api_key_resolver: Optional[ApiKeyResolver] = None,
        mackerel: Optional[MackerelClient] = None,
        base_url: str = DEFAULT_BASE_URL,
        retry_policy: Optional[RetryPolicy] = None,
        retention: int = RETENTION_SECONDS,
        fallback_timeout: float = DEFAULT_TIMEOUT,
        safety_margin: float = SAFETY_MARGIN,
        publish_allowance: float = PUBLISH_ALLOWANCE,
        ingestion_delay: int = INGESTION_DELAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            retrieval: Source of CloudWatch metric data
            api_key_resolver: Used once, on the first invocation, to build the Mackerel client
            mackerel: Ready-made Mackerel client; skips API key resolution
            base_url: Mackerel API base URL
            retry_policy: Backoff settings for posting
            retention: Seconds a value that failed to post is kept for retry
            fallback_timeout: Invocation budget when no timeout is given
            safety_margin: Seconds subtracted from a given timeout
            publish_allowance: Seconds kept for posting, at most half of the budget
            ingestion_delay: Seconds between the current minute and the end of the query window
            clock: Returns the current unix time
        """
        self.retrieval = retrieval
        self.api_key_resolver = api_key_resolver
        self.base_url = base_url
        self.retry_policy = retry_policy
        self.retention = retention
        self.fallback_timeout = fallback_timeout
        self.safety_margin = safety_margin
        self.publish_allowance = publish_allowance
        self.ingestion_delay = ingestion_delay
        self.clock = clock

        # values that failed to post, guarded by _lock
        self.pending = MetricBuffer()
        self._lock = asyncio.Lock()
        self._mackerel = mackerel
        self._mackerel_lock = asyncio.Lock()

    async def mackerel_client(self) -> MackerelClient:
        async with self._mackerel_lock:
            if self._mackerel is None:
                if self.api_key_resolver is None:
                    raise ApiKeyNotFoundError("api key for the mackerel is not found")
                loop = asyncio.get_running_loop()
                key = await loop.run_in_executor(None, self.api_key_resolver.resolve)
                self._mackerel = MackerelClient(key, base_url=self.base_url, retry_policy=self.retry_policy)
            return self._mackerel

    def _budget(self, timeout: Optional[float]) -> float:
        if timeout is None:
            return self.fallback_timeout
        budget = timeout - self.safety_margin
        if budget < MIN_BUDGET:
            budget = max(min(timeout, MIN_BUDGET), 0.0)
            logger.warning(
                "timeout %.1fs leaves no room for the %.1fs safety margin, using a %.1fs budget",
                timeout, self.safety_margin, budget,
            )
        return budget

    @staticmethod
    def _remaining(deadline: float) -> float:
        return max(deadline - asyncio.get_running_loop().time(), 0.0)

    async def forward_metrics(self, payload: Union[str, bytes, List[Any]], timeout: Optional[float] = None) -> None:
        """
        Run one invocation.

        Args:
            payload: JSON array of metric specs
            timeout: Seconds the caller allows for this invocation

        Raises:
            InvalidSpecError: payload is not a list of specs (nothing is fetched)
            ApiKeyNotFoundError: no API key (nothing is fetched)
            DeadlineExceeded: the invocation ran out of time
            Exception: the error that aborted fetching, after publishing
        """
        now = self.clock()
        budget = self._budget(timeout)
        deadline = asyncio.get_running_loop().time() + budget
        # fetching stops early so pending and fetched values can still be posted
        fetch_deadline = deadline - min(self.publish_allowance, budget / 2)

        specs = parse_metric_specs(payload)
        try:
            client = await asyncio.wait_for(self.mackerel_client(), timeout=self._remaining(deadline))
        except asyncio.TimeoutError as e:
            raise DeadlineExceeded("deadline exceeded while resolving the mackerel api key") from e

        window = evaluation_window(now, self.ingestion_delay)
        queries, defaults = compile_queries(specs)
        logger.debug("fetching %d queries for window [%d, %d)", len(queries), window.start, window.end)

        fresh = MetricBuffer()
        fetch_error: Optional[BaseException] = None
        try:
            await asyncio.wait_for(
                fetch_metric_values(self.retrieval, window, queries, defaults, into=fresh),
                timeout=self._remaining(fetch_deadline),
            )
        except asyncio.TimeoutError:
            fetch_error = DeadlineExceeded("deadline exceeded while fetching metrics")
            logger.error("fetch aborted: %s (%d value(s) fetched)", fetch_error, len(fresh))
        except Exception as e:
            fetch_error = e
            logger.error("fetch aborted: %s (%d value(s) fetched)", e, len(fresh))

        async with self._lock:
            dropped = self.pending.drop(int(now) - self.retention)
            if dropped:
                logger.info("dropped %d pending value(s) older than %ds", dropped, self.retention)
            working = self.pending.take()
        carried = len(working)
        working.merge(fresh)

        failed, cancelled = await self._publish(client, working, deadline)

        async with self._lock:
            self.pending.extend(failed)
            pending = len(self.pending)

        logger.info(
            "forwarded %d of %d value(s) (%d fresh, %d carried over), %d pending",
            len(working) - len(failed), len(working), len(fresh), carried, pending,
        )

        if fetch_error is not None:
            raise fetch_error
        if cancelled:
            raise DeadlineExceeded(f"deadline exceeded while posting, {cancelled} destination(s) unfinished")

    async def _publish(self, client: MackerelClient, working: MetricBuffer,
                       deadline: float) -> Tuple[List[MetricValue], int]:
        """
        Post one batch per service plus one host batch, concurrently.

        Returns:
            (values that were not posted, number of batches cut off by the deadline)
        """
        batches: Dict["asyncio.Task[List[MetricValue]]", List[MetricValue]] = {}
        for service in working.services():
            values = working.service_values(service)
            task = asyncio.create_task(
                self._deliver(f"service {service}", values, partial(client.post_service_metric_values, service, values))
            )
            batches[task] = values
        host_values = working.host_values()
        if host_values:
            task = asyncio.create_task(
                self._deliver("host metrics", host_values, partial(client.post_host_metric_values, host_values))
            )
            batches[task] = host_values

        if not batches:
            return [], 0

        done, not_done = await asyncio.wait(batches, timeout=self._remaining(deadline))
        failed: List[MetricValue] = []
        for task in done:
            failed.extend(task.result())
        for task in not_done:
            task.cancel()
            failed.extend(batches[task])
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)
            logger.error("deadline exceeded, %d batch(es) will be retried next time", len(not_done))
        return failed, len(not_done)

    async def _deliver(self, name: str, values: List[MetricValue], post: Callable[[], Awaitable[None]]) -> List[MetricValue]:
        """Await one post; on failure log it and hand the values back, unless they can never be encoded."""
        try:
            await post()
        except SerializationError as e:
            logger.error("dropped %s (%d value(s)), not retried: %s", name, len(values), e)
            return []
        except Exception as e:
            logger.error("failed to post %s (%d value(s)): %s", name, len(values), e)
            return list(values)
        return []
