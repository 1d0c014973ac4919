"""
Turn GetMetricData result pages into Mackerel metric values.
"""

import asyncio
import logging
import math
from typing import Dict, Optional, Sequence, Set

from .buffer import MetricBuffer
from .interfaces import MetricDataPage, MetricsRetrieval
from .label import Label, parse_label
from .models import HostMetricValue, MetricValue, ServiceMetricValue, Window
from .query import PERIOD_SECONDS, CompiledQuery

logger = logging.getLogger("forwarder.extractor")

# CloudWatch needs some time before the latest datapoints are queryable
INGESTION_DELAY_SECONDS = 120


def evaluation_window(now: float, delay: int = INGESTION_DELAY_SECONDS) -> Window:
    """The one-period window ending ``delay`` seconds before the current minute."""
    end = int(now) // 60 * 60 - delay
    return Window(start=end - PERIOD_SECONDS, end=end)


def _metric_value(label: Label, timestamp: int, value: float) -> MetricValue:
    if label.is_service:
        return ServiceMetricValue(service=label.service, name=label.metric_name, time=timestamp, value=value)
    return HostMetricValue(host_id=label.host_id, name=label.metric_name, time=timestamp, value=value)


class MetricDataExtractor:
    """
    Collects values from result pages into a buffer.

    The buffer belongs to the caller, so values added before a failure are
    kept when a later page cannot be fetched.
    """

    def __init__(self, window: Window, defaults: Optional[Dict[str, float]] = None,
                 into: Optional[MetricBuffer] = None):
        self.window = window
        self.defaults = defaults or {}
        self.values = into if into is not None else MetricBuffer()
        self.seen: Set[str] = set()

    def add_page(self, page: MetricDataPage) -> int:
        """
        Add every datapoint of a page.

        Raises:
            LabelError: if a row carries a label that does not parse
        """
        added = 0
        for row in page.rows:
            label = parse_label(row.label)
            if row.timestamps:
                self.seen.add(row.label)
            for timestamp, value in zip(row.timestamps, row.values):
                if not math.isfinite(value):
                    logger.warning("%s: skips non-finite value %s at %s", row.label, value, timestamp)
                    continue
                self.values.add(_metric_value(label, int(timestamp), float(value)))
                added += 1
        return added

    def apply_defaults(self) -> int:
        """Add the default value at the window start for every label without datapoints."""
        applied = 0
        for label, value in self.defaults.items():
            if label in self.seen:
                continue
            self.values.add(_metric_value(parse_label(label), self.window.start, float(value)))
            applied += 1
        return applied


async def fetch_metric_values(
    retrieval: MetricsRetrieval,
    window: Window,
    queries: Sequence[CompiledQuery],
    defaults: Optional[Dict[str, float]] = None,
    into: Optional[MetricBuffer] = None,
) -> MetricBuffer:
    """
    Page through GetMetricData results for the queries.

    Pages are fetched one after another in the default executor. Any error
    aborts the fetch; values already added to ``into`` stay there.
    """
    extractor = MetricDataExtractor(window, defaults, into)
    if not queries:
        return extractor.values

    loop = asyncio.get_running_loop()
    next_token: Optional[str] = None
    pages = 0
    while True:
        page = await loop.run_in_executor(None, retrieval.get_metric_data, window, queries, next_token)
        pages += 1
        added = extractor.add_page(page)
        logger.debug("page %d: %d rows, %d values", pages, len(page.rows), added)
        next_token = page.next_token
        if not next_token:
            break

    applied = extractor.apply_defaults()
    logger.debug(
        "fetched %d values for %d queries in %d page(s), %d default(s) applied",
        len(extractor.values), len(queries), pages, applied,
    )
    return extractor.values
