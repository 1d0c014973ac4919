"""Pytest configuration and shared fixtures"""
import os
import sys
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from forwarder.interfaces import MetricDataPage, MetricDataRow
from forwarder.models import parse_metric_specs

# A minute boundary
NOW = 1_700_000_040


class FakeRetrieval:
    """Serves prepared pages in order; optionally raises on one page."""

    def __init__(self, pages: Optional[List[MetricDataPage]] = None,
                 error: Optional[Exception] = None, error_on_page: Optional[int] = None):
        self.pages = pages if pages is not None else [MetricDataPage()]
        self.error = error
        self.error_on_page = error_on_page
        self.calls = []

    def get_metric_data(self, window, queries, next_token=None):
        index = len(self.calls)
        self.calls.append({"window": window, "queries": list(queries), "next_token": next_token})
        if self.error is not None and index == self.error_on_page:
            raise self.error
        return self.pages[index]


def ok_response(body: bytes = b'{"success":true}'):
    """urlopen() result usable as a context manager"""
    mock_response = MagicMock()
    mock_response.read.return_value = body
    mock_response.__enter__.return_value = mock_response
    return mock_response


@pytest.fixture
def sample_payload():
    """Forward settings mixing service and host metrics"""
    return [
        {
            "service": "blog",
            "name": "alb.requests",
            "metric": ["AWS/ApplicationELB", "RequestCount", "LoadBalancer", "app/blog/50dc6c495c0c9188"],
            "stat": "Sum",
            "default": 0,
        },
        {
            "service": ".",
            "name": "alb.response_time",
            "metric": [".", "TargetResponseTime", ".", "."],
            "stat": "Average",
        },
        {
            "hostId": "3yAYEDLXKL5",
            "name": "custom.rds.cpu",
            "metric": ["AWS/RDS", "CPUUtilization", "DBInstanceIdentifier", "blog-db"],
            "stat": "Maximum",
        },
    ]


@pytest.fixture
def sample_specs(sample_payload):
    return parse_metric_specs(sample_payload)


@pytest.fixture
def mock_mackerel():
    """Mackerel client whose posts succeed"""
    client = MagicMock()
    client.post_service_metric_values = AsyncMock(return_value=None)
    client.post_host_metric_values = AsyncMock(return_value=None)
    return client


def page(*rows, next_token=None) -> MetricDataPage:
    return MetricDataPage(rows=list(rows), next_token=next_token)


def row(label, points) -> MetricDataRow:
    """points: [(timestamp, value), ...]"""
    return MetricDataRow(label=label, timestamps=[t for t, _ in points], values=[v for _, v in points])
