"""mackerel-cloudwatch-forwarder - forwards metrics of AWS CloudWatch to Mackerel"""

__version__ = "0.1.0"

from .buffer import MetricBuffer
from .errors import (
    ApiKeyNotFoundError,
    DeadlineExceeded,
    ForwarderError,
    InvalidSpecError,
    LabelError,
    MackerelError,
    RetrievalError,
    SerializationError,
)
from .forwarder import Forwarder
from .label import Label, encode_label, parse_label
from .mackerel import MackerelClient, RetryPolicy
from .models import HostMetricValue, MetricSpec, ServiceMetricValue, Window, parse_metric_specs
from .query import CompiledQuery, SlotTable, compile_queries

__all__ = [
    'Forwarder',
    'MetricBuffer',
    'MackerelClient',
    'RetryPolicy',

    # Models
    'Label',
    'MetricSpec',
    'ServiceMetricValue',
    'HostMetricValue',
    'Window',
    'CompiledQuery',
    'SlotTable',

    # Functions
    'encode_label',
    'parse_label',
    'parse_metric_specs',
    'compile_queries',

    # Errors
    'ForwarderError',
    'LabelError',
    'InvalidSpecError',
    'RetrievalError',
    'MackerelError',
    'SerializationError',
    'ApiKeyNotFoundError',
    'DeadlineExceeded',
]
