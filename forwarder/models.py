#!/usr/bin/env python3
"""
Forwarder data models.

- MetricSpec: one user-declared forwarding rule (pydantic, parsed from JSON)
- ServiceMetricValue / HostMetricValue: values posted to Mackerel
- Window: the [start, end) range queried from CloudWatch
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import InvalidSpecError

# Token meaning "same value as the previous spec in this position"
REPEAT_PREVIOUS = "."


def token_to_str(token: Any) -> str:
    if token is None:
        return ""
    if isinstance(token, str):
        return token
    if isinstance(token, (int, float)) and not isinstance(token, bool):
        return json.dumps(token)
    return str(token)


class MetricSpec(BaseModel):
    """
    A forwarding rule, e.g.::

        {"service": "blog", "name": "alb.requests", "stat": "Sum",
         "metric": ["AWS/ApplicationELB", "RequestCount", "LoadBalancer", "app/blog/123"]}

    ``metric`` follows the CloudWatch dashboard metric array format:
    namespace, metric name, then dimension name/value pairs.
    """
    model_config = ConfigDict(populate_by_name=True)

    service: str = ""
    host_id: str = Field("", alias="hostId")
    name: str = ""
    metric: List[str] = Field(default_factory=list)
    stat: str = ""
    default: Optional[float] = None

    @field_validator("service", "host_id", "name", "stat", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("default")
    @classmethod
    def _finite_default(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not math.isfinite(v):
            raise ValueError(f"default must be a finite number, got {v}")
        return v

    @field_validator("metric", mode="before")
    @classmethod
    def _tokens_to_str(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (str, bytes)):
            # a JSON encoded metric array is accepted too
            v = json.loads(v)
        if not isinstance(v, (list, tuple)):
            raise ValueError(f"metric must be an array, got {type(v).__name__}")
        return [token_to_str(t) for t in v]


_SPEC_LIST = TypeAdapter(List[MetricSpec])


def parse_metric_specs(payload: Union[str, bytes, List[Any]]) -> List[MetricSpec]:
    """
    Parse the raw forward settings.

    Args:
        payload: JSON array (text or already decoded) of spec objects

    Raises:
        InvalidSpecError: if the payload is not an array of spec objects
    """
    try:
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)
        return _SPEC_LIST.validate_python(payload)
    except (ValueError, ValidationError) as e:
        raise InvalidSpecError(f"invalid metric settings: {e}") from e


@dataclass(frozen=True)
class ServiceMetricValue:
    """A value of a Mackerel service metric."""
    service: str
    name: str
    time: int
    value: float

    @property
    def destination(self) -> str:
        return self.service

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.service, self.name, self.time)

    def to_payload(self) -> dict:
        return {"name": self.name, "time": self.time, "value": self.value}


@dataclass(frozen=True)
class HostMetricValue:
    """A value of a Mackerel host metric."""
    host_id: str
    name: str
    time: int
    value: float

    @property
    def destination(self) -> str:
        return self.host_id

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.host_id, self.name, self.time)

    def to_payload(self) -> dict:
        return {"hostId": self.host_id, "name": self.name, "time": self.time, "value": self.value}


MetricValue = Union[ServiceMetricValue, HostMetricValue]


@dataclass(frozen=True)
class Window:
    """Query range in unix seconds, start inclusive, end exclusive."""
    start: int
    end: int

    @property
    def start_time(self) -> datetime:
        return datetime.fromtimestamp(self.start, tz=timezone.utc)

    @property
    def end_time(self) -> datetime:
        return datetime.fromtimestamp(self.end, tz=timezone.utc)
