"""
Routing labels.

CloudWatch echoes the ``Label`` of every MetricDataQuery back in its
results, so the destination of each series travels through that field:

    service=<service name>:<metric name>
    host=<host id>:<metric name>
"""

from dataclasses import dataclass

from .errors import LabelError

SERVICE = "service"
HOST = "host"


@dataclass(frozen=True)
class Label:
    """Destination of a forwarded series. Exactly one of service/host_id is set."""
    metric_name: str
    service: str = ""
    host_id: str = ""

    def __post_init__(self):
        if bool(self.service) == bool(self.host_id):
            raise ValueError("either service name or host id is required but not both")
        if not self.metric_name:
            raise ValueError("metric name is required")
        if ":" in self.destination:
            raise ValueError(f"':' is not allowed in a destination: {self.destination}")

    @property
    def is_service(self) -> bool:
        return bool(self.service)

    @property
    def destination(self) -> str:
        return self.service or self.host_id

    def __str__(self) -> str:
        if self.service:
            return f"{SERVICE}={self.service}:{self.metric_name}"
        return f"{HOST}={self.host_id}:{self.metric_name}"


def encode_label(label: Label) -> str:
    return str(label)


def parse_label(s: str) -> Label:
    """
    Parse a label produced by encode_label.

    Raises:
        LabelError: if the string is not ``<type>=<id>:<metric name>`` with a
            known type and non-empty parts
    """
    idx = s.find(":")
    if idx <= 0:
        raise LabelError("either service name or host id is required but not both", s)
    if idx == len(s) - 1:
        raise LabelError("metric name is required", s)
    left, name = s[:idx], s[idx + 1:]

    idx = left.find("=")
    if idx <= 0:
        raise LabelError("`service' or `host' is required", s)
    if idx == len(left) - 1:
        raise LabelError("either service name or host id is required but not both", s)
    kind, ident = left[:idx], left[idx + 1:]

    if kind == SERVICE:
        return Label(metric_name=name, service=ident)
    if kind == HOST:
        return Label(metric_name=name, host_id=ident)
    raise LabelError(f"unknown id name {kind!r}", s)
