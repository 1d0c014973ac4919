"""Capabilities the forwarder consumes. forwarder.aws implements them with boto3."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Protocol, Sequence

from .models import Window

if TYPE_CHECKING:
    from .query import CompiledQuery


@dataclass
class MetricDataRow:
    """One result series: the query label echoed back plus parallel timestamp/value arrays."""
    label: str
    timestamps: List[int] = field(default_factory=list)
    values: List[float] = field(default_factory=list)


@dataclass
class MetricDataPage:
    rows: List[MetricDataRow] = field(default_factory=list)
    next_token: Optional[str] = None


class MetricsRetrieval(Protocol):
    def get_metric_data(
        self,
        window: Window,
        queries: Sequence["CompiledQuery"],
        next_token: Optional[str] = None,
    ) -> MetricDataPage:
        """Fetch one page of results. Raises RetrievalError on provider failures."""
        ...


class ParameterStore(Protocol):
    def get_parameter(self, name: str, with_decryption: bool = False) -> str:
        ...


class Decrypter(Protocol):
    def decrypt(self, blob: bytes) -> bytes:
        ...
