"""
Compile forwarding rules into CloudWatch GetMetricData queries.

Each rule becomes one MetricDataQuery whose Label carries the Mackerel
destination (see forwarder.label). The token "." repeats the value of the
previous rule in the same position, e.g.::

    [{"service": "blog", "name": "elb.count", "metric": ["AWS/ELB", "RequestCount"], "stat": "Sum"},
     {"service": ".", "name": "elb.latency", "metric": [".", "Latency"], "stat": "Average"}]
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .label import Label
from .models import REPEAT_PREVIOUS, MetricSpec

logger = logging.getLogger("forwarder.query")

# Namespace + MetricName + 10 dimension name/value pairs
MAX_METRIC_SLOTS = 22
PERIOD_SECONDS = 60

SERVICE_SLOT = "service"
HOST_SLOT = "host"
STAT_SLOT = "stat"


class SlotTable:
    """Last concrete value seen per position, used to resolve the "." shorthand."""

    def __init__(self):
        self._fields: Dict[str, str] = {SERVICE_SLOT: "", HOST_SLOT: "", STAT_SLOT: ""}
        self._metric: List[str] = [""] * MAX_METRIC_SLOTS

    def resolve(self, slot: Union[str, int], value: str) -> str:
        if isinstance(slot, int):
            if value == REPEAT_PREVIOUS:
                return self._metric[slot]
            self._metric[slot] = value
            return value

        if value == REPEAT_PREVIOUS:
            return self._fields[slot]
        self._fields[slot] = value
        return value


@dataclass(frozen=True)
class Dimension:
    name: str
    value: str


@dataclass(frozen=True)
class CompiledQuery:
    """One MetricDataQuery of a GetMetricData batch."""
    id: str
    label: str
    namespace: str
    metric_name: str
    stat: str
    dimensions: Tuple[Dimension, ...] = field(default_factory=tuple)
    period: int = PERIOD_SECONDS

    def to_api(self) -> Dict[str, Any]:
        """Render as a boto3 ``MetricDataQueries`` entry."""
        return {
            "Id": self.id,
            "Label": self.label,
            "MetricStat": {
                "Metric": {
                    "Namespace": self.namespace,
                    "MetricName": self.metric_name,
                    "Dimensions": [{"Name": d.name, "Value": d.value} for d in self.dimensions],
                },
                "Period": self.period,
                "Stat": self.stat,
            },
            "ReturnData": True,
        }


def compile_queries(
    specs: Sequence[MetricSpec],
    slots: Optional[SlotTable] = None,
) -> Tuple[List[CompiledQuery], Dict[str, float]]:
    """
    Convert specs to queries.

    Invalid specs are skipped with a warning, the rest of the batch is still
    compiled. Query ids are m1, m2, ... over the emitted queries.

    Returns:
        (queries, defaults) where defaults maps an encoded label to the value
        to send when CloudWatch returns no datapoint for it
    """
    slots = slots or SlotTable()
    queries: List[CompiledQuery] = []
    defaults: Dict[str, float] = {}

    for i, spec in enumerate(specs):
        host = slots.resolve(HOST_SLOT, spec.host_id)
        service = slots.resolve(SERVICE_SLOT, spec.service)
        stat = slots.resolve(STAT_SLOT, spec.stat)

        tokens = spec.metric
        if len(tokens) > MAX_METRIC_SLOTS:
            logger.warning(
                "spec[%d]: more than %d dimensions are not supported, ignores %s",
                i, (MAX_METRIC_SLOTS - 2) // 2, tokens[MAX_METRIC_SLOTS:],
            )
            tokens = tokens[:MAX_METRIC_SLOTS]
        if len(tokens) < 2:
            logger.warning("spec[%d]: at least, namespace and metric name are required: %s", i, tokens)

        namespace = slots.resolve(0, tokens[0]) if len(tokens) > 0 else ""
        metric_name = slots.resolve(1, tokens[1]) if len(tokens) > 1 else ""
        dimensions = []
        # an odd trailing token has no value and is ignored
        for j in range(2, len(tokens) - 1, 2):
            dimensions.append(Dimension(
                name=slots.resolve(j, tokens[j]),
                value=slots.resolve(j + 1, tokens[j + 1]),
            ))

        if (host == "") == (service == ""):
            logger.warning(
                "spec[%d]: either service name or host id is required but not both, skips "
                "(service=%r, host=%r)", i, service, host,
            )
            continue
        try:
            label = Label(metric_name=spec.name, service=service, host_id=host)
        except ValueError as e:
            logger.warning("spec[%d]: %s, skips", i, e)
            continue

        query = CompiledQuery(
            id=f"m{len(queries) + 1}",
            label=str(label),
            namespace=namespace,
            metric_name=metric_name,
            stat=stat,
            dimensions=tuple(dimensions),
        )
        queries.append(query)
        if spec.default is not None:
            defaults[query.label] = spec.default
        logger.debug(
            "new metric data query id=%s label=%s namespace=%s metric=%s dimensions=%s stat=%s",
            query.id, query.label, namespace, metric_name, dimensions, stat,
        )

    return queries, defaults
