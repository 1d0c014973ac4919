"""
Keyed metric buffer.

Values are keyed by (destination, name, time); adding a value with an
existing key replaces it. The forwarder keeps one buffer of values that
failed to post and retries them on the next invocation.
"""

from typing import Dict, Iterable, Iterator, List, Tuple

from .models import HostMetricValue, MetricValue, ServiceMetricValue

_Key = Tuple[str, int]


class MetricBuffer:
    """Service metric values per service, plus one collection of host metric values."""

    def __init__(self, values: Iterable[MetricValue] = ()):
        self._services: Dict[str, Dict[_Key, ServiceMetricValue]] = {}
        self._hosts: Dict[Tuple[str, str, int], HostMetricValue] = {}
        self.extend(values)

    def add(self, value: MetricValue) -> None:
        if isinstance(value, ServiceMetricValue):
            self._services.setdefault(value.service, {})[(value.name, value.time)] = value
        elif isinstance(value, HostMetricValue):
            self._hosts[value.key] = value
        else:
            raise TypeError(f"unsupported metric value: {type(value).__name__}")

    def extend(self, values: Iterable[MetricValue]) -> None:
        for value in values:
            self.add(value)

    def merge(self, other: "MetricBuffer") -> None:
        """Overlay other's values; values of other win on equal keys."""
        self.extend(other)

    def drop(self, threshold: int) -> int:
        """
        Remove values with time strictly older than threshold.

        Returns:
            Number of removed values
        """
        dropped = 0

        stale = [k for k, v in self._hosts.items() if v.time < threshold]
        for k in stale:
            del self._hosts[k]
        dropped += len(stale)

        for service in list(self._services):
            values = self._services[service]
            stale = [k for k, v in values.items() if v.time < threshold]
            for k in stale:
                del values[k]
            dropped += len(stale)
            if not values:
                del self._services[service]

        return dropped

    def take(self) -> "MetricBuffer":
        """Move all values into a new buffer, leaving this one empty."""
        taken = MetricBuffer()
        taken._services, taken._hosts = self._services, self._hosts
        self._services, self._hosts = {}, {}
        return taken

    def services(self) -> List[str]:
        return list(self._services)

    def service_values(self, service: str) -> List[ServiceMetricValue]:
        return list(self._services.get(service, {}).values())

    def host_values(self) -> List[HostMetricValue]:
        return list(self._hosts.values())

    def __iter__(self) -> Iterator[MetricValue]:
        for values in self._services.values():
            yield from values.values()
        yield from self._hosts.values()

    def __len__(self) -> int:
        return len(self._hosts) + sum(len(v) for v in self._services.values())

    def __bool__(self) -> bool:
        return len(self) > 0

    def __repr__(self) -> str:
        return f"MetricBuffer(services={len(self._services)}, values={len(self)})"
