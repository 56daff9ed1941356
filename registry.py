"""
registry.py — In-process metrics registry.

Registry        name -> instrument map, append-only for the process lifetime
Gauge           last-written integer value
GaugeFloat      last-written float value

Each instrument carries its own lock so writers of unrelated names never wait
on each other; the registry lock only guards insertion into the map.
"""

import threading


class Gauge:
    """Holds the most recently set integer value."""

    kind = "gauge"

    def __init__(self, name: str):
        self.name   = name
        self._value = 0
        self._lock  = threading.Lock()

    def _coerce(self, value):
        return int(value)

    def update(self, value):
        value = self._coerce(value)
        with self._lock:
            self._value = value

    def value(self):
        with self._lock:
            return self._value


class GaugeFloat(Gauge):
    """Holds the most recently set float value."""

    kind = "gauge_float"

    def __init__(self, name: str):
        super().__init__(name)
        self._value = 0.0

    def _coerce(self, value):
        return float(value)


class Registry:
    """
    Thread-safe get-or-create map of metric instruments.

    snapshot() returns a new dict each call; nothing in it is shared with the
    registry afterwards.  Metrics are independent so there is no cross-metric
    atomicity, only per-instrument consistency.
    """

    def __init__(self):
        self._metrics = {}
        self._lock    = threading.Lock()

    def _get_or_create(self, name: str, cls):
        # Fast path: already registered (dict reads are atomic)
        metric = self._metrics.get(name)
        if metric is None:
            with self._lock:
                metric = self._metrics.get(name)
                if metric is None:
                    metric = cls(name)
                    self._metrics[name] = metric
        if type(metric) is not cls:
            raise TypeError(f"metric {name!r} already registered as {metric.kind}")
        return metric

    def get_or_create_gauge(self, name: str) -> Gauge:
        return self._get_or_create(name, Gauge)

    def get_or_create_gauge_float(self, name: str) -> GaugeFloat:
        return self._get_or_create(name, GaugeFloat)

    def names(self) -> list:
        with self._lock:
            return sorted(self._metrics)

    def snapshot(self) -> dict:
        with self._lock:
            metrics = list(self._metrics.values())
        return {m.name: m.value() for m in metrics}

    def __len__(self):
        return len(self._metrics)

    def __contains__(self, name):
        return name in self._metrics
