"""
publisher.py — Turns raw counter samples into published stats.

StatsPublisher      reads every subsystem once per flush() and keeps the
                    previous CPU sample for delta computation
RegistryPublisher   writes the results as gauges into a Registry
TopicPublisher      hands one payload per subsystem to a publish function,
                    optionally mirroring the same values into a Registry

flush() is fail-fast: the first ReadError aborts the remaining subsystems
for that call and propagates to the caller.  Metrics written before the
failure stay in the registry.  flush() is not re-entrant; the scheduler
never overlaps calls.
"""

import logger
from metrics import CounterReader, ReadError

CPU_FIELDS = ("user", "nice", "sys", "idle", "wait")


def cpu_percent(delta) -> float:
    """Busy share of a CPU delta window, 0.0 when no ticks elapsed."""
    total = delta.total()
    if total <= 0:
        return 0.0
    idle = delta.wait + delta.idle
    return (total - idle) / total * 100


# ---------------------------------------------------------------------------
# StatsPublisher
# ---------------------------------------------------------------------------

class StatsPublisher:
    """
    Base publisher: sampling order, CPU delta state and error policy.

    Subclasses implement the _emit_* hooks to decide where values go.
    """

    def __init__(self, reader: CounterReader = None):
        self.reader   = reader or CounterReader()
        self.cpu_prev = None
        try:
            self.cpu_prev = self.reader.cpu()
        except ReadError as e:
            logger.error("Error reading initial cpu usage", {"error": str(e)})

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def flush(self):
        for step in (
            self.publish_cpu_totals,
            self.publish_memory,
            self.publish_swap,
            self.publish_uptime,
            self.publish_network_interfaces,
            self.publish_disks,
        ):
            step()

    # ------------------------------------------------------------------
    # Subsystems
    # ------------------------------------------------------------------

    def publish_cpu_totals(self):
        cpu = self.reader.cpu()

        # The baseline moves on every successful read, including one that
        # produces an inconsistent delta, so the next tick starts clean.
        prev, self.cpu_prev = self.cpu_prev, cpu
        if prev is None:
            logger.info("CPU baseline established")
            return

        delta = cpu.delta(prev)
        self._emit_cpu(delta, cpu_percent(delta))

    def publish_memory(self):
        self._emit_memory(self.reader.memory())

    def publish_swap(self):
        self._emit_swap(self.reader.swap())

    def publish_uptime(self):
        self._emit_uptime(self.reader.uptime())

    def publish_network_interfaces(self):
        self._emit_network(self.reader.network_interfaces())

    def publish_disks(self):
        self._emit_disks(self.reader.disks())

    # ------------------------------------------------------------------
    # Sink hooks
    # ------------------------------------------------------------------

    def _emit_cpu(self, delta, usage: float):
        raise NotImplementedError

    def _emit_memory(self, mem):
        raise NotImplementedError

    def _emit_swap(self, swap):
        raise NotImplementedError

    def _emit_uptime(self, length: float):
        raise NotImplementedError

    def _emit_network(self, ifaces: dict):
        raise NotImplementedError

    def _emit_disks(self, devices: dict):
        raise NotImplementedError


def _cpu_fields(delta, usage: float) -> dict:
    out = {name: getattr(delta, name) for name in CPU_FIELDS}
    out["total"] = delta.total()
    out["usage"] = usage
    return out


def _memory_fields(mem) -> dict:
    return {
        "free":       mem.free,
        "used":       mem.used,
        "actualfree": mem.actual_free,
        "actualused": mem.actual_used,
        "total":      mem.total,
    }


def _swap_fields(swap) -> dict:
    return {"free": swap.free, "used": swap.used, "total": swap.total}


# ---------------------------------------------------------------------------
# RegistryPublisher
# ---------------------------------------------------------------------------

class RegistryPublisher(StatsPublisher):
    """Writes every derived value into a shared Registry as a gauge."""

    def __init__(self, registry, reader: CounterReader = None):
        self.registry = registry
        super().__init__(reader)

    def set_gauge(self, key: str, val):
        self.registry.get_or_create_gauge(key).update(val)

    def set_gauge_float(self, key: str, val):
        self.registry.get_or_create_gauge_float(key).update(val)

    def _emit_cpu(self, delta, usage):
        fields = _cpu_fields(delta, usage)
        usage  = fields.pop("usage")
        for name, val in fields.items():
            self.set_gauge(f"cpu.totals.{name}", val)
        self.set_gauge_float("cpu.totals.usage", usage)

    def _emit_memory(self, mem):
        for name, val in _memory_fields(mem).items():
            self.set_gauge(f"memory.{name}", val)

    def _emit_swap(self, swap):
        for name, val in _swap_fields(swap).items():
            self.set_gauge(f"swap.{name}", val)

    def _emit_uptime(self, length):
        self.set_gauge_float("uptime.length", length)

    def _emit_network(self, ifaces):
        for iface, counters in ifaces.items():
            for name, val in counters.items():
                self.set_gauge(f"network.interfaces.{iface}.{name}", val)

    def _emit_disks(self, devices):
        for device, counters in devices.items():
            for name, val in counters.items():
                self.set_gauge(f"diskstats.{device}.{name}", val)


# ---------------------------------------------------------------------------
# TopicPublisher
# ---------------------------------------------------------------------------

class TopicPublisher(RegistryPublisher):
    """
    Publishes one flat payload per subsystem to <prefix>/<category>.

    publish_fn(topic, fields) is called synchronously; its return value is
    ignored (publishing is fire-and-forget).  When a registry is given, every
    value is also written there as a gauge from the same read, so both sinks
    share one CPU baseline and one fail-fast pass.
    """

    CATEGORIES = {
        "cpu":     "cpu/total",
        "memory":  "memory",
        "swap":    "swap",
        "uptime":  "uptime",
        "network": "network/interfaces",
        "disk":    "diskstats",
    }

    def __init__(self, publish_fn, prefix: str, reader: CounterReader = None, registry=None):
        self.publish_fn = publish_fn
        self.prefix     = prefix.rstrip("/")
        super().__init__(registry, reader)

    def topic(self, category: str) -> str:
        return f"{self.prefix}/{self.CATEGORIES[category]}"

    def _publish(self, category: str, payload: dict):
        self.publish_fn(self.topic(category), payload)

    def _emit_cpu(self, delta, usage):
        self._publish("cpu", _cpu_fields(delta, usage))
        if self.registry is not None:
            super()._emit_cpu(delta, usage)

    def _emit_memory(self, mem):
        self._publish("memory", _memory_fields(mem))
        if self.registry is not None:
            super()._emit_memory(mem)

    def _emit_swap(self, swap):
        self._publish("swap", _swap_fields(swap))
        if self.registry is not None:
            super()._emit_swap(swap)

    def _emit_uptime(self, length):
        self._publish("uptime", {"length": length})
        if self.registry is not None:
            super()._emit_uptime(length)

    def _emit_network(self, ifaces):
        self._publish("network", ifaces)
        if self.registry is not None:
            super()._emit_network(ifaces)

    def _emit_disks(self, devices):
        self._publish("disk", devices)
        if self.registry is not None:
            super()._emit_disks(devices)
