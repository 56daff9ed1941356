"""
metrics.py — Raw system counters via the /proc filesystem.

Every subsystem has a pure parser that takes the file text and a
CounterReader method that opens the file and hands it over.  Parsers return
fresh values on each call and keep no state; delta logic lives in
publisher.py.

Public API
----------
CounterReader(proc_root="/proc")
    .cpu() -> Cpu
    .memory() -> Mem
    .swap() -> Swap
    .uptime() -> float
    .network_interfaces() -> {iface: {field: int}}
    .disks() -> {device: {field: int}}

ReadError(subsystem, cause)   source unreadable or malformed
"""

import os
from dataclasses import dataclass, fields

import logger


# ---------------------------------------------------------------------------
# Field layouts
# ---------------------------------------------------------------------------

NET_KEYS = (
    "recv_bytes", "recv_packets", "recv_errs", "recv_drop",
    "recv_fifo", "recv_frame", "recv_compressed", "recv_multicast",
    "trans_bytes", "trans_packets", "trans_errs", "trans_drop",
    "trans_fifo", "trans_colls", "trans_carrier", "trans_compressed",
)

DISK_KEYS = (
    "read_ios", "read_merges", "read_sectors", "read_ticks",
    "write_ios", "write_merges", "write_sectors", "write_ticks",
    "in_flight", "io_ticks", "time_in_queue",
)

DISK_MIN_FIELDS = 14
NET_HEADER_LINES = 2


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ReadError(Exception):
    """A counter source could not be opened or its format is unrecognized."""

    def __init__(self, subsystem: str, cause):
        self.subsystem = subsystem
        self.cause     = cause
        super().__init__(f"{subsystem}: {cause}")


class CounterError(ReadError):
    """Two consecutive samples moved backwards (counter reset or wrap)."""


class ParseFieldError(ValueError):
    """A single counter token is malformed; callers degrade it to 0."""

    def __init__(self, subsystem: str, name: str, field: str, token):
        self.subsystem = subsystem
        self.name      = name
        self.field     = field
        self.token     = token
        super().__init__(f"{subsystem}: {name}.{field}: bad token {token!r}")


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Cpu:
    """Cumulative CPU ticks since boot (first line of /proc/stat)."""
    user:    int = 0
    nice:    int = 0
    sys:     int = 0
    idle:    int = 0
    wait:    int = 0
    irq:     int = 0
    softirq: int = 0
    stolen:  int = 0

    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def delta(self, previous: "Cpu") -> "Cpu":
        """Fieldwise self - previous; raises CounterError if any field went backwards."""
        diff = {
            f.name: getattr(self, f.name) - getattr(previous, f.name)
            for f in fields(self)
        }
        negative = [k for k, v in diff.items() if v < 0]
        if negative:
            raise CounterError("cpu", f"counters went backwards: {', '.join(negative)}")
        return Cpu(**diff)


@dataclass(frozen=True)
class Mem:
    free:        int
    used:        int
    actual_free: int
    actual_used: int
    total:       int


@dataclass(frozen=True)
class Swap:
    free:  int
    used:  int
    total: int


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

def _counter(token, subsystem: str, name: str, field: str) -> int:
    """Parse one counter token, degrading a bad or missing token to 0."""
    try:
        return int(token)
    except (TypeError, ValueError):
        err = ParseFieldError(subsystem, name, field, token)
        logger.debug("Counter degraded to 0", {"error": str(err)})
        return 0


def parse_cpu_stat(text: str) -> Cpu:
    for line in text.splitlines():
        parts = line.split()
        if not parts or parts[0] != "cpu":
            continue
        try:
            values = [int(x) for x in parts[1:9]]
        except ValueError as e:
            raise ReadError("cpu", e) from e
        if len(values) < 4:
            raise ReadError("cpu", f"too few fields in {line!r}")
        return Cpu(*values)
    raise ReadError("cpu", "no aggregate cpu line")


def _meminfo_table(text: str, subsystem: str) -> dict:
    table = {}
    for line in text.splitlines():
        if ":" not in line:
            continue
        k, v = line.split(":", 1)
        parts = v.split()
        if not parts:
            continue
        try:
            n = int(parts[0])
        except ValueError as e:
            raise ReadError(subsystem, f"{k.strip()}: {e}") from e
        # values are reported in kB
        if len(parts) > 1 and parts[1].lower() == "kb":
            n *= 1024
        table[k.strip()] = n
    return table


def _require(table: dict, subsystem: str, *keys):
    missing = [k for k in keys if k not in table]
    if missing:
        raise ReadError(subsystem, f"missing {', '.join(missing)}")


def parse_meminfo(text: str) -> Mem:
    info = _meminfo_table(text, "memory")
    _require(info, "memory", "MemTotal", "MemFree")
    total  = info["MemTotal"]
    free   = info["MemFree"]
    cached = info.get("Buffers", 0) + info.get("Cached", 0)
    used   = total - free
    return Mem(
        free        = free,
        used        = used,
        actual_free = free + cached,
        actual_used = used - cached,
        total       = total,
    )


def parse_swap(text: str) -> Swap:
    info = _meminfo_table(text, "swap")
    _require(info, "swap", "SwapTotal", "SwapFree")
    total = info["SwapTotal"]
    free  = info["SwapFree"]
    return Swap(free=free, used=total - free, total=total)


def parse_uptime(text: str) -> float:
    parts = text.split()
    if not parts:
        raise ReadError("uptime", "empty source")
    try:
        return float(parts[0])
    except ValueError as e:
        raise ReadError("uptime", e) from e


def parse_net_dev(text: str) -> dict:
    """
    Parse /proc/net/dev text into {iface: {field: int}}.

    The first two lines are headers.  Every other line must contain a ':'
    separating the interface name from its 16 counters; a line without one
    fails the whole read.
    """
    result = {}
    for line in text.splitlines()[NET_HEADER_LINES:]:
        parts = line.split(":", 1)
        if len(parts) < 2:
            raise ReadError("network", f"unable to parse line {line!r}")

        iface  = parts[0].strip()
        tokens = parts[1].split()
        result[iface] = {
            key: _counter(tokens[i] if i < len(tokens) else None, "network", iface, key)
            for i, key in enumerate(NET_KEYS)
        }
    return result


def parse_diskstats(text: str) -> dict:
    """Parse /proc/diskstats text into {device: {field: int}}."""
    result = {}
    for line in text.splitlines():
        tokens = line.split()
        if len(tokens) < DISK_MIN_FIELDS:
            raise ReadError("disk", f"unable to parse line {line!r}")

        device = tokens[2]
        result[device] = {
            key: _counter(tokens[3 + i], "disk", device, key)
            for i, key in enumerate(DISK_KEYS)
        }
    return result


# ---------------------------------------------------------------------------
# CounterReader
# ---------------------------------------------------------------------------

class CounterReader:
    """
    Reads point-in-time samples from a /proc-style tree.

    proc_root is configurable so a captured tree (or a test fixture) can be
    read in place of the live one.
    """

    def __init__(self, proc_root: str = "/proc"):
        self.proc_root = proc_root

    def _read(self, subsystem: str, relpath: str) -> str:
        try:
            with open(os.path.join(self.proc_root, relpath)) as f:
                return f.read()
        except OSError as e:
            raise ReadError(subsystem, e) from e

    def cpu(self) -> Cpu:
        return parse_cpu_stat(self._read("cpu", "stat"))

    def memory(self) -> Mem:
        return parse_meminfo(self._read("memory", "meminfo"))

    def swap(self) -> Swap:
        return parse_swap(self._read("swap", "meminfo"))

    def uptime(self) -> float:
        return parse_uptime(self._read("uptime", "uptime"))

    def network_interfaces(self) -> dict:
        return parse_net_dev(self._read("network", os.path.join("net", "dev")))

    def disks(self) -> dict:
        return parse_diskstats(self._read("disk", "diskstats"))
