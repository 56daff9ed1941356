"""
scheduler.py — Periodic poll and publish timers.

Ticker            calls fn(tick_ts) every `interval` seconds on a daemon
                  thread; a slow call makes the ticker drop the ticks it
                  missed rather than queue them
PublishScheduler  a fast poll ticker that refreshes stats and a slower
                  publish ticker that ships registry snapshots to the broker
"""

import json
import threading
import time

import logger
from metrics import ReadError


# ---------------------------------------------------------------------------
# Ticker
# ---------------------------------------------------------------------------

class Ticker:
    """
    Fixed-interval timer running on a real OS thread.

    Exceptions raised by fn are logged and the ticker keeps going.
    """

    def __init__(self, name: str, interval: float, fn):
        if interval <= 0:
            raise ValueError(f"{name}: interval must be positive, got {interval}")
        self.name      = name
        self.interval  = float(interval)
        self.fn        = fn
        self.ticks     = 0
        self.dropped   = 0
        self._stop     = threading.Event()
        self._thread   = None
        self._lock     = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(
                target=self._run, name=f"ticker-{self.name}", daemon=True
            )
            self._thread.start()
        logger.debug(f"Ticker {self.name} started", {"interval": self.interval})

    def stop(self, timeout: float = None):
        with self._lock:
            if self._stop.is_set():
                return
            self._stop.set()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug(f"Ticker {self.name} stopped", {"ticks": self.ticks, "dropped": self.dropped})

    def _run(self):
        next_at = time.monotonic() + self.interval
        while not self._stop.wait(max(0.0, next_at - time.monotonic())):
            self.tick(int(time.time()))

            next_at += self.interval
            now = time.monotonic()
            if next_at <= now:
                missed   = int((now - next_at) // self.interval) + 1
                next_at += missed * self.interval
                self.dropped += missed

    def tick(self, ts: int):
        self.ticks += 1
        try:
            self.fn(ts)
        except Exception as e:
            logger.error(f"Ticker {self.name} failed", {"error": repr(e)})


# ---------------------------------------------------------------------------
# PublishScheduler
# ---------------------------------------------------------------------------

class PublishScheduler:
    """
    Drives a publisher and ships its output.

    Parameters
    ----------
    publisher        : StatsPublisher     flushed on every poll tick
    connection       : ConnectionManager  outbound broker connection
    poll_interval    : float              seconds between flushes
    publish_interval : float              seconds between snapshot publishes
    registry         : Registry | None    snapshot source; None means the
                                          publisher sends per-topic payloads
                                          itself and only polling runs
    topic            : str                destination for snapshot payloads
    """

    def __init__(
        self,
        publisher,
        connection,
        poll_interval: float = 1.0,
        publish_interval: float = 15.0,
        registry=None,
        topic: str = "sysinfo/stats",
    ):
        self.publisher  = publisher
        self.connection = connection
        self.registry   = registry
        self.topic      = topic
        self.poll       = Ticker("poll", poll_interval, self.poll_tick)
        self.publish    = None
        if registry is not None:
            self.publish = Ticker("publish", publish_interval, self.publish_tick)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        self.poll.start()
        if self.publish:
            self.publish.start()
        logger.system("Scheduler started", {
            "poll_interval":    self.poll.interval,
            "publish_interval": self.publish.interval if self.publish else None,
            "mode":             "registry" if self.registry is not None else "topics",
        })

    def stop(self, timeout: float = 5.0):
        self.poll.stop(timeout)
        if self.publish:
            self.publish.stop(timeout)

    # ------------------------------------------------------------------
    # Tick bodies
    # ------------------------------------------------------------------

    def poll_tick(self, ts: int = None):
        # Per-topic payloads go straight out, so connect before sampling
        if self.registry is None and not self.connection.ensure_connected():
            logger.warn("Poll publish degraded: not connected")
        try:
            self.publisher.flush()
        except ReadError as e:
            logger.error("Flush failed", {"subsystem": e.subsystem, "error": str(e.cause)})

    def publish_tick(self, ts: int = None):
        ts      = int(time.time()) if ts is None else ts
        metrics = self.registry.snapshot()

        if not self.connection.ensure_connected():
            logger.warn("Publish failed: not connected")

        payload = envelope(metrics, ts)
        logger.debug(f"Publishing to {self.topic} length {len(payload)}")
        self.connection.publish(self.topic, payload)


def envelope(metrics: dict, ts: int = None) -> str:
    """Wrap a snapshot as the {"ts", "payload"} JSON document sent to consumers."""
    ts = int(time.time()) if ts is None else ts
    return json.dumps({"ts": ts, "payload": metrics})
