from __future__ import annotations

import os
import threading

import pytest

import logger


@pytest.fixture(autouse=True)
def _isolated_log(tmp_path, monkeypatch):
    """Keep every test's log output under tmp_path."""
    monkeypatch.setattr(logger, "LOG_PATH", str(tmp_path / "logs" / "sysinfo.log"))
    monkeypatch.setitem(logger._state, "debug", True)
    monkeypatch.setitem(logger._state, "echo", False)
    yield


STAT = "cpu  100 0 50 800 50 0 0 0 0 0\ncpu0 100 0 50 800 50 0 0 0 0 0\nintr 1234\n"

MEMINFO = (
    "MemTotal:        8000 kB\n"
    "MemFree:         2000 kB\n"
    "Buffers:          500 kB\n"
    "Cached:          1500 kB\n"
    "SwapTotal:       4000 kB\n"
    "SwapFree:        3000 kB\n"
)

UPTIME = "12345.67 54321.00\n"

NET_DEV = (
    "Inter-|   Receive                                                |  Transmit\n"
    " face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed\n"
    "  eth0: 100 1 0 0 0 0 0 0 200 2 0 0 0 0 0 0\n"
    "    lo: 500 5 0 0 0 0 0 0 500 5 0 0 0 0 0 0\n"
)

DISKSTATS = (
    "   8       0 sda 10 1 80 5 20 2 160 7 0 12 12\n"
    "   8       1 sda1 3 0 24 1 4 0 32 2 0 3 3\n"
)


def write_proc(root, stat=STAT, meminfo=MEMINFO, uptime=UPTIME, net_dev=NET_DEV, diskstats=DISKSTATS):
    os.makedirs(os.path.join(root, "net"), exist_ok=True)
    for rel, text in (
        ("stat", stat),
        ("meminfo", meminfo),
        ("uptime", uptime),
        (os.path.join("net", "dev"), net_dev),
        ("diskstats", diskstats),
    ):
        path = os.path.join(root, rel)
        if text is None:
            if os.path.exists(path):
                os.remove(path)
            continue
        with open(path, "w") as f:
            f.write(text)


@pytest.fixture
def proc_root(tmp_path):
    root = tmp_path / "proc"
    write_proc(str(root))
    return str(root)


class _Rc:
    def __init__(self, failure: bool):
        self.is_failure = failure

    def __str__(self):
        return "failure" if self.is_failure else "success"


class _Info:
    def __init__(self, rc: int):
        self.rc = rc


class FakeClient:
    """Stands in for a paho client: records calls, fails connects on demand."""

    def __init__(self, endpoint=None, client_id=None):
        self.endpoint      = endpoint
        self.client_id     = client_id
        self.connects      = 0
        self.loops         = 0
        self.disconnects   = 0
        self.loop_stops    = 0
        self.published     = []
        self.fail_connects = 0
        self.publish_rc    = 0
        self.connect_delay = None
        self.on_connect    = None
        self.on_disconnect = None
        self.lock          = threading.Lock()

    def connect(self, host, port):
        with self.lock:
            self.connects += 1
            if self.fail_connects:
                self.fail_connects -= 1
                raise ConnectionRefusedError("connection refused")
        if self.connect_delay:
            self.connect_delay.wait(2)

    def loop_start(self):
        self.loops += 1

    def loop_stop(self):
        self.loop_stops += 1

    def disconnect(self):
        self.disconnects += 1

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))
        return _Info(self.publish_rc)

    def lose_connection(self):
        self.on_disconnect(self, None, None, _Rc(True), None)

    def refuse(self):
        self.on_connect(self, None, None, _Rc(True), None)


@pytest.fixture
def fake_clients():
    """A client_factory that records every client it builds."""
    made = []

    def factory(endpoint, client_id):
        c = FakeClient(endpoint, client_id)
        made.append(c)
        return c

    factory.made = made
    return factory


@pytest.fixture
def rewrite_proc(proc_root):
    """Overwrite files in the fixture /proc tree; pass None to delete one."""
    def _rewrite(**files):
        write_proc(proc_root, **{**_current(proc_root), **files})
    return _rewrite


def _current(root):
    out = {}
    for key, rel in (
        ("stat", "stat"),
        ("meminfo", "meminfo"),
        ("uptime", "uptime"),
        ("net_dev", os.path.join("net", "dev")),
        ("diskstats", "diskstats"),
    ):
        path = os.path.join(root, rel)
        out[key] = None
        if os.path.exists(path):
            with open(path) as f:
                out[key] = f.read()
    return out
