from __future__ import annotations

import json

import pytest

from engine import Engine
from publisher import RegistryPublisher


def _agent(proc_root, **kw):
    agent = {
        "mqtt_url":         "tcp://localhost:1883",
        "client_id":        "test-agent",
        "mode":             "registry",
        "topic":            "sysinfo/stats",
        "topic_prefix":     "sysinfo/host1",
        "poll_interval":    1.0,
        "publish_interval": 15.0,
        "proc_root":        proc_root,
    }
    agent.update(kw)
    return agent


def test_registry_mode_end_to_end(proc_root, fake_clients):
    eng = Engine(_agent(proc_root), {"enabled": False}, client_factory=fake_clients)
    assert isinstance(eng.publisher, RegistryPublisher)
    assert eng.server is None

    eng.scheduler.poll_tick()
    eng.scheduler.publish_tick(99)

    client = fake_clients.made[0]
    topic, payload, _ = client.published[0]
    doc = json.loads(payload)
    assert topic == "sysinfo/stats"
    assert doc["ts"] == 99
    assert doc["payload"]["network.interfaces.eth0.recv_bytes"] == 100
    assert doc["payload"]["cpu.totals.usage"] == 0.0


def test_topics_mode_publishes_per_category(proc_root, fake_clients):
    eng = Engine(_agent(proc_root, mode="topics"), {"enabled": False}, client_factory=fake_clients)
    assert eng.scheduler.publish is None

    eng.scheduler.poll_tick()

    client = fake_clients.made[0]
    topics = [t for t, _, _ in client.published]
    assert topics == [
        "sysinfo/host1/cpu/total",
        "sysinfo/host1/memory",
        "sysinfo/host1/swap",
        "sysinfo/host1/uptime",
        "sysinfo/host1/network/interfaces",
        "sysinfo/host1/diskstats",
    ]
    swap = json.loads(client.published[2][1])
    assert swap == {"free": 3000 * 1024, "used": 1000 * 1024, "total": 4000 * 1024}


def test_topics_mode_with_server_also_fills_registry(proc_root, fake_clients):
    server = {"enabled": True, "ping_period": 1.0, "async_mode": "threading"}
    eng = Engine(_agent(proc_root, mode="topics"), server, client_factory=fake_clients)
    eng.scheduler.poll_tick()
    assert "memory.total" in eng.registry
    assert len(fake_clients.made[0].published) == 6


def test_topics_mode_with_server_registry_survives_later_failure(proc_root, rewrite_proc, fake_clients):
    server = {"enabled": True, "ping_period": 1.0, "async_mode": "threading"}
    eng = Engine(_agent(proc_root, mode="topics"), server, client_factory=fake_clients)
    rewrite_proc(diskstats=None)

    eng.scheduler.poll_tick()

    assert "memory.total" in eng.registry
    assert "network.interfaces.eth0.recv_bytes" in eng.registry
    assert not any(name.startswith("diskstats.") for name in eng.registry.names())
    topics = [t for t, _, _ in fake_clients.made[0].published]
    assert len(topics) == 5
    assert "sysinfo/host1/diskstats" not in topics


def test_unknown_mode_rejected(proc_root, fake_clients):
    with pytest.raises(ValueError):
        Engine(_agent(proc_root, mode="bogus"), client_factory=fake_clients)


def test_start_and_stop(proc_root, fake_clients):
    eng = Engine(
        _agent(proc_root, poll_interval=0.05, publish_interval=0.1),
        {"enabled": False},
        client_factory=fake_clients,
    )
    eng.start()
    client = fake_clients.made[0]
    assert client.connects == 1
    assert eng.connection.connected

    eng.stop()
    eng.stop()
    assert not eng.connection.connected
    assert client.disconnects == 1
    assert not eng.scheduler.poll.running
