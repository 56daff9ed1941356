"""
engine.py — Wires reader, registry, publisher, broker connection, scheduler
and the optional live server into one start/stop unit.

Two modes, picked by agent.mode:

  registry   stats accumulate in a Registry; the publish ticker sends a
             {"ts", "payload"} snapshot to agent.topic
  topics     each poll sends one payload per subsystem to
             <agent.topic_prefix>/<category>

The live server reads the registry, so in topics mode the topic publisher
also mirrors every value it sends into that registry.
"""

import json
import threading

import logger
from connection import ConnectionManager
from metrics import CounterReader
from publisher import RegistryPublisher, TopicPublisher
from registry import Registry
from scheduler import PublishScheduler
from server import StreamServer

MODES = ("registry", "topics")


class Engine:
    """
    Parameters
    ----------
    agent          : dict   config.AGENT-style section
    server         : dict   config.SERVER-style section
    client_factory : callable | None   passed through to ConnectionManager
    """

    def __init__(self, agent: dict, server: dict = None, client_factory=None):
        mode = agent.get("mode", "registry")
        if mode not in MODES:
            raise ValueError(f"unknown mode {mode!r}, expected one of {MODES}")

        server        = server or {}
        self.mode     = mode
        self.reader   = CounterReader(agent.get("proc_root", "/proc"))
        self.registry = Registry()
        self.connection = ConnectionManager(
            agent["mqtt_url"],
            client_id      = agent.get("client_id", "sysinfo-mqtt"),
            client_factory = client_factory,
        )

        self.server = None
        if server.get("enabled"):
            self.server = StreamServer(
                self.registry,
                connection  = self.connection,
                ping_period = server.get("ping_period", 5.0),
                async_mode  = server.get("async_mode", "eventlet"),
            )

        if mode == "registry":
            self.publisher = RegistryPublisher(self.registry, self.reader)
            snapshot_from  = self.registry
        else:
            self.publisher = TopicPublisher(
                self.publish_json,
                agent.get("topic_prefix", "sysinfo"),
                self.reader,
                registry = self.registry if self.server else None,
            )
            snapshot_from = None

        self.scheduler = PublishScheduler(
            self.publisher,
            self.connection,
            poll_interval    = agent.get("poll_interval", 1.0),
            publish_interval = agent.get("publish_interval", 15.0),
            registry         = snapshot_from,
            topic            = agent.get("topic", "sysinfo/stats"),
        )

        self._stopped = False
        self._lock    = threading.Lock()

    def publish_json(self, topic: str, fields: dict) -> bool:
        data = json.dumps(fields)
        logger.debug(f"Publishing to {topic} length {len(data)}")
        return self.connection.publish(topic, data)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        logger.system("Engine starting", {
            "mode":   self.mode,
            "broker": str(self.connection.endpoint),
            "server": self.server is not None,
        })
        self.connection.ensure_connected()
        self.scheduler.start()

    def stop(self):
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        self.scheduler.stop()
        self.connection.disconnect()
        logger.system("Engine stopped")
