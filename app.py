"""
app.py — SysInfo agent entry point.

This file is intentionally thin: it reads config and flags, sets up the
logger, builds the Engine and then either serves the live Socket.IO endpoint
or waits for a shutdown signal.

Module layout
─────────────
  metrics.py     → /proc counter parsers (CounterReader)
  registry.py    → in-process gauge registry
  publisher.py   → delta + per-subsystem flush into registry or topics
  scheduler.py   → poll / publish tickers
  connection.py  → MQTT connection state machine (paho-mqtt)
  server.py      → Flask + Socket.IO live viewer endpoint
  engine.py      → wiring of all of the above
  config.py      → sysinfo.config.json with built-in defaults
  logger.py      → JSON structured log
"""

import argparse
import signal
import sys
import threading

import config as cfg
import logger
from connection import EndpointError
from engine import MODES, Engine

__version__ = "0.3.0"


# ---------------------------------------------------------------------------
# Flags
# ---------------------------------------------------------------------------

def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="sysinfo-agent", description="Publish host stats over MQTT.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--debug", action="store_true", default=None, help="Enable debug mode.")
    p.add_argument("-u", "--mqtt-url", help="The MQTT url to publish to.")
    p.add_argument("-i", "--interval", type=float, help="Publish interval in seconds.")
    p.add_argument("--poll", type=float, help="Poll interval in seconds.")
    p.add_argument("-p", "--port", type=int, help="Live viewer listen port.")
    p.add_argument("--mode", choices=MODES, help="Publish one snapshot or one topic per subsystem.")
    p.add_argument("--no-server", action="store_true", help="Disable the live viewer endpoint.")
    p.add_argument("--config", help="Alternative config file.")
    return p.parse_args(argv)


def apply_args(args, agent: dict, server: dict, log_cfg: dict):
    """Flags beat config file values; config file beats built-in defaults."""
    if args.debug:     log_cfg["debug"]          = True
    if args.mqtt_url:  agent["mqtt_url"]         = args.mqtt_url
    if args.interval:  agent["publish_interval"] = args.interval
    if args.poll:      agent["poll_interval"]    = args.poll
    if args.mode:      agent["mode"]             = args.mode
    if args.port:      server["port"]            = args.port
    if args.no_server: server["enabled"]         = False


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv=None) -> int:
    args = parse_args(argv)

    status = cfg._status
    if args.config:
        status = {"loaded": False, "error": None}
        sections = cfg.load(args.config, status)
    else:
        sections = cfg._cfg
    agent   = dict(sections["agent"])
    server  = dict(sections["server"])
    log_cfg = dict(sections["logging"])
    apply_args(args, agent, server, log_cfg)

    logger.configure(path=log_cfg["path"], debug=log_cfg["debug"], echo=log_cfg["echo"])

    if status["loaded"]:
        logger.system("Config loaded", {"file": args.config or cfg.CONFIG_FILE})
    elif status["error"]:
        logger.warn(f"Config parse error, using defaults: {status['error']}")
    else:
        logger.system("Config file absent, using built-in defaults", {"expected": args.config or cfg.CONFIG_FILE})

    try:
        engine = Engine(agent, server)
    except (EndpointError, ValueError) as e:
        logger.error(f"Startup failed: {e}")
        return 2

    logger.system(f"SysInfo agent {__version__} starting", {"broker": str(engine.connection.endpoint)})
    engine.start()

    done = threading.Event()

    def _shutdown(signum, frame):
        logger.system("Shutdown requested", {"signal": signal.Signals(signum).name})
        engine.stop()
        done.set()
        if engine.server:
            # socketio.run() only returns on interpreter exit
            sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    if engine.server:
        engine.server.serve(server["host"], server["port"])
    else:
        done.wait()
    engine.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
