"""
config.py — Load sysinfo.config.json and expose typed section dicts.

Usage
-----
    from config import AGENT, SERVER, LOGGING

Keys missing from the JSON file fall back to the built-in defaults below,
so the agent always starts even if the config file is absent or partially
edited.  SYSINFO_CONFIG points at an alternative file; DEBUG=1 in the
environment forces debug logging.
"""

import json
import os

CONFIG_FILE = os.environ.get(
    "SYSINFO_CONFIG",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "sysinfo.config.json"),
)

# ---------------------------------------------------------------------------
# Built-in defaults (lowest priority)
# ---------------------------------------------------------------------------

_DEFAULTS: dict = {
    "agent": {
        "mqtt_url":         "tcp://localhost:1883",
        "client_id":        "sysinfo-mqtt",
        "mode":             "registry",        # "registry" | "topics"
        "topic":            "sysinfo/stats",
        "topic_prefix":     "sysinfo",
        "poll_interval":    1.0,
        "publish_interval": 15.0,
        "proc_root":        "/proc",
    },
    "server": {
        "enabled":     True,
        "host":        "0.0.0.0",
        "port":        9980,
        "ping_period": 5.0,
        "async_mode":  "eventlet",
    },
    "logging": {
        "debug": False,
        "echo":  True,
        "path":  "~/sysinfo/logs/sysinfo.log",
    },
}

_TRUTHY = {"1", "true", "yes", "on"}

# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _merge(base: dict, over: dict) -> dict:
    """Shallow-merge *over* into *base*, one level deep; skip '_*' comment keys."""
    out = dict(base)
    for k, v in over.items():
        if str(k).startswith("_"):
            continue
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = {
                ik: iv
                for ik, iv in {**out[k], **v}.items()
                if not str(ik).startswith("_")
            }
        else:
            out[k] = v
    return out


def load(path: str = None, status: dict = None) -> dict:
    """Return defaults merged with the JSON file at *path* (default CONFIG_FILE)."""
    path   = path or CONFIG_FILE
    status = status if status is not None else {}
    cfg    = {s: dict(v) for s, v in _DEFAULTS.items()}
    if os.path.exists(path):
        try:
            with open(path) as fh:
                cfg = _merge(cfg, json.load(fh))
            status["loaded"] = True
        except (OSError, ValueError) as exc:
            status["error"] = str(exc)
    if os.environ.get("DEBUG", "").strip().lower() in _TRUTHY:
        cfg["logging"]["debug"] = True
    return cfg


# Track load outcome so app.py can log it after the logger is ready
_status: dict = {"loaded": False, "error": None}

_cfg    = load(CONFIG_FILE, _status)
AGENT   = _cfg["agent"]
SERVER  = _cfg["server"]
LOGGING = _cfg["logging"]
