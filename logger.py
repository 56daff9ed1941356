"""
logger.py — Structured JSON-line logger.

Keeps a rolling log file capped at MAX_LINES entries.
Provides typed helpers: debug, info, warn, error, system.

Debug lines are dropped unless configure(debug=True) was called (the --debug
flag or DEBUG env var).  configure() can also echo every entry to stderr, which is
what the agent does when it runs in the foreground.
"""
import json
import os
import sys
import threading
from datetime import datetime

LOG_PATH  = os.path.join(os.path.expanduser("~"), "sysinfo", "logs", "sysinfo.log")
MAX_LINES = 2000
_lock     = threading.Lock()
_state    = {"debug": False, "echo": False}


def configure(path: str = None, debug: bool = None, echo: bool = None):
    """Override log path, debug gating and stderr echo (None keeps current)."""
    global LOG_PATH
    if path:
        LOG_PATH = os.path.expanduser(path)
    if debug is not None:
        _state["debug"] = bool(debug)
    if echo is not None:
        _state["echo"] = bool(echo)


def _write(level: str, msg: str, data: dict = None):
    entry = {
        "ts":    datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "level": level,
        "msg":   msg,
    }
    if data:
        entry["data"] = data

    line = json.dumps(entry, default=str)
    os.makedirs(os.path.dirname(LOG_PATH), exist_ok=True)

    with _lock:
        # Rolling truncation: drop the oldest half when over limit
        try:
            with open(LOG_PATH, "r") as f:
                lines = f.readlines()
            if len(lines) >= MAX_LINES:
                with open(LOG_PATH, "w") as f:
                    f.writelines(lines[MAX_LINES // 2:])
        except FileNotFoundError:
            pass

        with open(LOG_PATH, "a") as f:
            f.write(line + "\n")

        if _state["echo"]:
            print(line, file=sys.stderr, flush=True)


def debug(msg, data=None):
    if _state["debug"]:
        _write("DEBUG", msg, data)


def info(msg,   data=None): _write("INFO",   msg, data)
def warn(msg,   data=None): _write("WARN",   msg, data)
def error(msg,  data=None): _write("ERROR",  msg, data)
def system(msg, data=None): _write("SYSTEM", msg, data)


def read_log(last_n=300):
    """Return the last `last_n` log entries as a list of dicts."""
    try:
        with open(LOG_PATH, "r") as f:
            lines = f.readlines()
        out = []
        for line in lines[-last_n:]:
            line = line.strip()
            if not line:
                continue
            try:
                out.append(json.loads(line))
            except ValueError:
                out.append({"ts": "?", "level": "RAW", "msg": line})
        return out
    except FileNotFoundError:
        return []
