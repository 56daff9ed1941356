from __future__ import annotations

import json

import app
import config
import logger


def test_defaults_when_file_absent(tmp_path, monkeypatch):
    monkeypatch.delenv("DEBUG", raising=False)
    status = {"loaded": False, "error": None}
    cfg = config.load(str(tmp_path / "missing.json"), status)
    assert cfg["agent"]["mqtt_url"] == "tcp://localhost:1883"
    assert cfg["agent"]["publish_interval"] == 15.0
    assert cfg["server"]["port"] == 9980
    assert cfg["logging"]["debug"] is False
    assert status == {"loaded": False, "error": None}


def test_file_overrides_one_level_and_skips_comments(tmp_path, monkeypatch):
    monkeypatch.delenv("DEBUG", raising=False)
    path = tmp_path / "sysinfo.config.json"
    path.write_text(json.dumps({
        "_comment": "ignored",
        "agent": {"mqtt_url": "mqtts://b:1", "_note": "ignored"},
        "server": {"enabled": False},
    }))
    status = {}
    cfg = config.load(str(path), status)
    assert status["loaded"] is True
    assert cfg["agent"]["mqtt_url"] == "mqtts://b:1"
    assert cfg["agent"]["topic"] == "sysinfo/stats"
    assert "_note" not in cfg["agent"]
    assert "_comment" not in cfg
    assert cfg["server"]["enabled"] is False
    assert cfg["server"]["port"] == 9980


def test_bad_json_falls_back_to_defaults(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    status = {}
    cfg = config.load(str(path), status)
    assert "error" in status
    assert cfg["agent"]["client_id"] == "sysinfo-mqtt"


def test_debug_env_forces_debug(tmp_path, monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    cfg = config.load(str(tmp_path / "missing.json"))
    assert cfg["logging"]["debug"] is True


def test_loaded_defaults_are_not_shared():
    a = config.load("/nonexistent/file.json")
    a["agent"]["mqtt_url"] = "tcp://changed"
    assert config._DEFAULTS["agent"]["mqtt_url"] == "tcp://localhost:1883"


def test_flags_override_config():
    args = app.parse_args(["--debug", "-u", "ws://x:9001", "-i", "30", "--poll", "2",
                           "-p", "8080", "--mode", "topics", "--no-server"])
    agent, server, log_cfg = {}, {"enabled": True}, {"debug": False}
    app.apply_args(args, agent, server, log_cfg)
    assert log_cfg["debug"] is True
    assert agent == {
        "mqtt_url":         "ws://x:9001",
        "publish_interval": 30.0,
        "poll_interval":    2.0,
        "mode":             "topics",
    }
    assert server == {"enabled": False, "port": 8080}


def test_no_flags_leave_config_alone():
    args = app.parse_args([])
    agent, server, log_cfg = {"mqtt_url": "tcp://a"}, {"enabled": True}, {"debug": False}
    app.apply_args(args, agent, server, log_cfg)
    assert agent == {"mqtt_url": "tcp://a"}
    assert server == {"enabled": True}
    assert log_cfg == {"debug": False}


def test_main_rejects_bad_broker_url(tmp_path):
    path = tmp_path / "c.json"
    path.write_text(json.dumps({"logging": {"path": str(tmp_path / "agent.log"), "echo": False}}))
    assert app.main(["--config", str(path), "-u", "http://nope", "--no-server"]) == 2


def test_configure_debug_gates_debug_lines():
    logger.configure(debug=False)
    logger.debug("hidden")
    logger.info("shown")
    logger.configure(debug=True)
    logger.debug("now visible")
    msgs = [e["msg"] for e in logger.read_log()]
    assert msgs == ["shown", "now visible"]
