import pytest
from agentlink.config import (
    AppConfig,
    WebSocketSettings,
    config_errors,
    load_config,
    validate_config,
    websocket_url,
)


class TestLoadConfig:
    def test_defaults_with_empty_env(self):
        config = load_config({})
        assert config.websocket.base_url == "ws://localhost"
        assert config.websocket.call_center_path == "/ws/call-center"
        assert config.websocket.default_port == 8080
        assert config.websocket.reconnect_interval == 3.0
        assert config.websocket.heartbeat_interval == 15.0
        assert config.websocket.max_reconnect_attempts == 10
        assert config.websocket.max_reconnect_delay == 30.0
        assert config.ai_service.base_url == "http://localhost:8000"
        assert config.calls.agent_id == "agent-001"
        assert config.calls.auto_accept is False
        assert config.metrics_path == ""

    def test_reads_prefixed_variables(self):
        config = load_config({
            "AGENTLINK_WS_BASE_URL": "wss://gateway.example.com",
            "AGENTLINK_WS_PORT": "9443",
            "AGENTLINK_WS_RECONNECT_INTERVAL": "1.5",
            "AGENTLINK_AGENT_ID": "agent-42",
            "AGENTLINK_AUTO_ACCEPT": "true",
            "AGENTLINK_AFTER_CALL_WORK_SECONDS": "30",
            "AGENTLINK_METRICS_PATH": "/tmp/metrics.json",
        })
        assert config.websocket.base_url == "wss://gateway.example.com"
        assert config.websocket.default_port == 9443
        assert config.websocket.reconnect_interval == 1.5
        assert config.calls.agent_id == "agent-42"
        assert config.calls.auto_accept is True
        assert config.calls.after_call_work_seconds == 30
        assert config.metrics_path == "/tmp/metrics.json"

    def test_bad_numbers_fall_back_to_defaults(self):
        config = load_config({
            "AGENTLINK_WS_PORT": "eighty",
            "AGENTLINK_WS_HEARTBEAT_INTERVAL": "soon",
        })
        assert config.websocket.default_port == 8080
        assert config.websocket.heartbeat_interval == 15.0

    def test_empty_value_uses_default(self):
        config = load_config({"AGENTLINK_AGENT_ID": ""})
        assert config.calls.agent_id == "agent-001"


class TestValidateConfig:
    def test_defaults_are_valid(self):
        assert config_errors(AppConfig()) == []

    def test_rejects_non_positive_intervals(self):
        config = AppConfig(websocket=WebSocketSettings(reconnect_interval=0, heartbeat_interval=-1))
        errors = config_errors(config)
        assert any("WS_RECONNECT_INTERVAL" in e for e in errors)
        assert any("WS_HEARTBEAT_INTERVAL" in e for e in errors)

    def test_exits_on_invalid_config(self, capsys):
        config = AppConfig(websocket=WebSocketSettings(default_port=0))
        with pytest.raises(SystemExit) as exc:
            validate_config(config)
        assert exc.value.code == 1
        assert "WS_PORT" in capsys.readouterr().err


class TestWebsocketUrl:
    def test_includes_all_params(self):
        url = websocket_url(AppConfig(), caller_id="+15125551234", agent_id="agent-1", role="supervisor")
        assert url == (
            "ws://localhost:8080/ws/call-center"
            "?callerId=%2B15125551234&agentId=agent-1&role=supervisor"
        )

    def test_omits_empty_params(self):
        url = websocket_url(AppConfig(), caller_id="c-1", agent_id="agent-1")
        assert url == "ws://localhost:8080/ws/call-center?callerId=c-1&agentId=agent-1"

    def test_no_params_has_no_query_string(self):
        assert websocket_url(AppConfig()) == "ws://localhost:8080/ws/call-center"

    def test_port_override(self):
        url = websocket_url(AppConfig(), agent_id="a", port=9000)
        assert url.startswith("ws://localhost:9000/ws/call-center")
