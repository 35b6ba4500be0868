"""Tests for webhook_relay.main entry point."""

from __future__ import annotations

from unittest.mock import patch


def test_main_calls_uvicorn_run(monkeypatch) -> None:
    """main() delegates to uvicorn.run with the app factory and configured port."""
    monkeypatch.delenv("WEBHOOKRELAY_RELOAD", raising=False)
    with patch("webhook_relay.main.uvicorn.run") as mock_run:
        from webhook_relay.main import main

        main()
        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] == "webhook_relay.api.app:create_app"
        assert kwargs["factory"] is True
        assert kwargs["port"] == 3004
        assert kwargs["reload"] is False


def test_main_honours_env(monkeypatch) -> None:
    monkeypatch.setenv("WEBHOOKRELAY_SERVER__PORT", "8088")
    monkeypatch.setenv("WEBHOOKRELAY_RELOAD", "true")
    with patch("webhook_relay.main.uvicorn.run") as mock_run:
        from webhook_relay.main import main

        main()
        kwargs = mock_run.call_args.kwargs
        assert kwargs["port"] == 8088
        assert kwargs["reload"] is True


def test_log_config_attaches_package_logger() -> None:
    from uvicorn.config import LOGGING_CONFIG

    from webhook_relay.main import log_config

    cfg = log_config("debug")
    assert cfg["loggers"]["webhook_relay"]["level"] == "DEBUG"
    assert cfg["loggers"]["webhook_relay"]["handlers"] == ["default"]
    assert "webhook_relay" not in LOGGING_CONFIG["loggers"]


def test_main_reads_yaml_from_env(monkeypatch, tmp_path) -> None:
    path = tmp_path / "relay.yaml"
    path.write_text("server:\n  port: 9100\n", encoding="utf-8")
    monkeypatch.setenv("WEBHOOKRELAY_CONFIG_PATH", str(path))
    monkeypatch.delenv("WEBHOOKRELAY_SERVER__PORT", raising=False)
    with patch("webhook_relay.main.uvicorn.run") as mock_run:
        from webhook_relay.main import main

        main()
        assert mock_run.call_args.kwargs["port"] == 9100
