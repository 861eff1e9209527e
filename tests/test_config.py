import pytest
from pydantic import ValidationError

from spdk_manager.config import Settings


def test_settings_defaults(monkeypatch):
    for name in ("SPDK_SOCKET_PATH", "SPDK_RPC_TIMEOUT", "LOG_LEVEL", "LOG_FILE"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()
    assert settings.spdk_socket_path == "/var/tmp/spdk_tgt.sock"
    assert settings.rpc_timeout_seconds == 30.0
    assert settings.discovery_tool_path == "/usr/bin/nvme_discover_json"
    assert settings.log_level == "INFO"
    assert settings.log_file is None


def test_settings_from_env_overrides(monkeypatch):
    monkeypatch.setenv("SPDK_SOCKET_PATH", "/run/spdk.sock")
    monkeypatch.setenv("SPDK_RPC_TIMEOUT", "5.5")
    monkeypatch.setenv("SYSFS_ROOT", "/tmp/fake-sys")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()
    assert settings.spdk_socket_path == "/run/spdk.sock"
    assert settings.rpc_timeout_seconds == 5.5
    assert settings.sysfs_root == "/tmp/fake-sys"
    assert settings.log_level == "debug"


def test_blank_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("SPDK_SOCKET_PATH", "   ")
    monkeypatch.setenv("COMMAND_TIMEOUT", "")

    settings = Settings.from_env()
    assert settings.spdk_socket_path == "/var/tmp/spdk_tgt.sock"
    assert settings.command_timeout_seconds == 10.0


def test_non_positive_timeout_is_rejected(monkeypatch):
    monkeypatch.setenv("SPDK_RPC_TIMEOUT", "0")

    with pytest.raises(ValidationError):
        Settings.from_env()
