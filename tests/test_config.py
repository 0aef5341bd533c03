"""
Tests for switchyard configuration loading.
"""

import logging

import pytest
import yaml

from switchyard.config import KernelConfig, configure_logging
from switchyard.errors import TimeoutConfigError
from switchyard.kernel import Kernel


class TestDefaults:
    """Test default configuration."""

    def test_defaults(self):
        config = KernelConfig()

        assert config.load_error_retry_ms == 200.0
        assert config.initial_url == "http://localhost/"
        assert config.url_reroute_only is False
        assert config.timeouts.bootstrap.millis == 4000
        assert config.timeouts.mount.millis == 3000

    def test_kernel_uses_config(self):
        kernel = Kernel(KernelConfig(initial_url="http://localhost/start", url_reroute_only=True))

        assert kernel.location.path == "/start"
        assert kernel.navigation.url_reroute_only is True


class TestFromEnv:
    """Test SWITCHYARD_* environment variables."""

    def test_reads_variables(self):
        config = KernelConfig.from_env({
            "SWITCHYARD_LOAD_ERROR_RETRY_MS": "500",
            "SWITCHYARD_INITIAL_URL": "http://app.local/",
            "SWITCHYARD_URL_REROUTE_ONLY": "yes",
            "SWITCHYARD_DIE_ON_TIMEOUT": "true",
            "SWITCHYARD_MOUNT_TIMEOUT_MS": "50",
            "SWITCHYARD_LOG_LEVEL": "debug",
        })

        assert config.load_error_retry_ms == 500.0
        assert config.initial_url == "http://app.local/"
        assert config.url_reroute_only is True
        assert config.timeouts.mount.millis == 50
        assert config.timeouts.unmount.millis == 3000
        assert all(config.timeouts.for_phase(phase).die_on_timeout for phase in ("bootstrap", "mount", "unload"))
        assert config.log_level == "DEBUG"

    def test_empty_environment_keeps_defaults(self):
        assert KernelConfig.from_env({}).to_dict() == KernelConfig().to_dict()

    @pytest.mark.parametrize("value", ["soon", "-5"])
    def test_invalid_timeout(self, value):
        with pytest.raises(TimeoutConfigError):
            KernelConfig.from_env({"SWITCHYARD_UNMOUNT_TIMEOUT_MS": value})


class TestFromFile:
    """Test YAML configuration files."""

    def test_from_file(self, tmp_path):
        path = tmp_path / "switchyard.yaml"
        path.write_text(
            "timeouts:\n"
            "  bootstrap:\n"
            "    millis: 100\n"
            "    dieOnTimeout: true\n"
            "load_error_retry_ms: 50\n"
            "initial_url: http://example.com/app\n"
        )

        config = KernelConfig.from_file(path)

        assert config.timeouts.bootstrap.millis == 100
        assert config.timeouts.bootstrap.die_on_timeout is True
        assert config.load_error_retry_ms == 50.0
        assert config.initial_url == "http://example.com/app"

    def test_missing_file(self, tmp_path):
        config = KernelConfig.from_file(tmp_path / "absent.yaml")
        assert config.to_dict() == KernelConfig().to_dict()

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError):
            KernelConfig.from_file(path)

    def test_invalid_timeouts(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("timeouts:\n  mount:\n    millis: -1\n")

        with pytest.raises(TimeoutConfigError):
            KernelConfig.from_file(path)

    def test_save_round_trip(self, tmp_path):
        config = KernelConfig(load_error_retry_ms=75.0, debug=True)
        config.timeouts = config.timeouts.with_overrides({"update": {"millis": 9}})
        path = tmp_path / "nested" / "switchyard.yaml"

        config.save(path)

        assert yaml.safe_load(path.read_text())["timeouts"]["update"]["millis"] == 9
        assert KernelConfig.from_file(path).to_dict() == config.to_dict()

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "switchyard.yaml"
        path.write_text("load_error_retry_ms: 50\n")

        config = KernelConfig.load(path, environ={"SWITCHYARD_LOAD_ERROR_RETRY_MS": "75"})

        assert config.load_error_retry_ms == 75.0


class TestConfigureLogging:
    """Test host logging setup."""

    def test_debug_level(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

        configure_logging(KernelConfig(debug=True))

        assert captured["level"] == logging.DEBUG

    def test_named_level(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))

        configure_logging(KernelConfig(log_level="WARNING"))

        assert captured["level"] == logging.WARNING
