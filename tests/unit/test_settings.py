"""Unit tests for FetchSettings and throttle rule loading."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from anonfetch.config.settings import DEFAULT_IDENTITY_ORACLES, FetchSettings
from anonfetch.config.throttle_rules import (
    UNTHROTTLED,
    ThrottleRule,
    load_throttle_rules,
    parse_throttle_rules,
)
from anonfetch.errors import ConfigurationError


# ---------------------------------------------------------------------------
# FetchSettings
# ---------------------------------------------------------------------------


class TestFetchSettings:
    def test_defaults_are_correct(self) -> None:
        settings = FetchSettings()

        assert settings.downloader_name == "downloader"
        assert settings.log_level == "INFO"
        assert settings.timeout_seconds == 60
        assert settings.connect_timeout_seconds == 10
        assert settings.max_attempts == 3
        assert settings.max_rotations == 5
        assert settings.rotation_min_interval_seconds == 10
        assert settings.exclusion_max_size is None
        assert settings.verify_tls is True
        assert settings.identity_oracles == DEFAULT_IDENTITY_ORACLES
        assert settings.proxy_url is None

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANONFETCH_PROXY_HOST", "10.1.1.1")
        monkeypatch.setenv("ANONFETCH_PROXY_PORT", "9150")
        monkeypatch.setenv("ANONFETCH_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("ANONFETCH_IDENTITY_ORACLES", '["https://ip.test/"]')

        settings = FetchSettings()

        assert settings.proxy_url == "socks5://10.1.1.1:9150"
        assert settings.max_attempts == 7
        assert settings.identity_oracles == ["https://ip.test/"]

    def test_oracle_default_is_not_shared(self) -> None:
        first = FetchSettings()
        first.identity_oracles.append("https://extra.test/")
        assert FetchSettings().identity_oracles == DEFAULT_IDENTITY_ORACLES

    @pytest.mark.parametrize(
        "field, value",
        [
            ("max_attempts", 0),
            ("timeout_seconds", 0),
            ("proxy_port", 70000),
            ("exclusion_max_size", 0),
        ],
    )
    def test_invalid_values_rejected(self, field: str, value: object) -> None:
        with pytest.raises(ValidationError):
            FetchSettings(**{field: value})

    def test_require_proxy(self) -> None:
        with pytest.raises(ConfigurationError, match="ANONFETCH_PROXY_HOST"):
            FetchSettings().require_proxy()
        with pytest.raises(ConfigurationError, match="ANONFETCH_PROXY_PORT"):
            FetchSettings(proxy_host="127.0.0.1").require_proxy()
        assert FetchSettings(proxy_host="h", proxy_port=1).require_proxy() == "h:1"

    def test_proxy_url_with_only_port_is_an_error(self) -> None:
        with pytest.raises(ConfigurationError):
            FetchSettings(proxy_port=9050).proxy_url

    def test_require_control(self, settings: FetchSettings) -> None:
        assert settings.require_control() == ("127.0.0.1", 9051, "hunter2")
        with pytest.raises(ConfigurationError, match="PASSWORD"):
            FetchSettings(control_host="h", control_port=1).require_control()

    def test_empty_control_password_is_allowed(self) -> None:
        settings = FetchSettings(control_host="h", control_port=1, control_password="")
        assert settings.require_control() == ("h", 1, "")


# ---------------------------------------------------------------------------
# Throttle rules
# ---------------------------------------------------------------------------


class TestThrottleRules:
    def test_aliases(self) -> None:
        rule = ThrottleRule.model_validate({"time": 10, "max": 2})
        assert rule.max_seconds == 10
        assert rule.max_requests == 2

    def test_invalid_entry_is_unthrottled(self) -> None:
        rules = parse_throttle_rules(
            {"Example.com": {"time": 5, "max": 1}, "bad.com": {"time": -1, "max": "x"}}
        )
        assert rules["example.com"].max_requests == 1
        assert rules["bad.com"] == UNTHROTTLED

    def test_non_mapping(self) -> None:
        assert parse_throttle_rules(["a"]) == {}

    def test_load_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "throttle.yaml"
        path.write_text(
            yaml.safe_dump({"throttle": {"google.com": {"time": 10, "max": 2}}})
        )
        rules = load_throttle_rules(str(path))
        assert rules == {"google.com": ThrottleRule(max_seconds=10, max_requests=2)}

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_throttle_rules(str(tmp_path / "nope.yaml")) == {}

    def test_bad_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "throttle.yaml"
        path.write_text("throttle: [unclosed")
        assert load_throttle_rules(str(path)) == {}

    def test_missing_key(self, tmp_path: Path) -> None:
        path = tmp_path / "throttle.yaml"
        path.write_text("other: {}")
        assert load_throttle_rules(str(path)) == {}

    def test_shipped_rules(self) -> None:
        shipped = Path(__file__).resolve().parents[2] / "config" / "throttle.yaml"
        rules = load_throttle_rules(str(shipped))
        assert rules["google.com"].max_requests == 2
