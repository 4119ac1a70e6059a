"""Unit tests for config loading, env interpolation, and validation."""
from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from grove_lending.config import (
    AppConfig,
    HealthBandsConfig,
    LendingConfig,
    PoolConfig,
    _interpolate_env,
    load_config,
)


def _write(tmp_path: Path, content: str) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(content)
    return cfg_file


class TestInterpolateEnv:
    def test_simple_substitution(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_VAR", "hello")
        assert _interpolate_env("${MY_VAR}") == "hello"

    def test_missing_var_becomes_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NONEXISTENT_VAR_XYZ", raising=False)
        assert _interpolate_env("${NONEXISTENT_VAR_XYZ}") == ""

    def test_nested_dict(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOK", "secret")
        result = _interpolate_env({"key": "${TOK}", "plain": "text"})
        assert result == {"key": "secret", "plain": "text"}

    def test_nested_list(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("A", "x")
        assert _interpolate_env(["${A}", "y"]) == ["x", "y"]

    def test_non_string_passthrough(self) -> None:
        assert _interpolate_env(42) == 42
        assert _interpolate_env(True) is True


class TestLoadConfig:
    def test_loads_valid_yaml(self, sample_yaml_path: Path) -> None:
        cfg = load_config(sample_yaml_path)
        assert isinstance(cfg, AppConfig)
        assert cfg.lending.interest_rate == Decimal("0.1")
        assert cfg.lending.liquidation_threshold == Decimal("0.9")
        assert cfg.pools["USDC"].base_apy == Decimal("0.085")
        assert cfg.monitor.thresholds.monitor == 1.2
        assert cfg.price_feed.static.prices == {"GROVE": Decimal("1.0")}
        assert cfg.price_feed.pyth.feeds == {"GROVE": "aaa"}
        assert cfg.notifications.telegram.chat_id == "999"

    def test_price_feed_scalars_are_read(self, tmp_path: Path) -> None:
        cfg = load_config(
            _write(
                tmp_path,
                "price_feed:\n"
                "  provider: pyth\n"
                "  max_age_seconds: 120\n"
                "  cache_ttl_seconds: 30\n"
                "  pyth: {hermes_url: 'https://hermes.example.com'}\n",
            )
        )
        assert cfg.price_feed.provider == "pyth"
        assert cfg.price_feed.max_age_seconds == 120
        assert cfg.price_feed.cache_ttl_seconds == 30
        assert cfg.price_feed.pyth.hermes_url == "https://hermes.example.com"

    def test_decimals_do_not_carry_float_noise(self, sample_yaml_path: Path) -> None:
        cfg = load_config(sample_yaml_path)
        assert str(cfg.lending.interest_rate) == "0.1"

    def test_missing_sections_use_defaults(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path, "{}\n"))
        assert cfg.lending == LendingConfig()
        assert cfg.monitor.thresholds == HealthBandsConfig()
        assert cfg.price_feed.provider == "static"
        assert cfg.pool_config("ANY") == PoolConfig()

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_env_interpolation_in_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TEST_CHAT", "424242")
        cfg = load_config(
            _write(
                tmp_path,
                """\
notifications:
  telegram:
    enabled: true
    chat_id: "${TEST_CHAT}"
""",
            )
        )
        assert cfg.notifications.telegram.chat_id == "424242"


class TestValidation:
    @pytest.mark.parametrize(
        "yaml_content, message",
        [
            ("lending: {collateralization_ratio: 0.9}\n", "collateralization_ratio"),
            ("lending: {harvest_collateralization_ratio: 0.5}\n", "harvest_collateralization_ratio"),
            ("lending: {liquidation_threshold: 1.5}\n", "liquidation_threshold"),
            ("lending: {liquidation_penalty: 1.0}\n", "liquidation_penalty"),
            ("lending: {liquidator_reward: 0.10}\n", "liquidator_reward"),
            ("lending: {interest_rate: -0.01}\n", "interest_rate"),
            ("monitor: {thresholds: {healthy: 1.1, monitor: 1.2}}\n", "Health bands"),
            ("price_feed: {provider: chainlink}\n", "Unknown price feed provider"),
            ("pools: {USDC: {apy_slope: -0.1}}\n", "APY curve"),
        ],
    )
    def test_invalid_values_raise(
        self, tmp_path: Path, yaml_content: str, message: str
    ) -> None:
        with pytest.raises(ValueError, match=message):
            load_config(_write(tmp_path, yaml_content))


class TestFrozenConfigs:
    def test_lending_config_immutable(self) -> None:
        c = LendingConfig()
        with pytest.raises(AttributeError):
            c.interest_rate = Decimal("0.2")  # type: ignore[misc]

    def test_health_bands_immutable(self) -> None:
        b = HealthBandsConfig()
        with pytest.raises(AttributeError):
            b.healthy = 9.0  # type: ignore[misc]


class TestEnvTypedValues:
    def test_string_flags_from_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TG_ON", "false")
        monkeypatch.setenv("EMAIL_ON", "true")
        cfg = load_config(
            _write(
                tmp_path,
                """\
notifications:
  telegram: {enabled: "${TG_ON}"}
  email: {enabled: "${EMAIL_ON}", smtp_port: "${UNSET_SMTP_PORT_XYZ}"}
""",
            )
        )
        assert cfg.notifications.telegram.enabled is False
        assert cfg.notifications.email.enabled is True
        assert cfg.notifications.email.smtp_port == 587

    def test_numeric_chat_id_becomes_string(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path, "notifications: {telegram: {chat_id: 12345}}\n"))
        assert cfg.notifications.telegram.chat_id == "12345"
