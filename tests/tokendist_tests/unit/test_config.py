"""
Tests for configuration loading and validation.
"""

import pytest

from tokendist.core.config import (
    ConfigurationError,
    DistributionConfig,
    VestingTerms,
    apply_env_overrides,
    load_config,
)
from tokendist.core.constants import DAY, MONTH, YEAR


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "TOKENDIST_TOKEN_NAME",
        "TOKENDIST_TOTAL_SUPPLY",
        "TOKENDIST_GRACE_PERIOD",
        "TOKENDIST_LOG_LEVEL",
        "TOKENDIST_STATE_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_default_values(self):
        config = load_config()
        assert config.grace_period == 7 * DAY
        assert config.redemption_window == YEAR
        assert config.shareholder_recovery_deadline == 180 * DAY
        assert config.total_supply is None

    def test_default_vesting_terms(self):
        config = DistributionConfig()
        assert config.reserve_vesting == VestingTerms(0, 6, 42, MONTH)
        assert config.shareholder_vesting == VestingTerms(0, 12, 24, MONTH)
        assert config.reserve_vesting.total_installments == 48


class TestYamlFile:
    def test_file_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "token_name: Example\n"
            "total_supply: 1000000\n"
            "reserve_vesting:\n"
            "  initial_installments: 2\n"
            "  cliff_installments: 0\n"
            "  post_cliff_installments: 10\n",
            encoding="utf-8",
        )
        config = load_config(path)
        assert config.token_name == "Example"
        assert config.total_supply == 1_000_000
        assert config.reserve_vesting == VestingTerms(2, 0, 10, MONTH)

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == DistributionConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "nope.yaml")

    def test_unknown_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("bonus_percent: 50\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="bonus_percent"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("token_name: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_bad_vesting_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("shareholder_vesting:\n  months: 3\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestEnvironment:
    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("token_name: FromFile\ngrace_period: 10\n", encoding="utf-8")
        monkeypatch.setenv("TOKENDIST_TOKEN_NAME", "FromEnv")
        monkeypatch.setenv("TOKENDIST_GRACE_PERIOD", "3600")
        config = load_config(path)
        assert config.token_name == "FromEnv"
        assert config.grace_period == 3600

    def test_env_can_be_ignored(self, monkeypatch):
        monkeypatch.setenv("TOKENDIST_TOTAL_SUPPLY", "5")
        assert load_config(use_env=False).total_supply is None

    def test_non_integer_env(self, monkeypatch):
        monkeypatch.setenv("TOKENDIST_TOTAL_SUPPLY", "lots")
        with pytest.raises(ConfigurationError):
            apply_env_overrides(DistributionConfig())


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"token_name": ""},
            {"decimals": 40},
            {"total_supply": 0},
            {"grace_period": -1},
            {"redemption_window": 0},
            {"shareholder_recovery_deadline": 0},
            {"log_level": "LOUD"},
            {"reserve_vesting": VestingTerms(0, 0, 0)},
            {"shareholder_vesting": VestingTerms(installment_duration=0)},
            {"reserve_vesting": VestingTerms(initial_installments=-1)},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            DistributionConfig(**overrides).validate()

    def test_dict_round_trip(self):
        config = DistributionConfig(total_supply=10, reserve_vesting=VestingTerms(1, 2, 3))
        assert DistributionConfig.from_dict(config.to_dict()) == config
