"""
tokendist configuration

Defaults, optionally overlaid by a YAML file, then by ``TOKENDIST_*``
environment variables (highest precedence).

Environment variables:
- TOKENDIST_TOKEN_NAME / TOKENDIST_TOKEN_SYMBOL / TOKENDIST_DECIMALS
- TOKENDIST_TOTAL_SUPPLY          fixed supply; derived from allocations when unset
- TOKENDIST_GRACE_PERIOD          seconds between reserve allocation and distribution start
- TOKENDIST_REDEMPTION_WINDOW     seconds redemptions stay open after distribution start
- TOKENDIST_SHAREHOLDER_RECOVERY_DEADLINE
- TOKENDIST_STATE_PATH            JSON checkpoint location
- TOKENDIST_LOG_LEVEL / TOKENDIST_LOG_FILE
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from tokendist.core.constants import (
    DEFAULT_GRACE_PERIOD,
    DEFAULT_SHAREHOLDER_RECOVERY_DEADLINE,
    MONTH,
    REDEMPTION_WINDOW,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "TOKENDIST_"
DEFAULT_STATE_PATH = os.path.join(os.getcwd(), "data", "tokendist_state.json")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class VestingTerms:
    """Installment layout of one class of vesting accounts."""

    initial_installments: int = 0
    cliff_installments: int = 6
    post_cliff_installments: int = 42
    installment_duration: int = MONTH

    @property
    def total_installments(self) -> int:
        return self.initial_installments + self.cliff_installments + self.post_cliff_installments

    def validate(self, label: str) -> None:
        if self.installment_duration <= 0:
            raise ConfigurationError(f"{label}: installment_duration must be positive")
        if min(self.initial_installments, self.cliff_installments, self.post_cliff_installments) < 0:
            raise ConfigurationError(f"{label}: installment counts cannot be negative")
        if self.total_installments == 0:
            raise ConfigurationError(f"{label}: at least one installment is required")


@dataclass(frozen=True)
class DistributionConfig:
    token_name: str = "Distribution Token"
    token_symbol: str = "DIST"
    decimals: int = 18
    total_supply: int | None = None
    grace_period: int = DEFAULT_GRACE_PERIOD
    redemption_window: int = REDEMPTION_WINDOW
    shareholder_recovery_deadline: int = DEFAULT_SHAREHOLDER_RECOVERY_DEADLINE
    reserve_vesting: VestingTerms = field(default_factory=VestingTerms)
    shareholder_vesting: VestingTerms = field(
        default_factory=lambda: VestingTerms(cliff_installments=12, post_cliff_installments=24)
    )
    state_path: str = DEFAULT_STATE_PATH
    log_level: str = "INFO"
    log_file: str | None = None

    def validate(self) -> "DistributionConfig":
        if not self.token_name or not self.token_symbol:
            raise ConfigurationError("Token name and symbol are required")
        if not 0 <= self.decimals <= 36:
            raise ConfigurationError(f"decimals out of range: {self.decimals}")
        if self.total_supply is not None and self.total_supply <= 0:
            raise ConfigurationError("total_supply must be positive when set")
        if self.grace_period < 0:
            raise ConfigurationError("grace_period cannot be negative")
        if self.redemption_window <= 0:
            raise ConfigurationError("redemption_window must be positive")
        if self.shareholder_recovery_deadline <= 0:
            raise ConfigurationError("shareholder_recovery_deadline must be positive")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
        self.reserve_vesting.validate("reserve_vesting")
        self.shareholder_vesting.validate("shareholder_vesting")
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DistributionConfig":
        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        values = dict(data)
        for key in ("reserve_vesting", "shareholder_vesting"):
            if isinstance(values.get(key), dict):
                try:
                    values[key] = VestingTerms(**values[key])
                except TypeError as exc:
                    raise ConfigurationError(f"Invalid {key}: {exc}") from exc
        return cls(**values)


def _env_int(name: str) -> int | None:
    raw = os.getenv(ENV_PREFIX + name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


def apply_env_overrides(config: DistributionConfig) -> DistributionConfig:
    """Overlay ``TOKENDIST_*`` environment variables onto ``config``."""
    overrides: dict[str, Any] = {}
    for key, env_name in (
        ("token_name", "TOKEN_NAME"),
        ("token_symbol", "TOKEN_SYMBOL"),
        ("state_path", "STATE_PATH"),
        ("log_level", "LOG_LEVEL"),
        ("log_file", "LOG_FILE"),
    ):
        value = os.getenv(ENV_PREFIX + env_name, "").strip()
        if value:
            overrides[key] = value
    for key, env_name in (
        ("decimals", "DECIMALS"),
        ("total_supply", "TOTAL_SUPPLY"),
        ("grace_period", "GRACE_PERIOD"),
        ("redemption_window", "REDEMPTION_WINDOW"),
        ("shareholder_recovery_deadline", "SHAREHOLDER_RECOVERY_DEADLINE"),
    ):
        value = _env_int(env_name)
        if value is not None:
            overrides[key] = value
    if overrides:
        logger.debug("Applying environment overrides: %s", sorted(overrides))
    return replace(config, **overrides)


def load_config(path: str | os.PathLike[str] | None = None, use_env: bool = True) -> DistributionConfig:
    """
    Build a validated configuration.

    Args:
        path: Optional YAML file whose keys mirror ``DistributionConfig`` fields
        use_env: Whether ``TOKENDIST_*`` environment variables are applied

    Raises:
        ConfigurationError: If the file or resulting values are invalid
    """
    config = DistributionConfig()
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        config = DistributionConfig.from_dict(data)
    if use_env:
        config = apply_env_overrides(config)
    return config.validate()
