import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from loopvault.core.adapters.gateways import MarketParams
from loopvault.core.constants.base import (
    DEFAULT_DECIMALS_OFFSET,
    DEFAULT_MAX_LOOP_ITERATIONS,
)
from loopvault.core.errors import StrategyError
from loopvault.core.utils.swap_path import SwapPath
from loopvault.core.utils.units import to_wad
from loopvault.strategies.leveraged_staking.types import StrategyParams

_CONFIG_ENV_KEYS = ("LOOPVAULT_CONFIG_PATH", "LOOPVAULT_CONFIG")
_DEFAULT_CONFIG_FILENAME = "config.json"


def _find_project_root(start: Path) -> Path | None:
    cur = start.resolve()
    for parent in [cur, *cur.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    return None


def _project_root() -> Path | None:
    return _find_project_root(Path.cwd()) or _find_project_root(Path(__file__).parent)


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path).expanduser()

    env_path = next(
        (os.getenv(k, "").strip() for k in _CONFIG_ENV_KEYS if os.getenv(k)), ""
    )
    if env_path:
        p = Path(env_path).expanduser()
        if p.is_absolute():
            return p
        root = _project_root()
        return (root / p) if root else p

    root = _project_root()
    return (root / _DEFAULT_CONFIG_FILENAME) if root else Path(_DEFAULT_CONFIG_FILENAME)


def load_config_json(
    path: str | Path | None = None, *, require_exists: bool = False
) -> dict[str, Any]:
    cfg_path = resolve_config_path(path)
    if not cfg_path.exists():
        if require_exists:
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
        return {}
    try:
        return json.loads(cfg_path.read_text())
    except json.JSONDecodeError:
        return {}


CONFIG: dict[str, Any] = load_config_json()


def set_config(config: dict[str, Any]) -> None:
    """Replace the global CONFIG dict in-place.

    Code that imported CONFIG at module import time sees the update.
    """
    CONFIG.clear()
    CONFIG.update(config)


def load_config(
    path: str | Path | None = None, *, require_exists: bool = False
) -> None:
    """Load config from disk into the global CONFIG dict."""
    set_config(load_config_json(path, require_exists=require_exists))


class MarketSettings(BaseModel):
    loan_token: str
    collateral_token: str
    oracle: str
    irm: str
    lltv: float = Field(gt=0, lt=1)

    def to_market_params(self) -> MarketParams:
        return MarketParams(
            loan_token=self.loan_token,
            collateral_token=self.collateral_token,
            oracle=self.oracle,
            irm=self.irm,
            lltv=to_wad(self.lltv),
        )


class StrategySettings(BaseModel):
    """Human-readable strategy parameters; fractions are plain floats (0.9 == 90%)."""

    market: MarketSettings
    target_utilization: float = Field(gt=0, le=1)
    target_strategy_ltv: float = Field(gt=0, lt=1)
    max_swap_loss: float = Field(ge=0, le=1)
    default_swap_path: str
    decimals_offset: int = Field(default=DEFAULT_DECIMALS_OFFSET, ge=0)
    max_loop_iterations: int = Field(default=DEFAULT_MAX_LOOP_ITERATIONS, ge=1)
    fee: float = Field(default=0.0, ge=0, le=0.5)
    fee_recipient: str | None = None

    @field_validator("default_swap_path")
    @classmethod
    def _path_decodes(cls, value: str) -> str:
        try:
            SwapPath.decode(value)
        except StrategyError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @model_validator(mode="after")
    def _ltv_below_lltv(self) -> "StrategySettings":
        if self.target_strategy_ltv >= self.market.lltv:
            raise ValueError("target_strategy_ltv must be below the market lltv")
        if self.fee and not self.fee_recipient:
            raise ValueError("a nonzero fee needs a fee_recipient")
        return self

    def fee_settings(self) -> tuple[int, str | None]:
        """Return ``(fee, fee_recipient)`` as accepted by ``initialize``."""
        return to_wad(self.fee), self.fee_recipient

    def to_params(self) -> StrategyParams:
        market = self.market.to_market_params()
        return StrategyParams(
            base_asset=market.loan_token,
            collateral_asset=market.collateral_token,
            market_params=market,
            target_utilization=to_wad(self.target_utilization),
            target_strategy_ltv=to_wad(self.target_strategy_ltv),
            max_swap_loss=to_wad(self.max_swap_loss),
            default_swap_path=SwapPath.decode(self.default_swap_path),
            decimals_offset=self.decimals_offset,
            max_loop_iterations=self.max_loop_iterations,
        )


def get_strategy_settings(
    name: str = "leveraged_staking", config: dict[str, Any] | None = None
) -> StrategySettings:
    source = CONFIG if config is None else config
    raw = source.get("strategy", {}).get(name)
    if raw is None:
        raise KeyError(f"no strategy.{name} section in config")
    return StrategySettings.model_validate(raw)
