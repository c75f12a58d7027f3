from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from eth_utils import to_checksum_address

from loopvault.core.adapters.gateways import MarketParams
from loopvault.core.constants.base import (
    DEFAULT_DECIMALS_OFFSET,
    DEFAULT_MAX_LOOP_ITERATIONS,
    WAD,
)
from loopvault.core.utils.swap_path import SwapPath

# ─────────────────────────────────────────────────────────────────────────────
# PERSISTED STATE
# ─────────────────────────────────────────────────────────────────────────────


class Lifecycle(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"


@dataclass
class StrategyParams:
    base_asset: str
    collateral_asset: str
    market_params: MarketParams
    target_utilization: int  # WAD
    target_strategy_ltv: int  # WAD, per-round borrow ratio
    max_swap_loss: int  # WAD, fraction of requested assets
    default_swap_path: SwapPath
    decimals_offset: int = DEFAULT_DECIMALS_OFFSET
    max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS

    def __post_init__(self) -> None:
        self.base_asset = to_checksum_address(self.base_asset)
        self.collateral_asset = to_checksum_address(self.collateral_asset)


@dataclass
class FeeState:
    fee: int = 0  # WAD fraction of interest
    fee_recipient: str | None = None
    last_total_assets: int = 0


@dataclass
class VaultState:
    params: StrategyParams | None = None
    fees: FeeState = field(default_factory=FeeState)
    lifecycle: Lifecycle = Lifecycle.UNINITIALIZED
    version: int = 0

    def require_params(self) -> StrategyParams:
        if self.params is None:
            raise RuntimeError("strategy parameters read before initialization")
        return self.params


# ─────────────────────────────────────────────────────────────────────────────
# TRANSIENT RESULTS
# ─────────────────────────────────────────────────────────────────────────────


class LoopStop(Enum):
    TARGET_REACHED = "target_reached"
    NO_RESIDUAL = "no_residual"
    ZERO_CANDIDATE = "zero_candidate"
    ITERATION_CAP = "iteration_cap"


@dataclass(frozen=True)
class LoopReport:
    collateral_principal: int
    market_supply: int
    iterations: int  # borrow rounds, opening round included
    borrowed: int  # total borrowed, opening round included
    final_utilization: int
    stop_reason: LoopStop


@dataclass(frozen=True)
class WithdrawalPlan:
    percentage: int  # WAD
    requested_assets: int
    collateral_to_release: int
    debt_shares: int
    repay_assets: int
    market_shares: int
    idle_assets: int

    @property
    def is_full_exit(self) -> bool:
        return self.percentage == WAD


@dataclass(frozen=True)
class SettlementResult:
    swap_cost: int
    collateral_to_receiver: int
