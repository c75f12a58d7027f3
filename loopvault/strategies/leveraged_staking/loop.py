from __future__ import annotations

from eth_utils import to_checksum_address
from loguru import logger

from loopvault.core.adapters.gateways import (
    CertificateConversion,
    MarketGateway,
    MarketTotals,
    StakingGateway,
)
from loopvault.core.constants.base import WAD
from loopvault.core.errors import PolicyViolation, ValidationError
from loopvault.core.utils.fixed_point import (
    mul_div_down,
    utilization,
    w_mul_down,
    zero_floor_sub,
)
from loopvault.core.utils.units import from_wad

from .constants import SPLIT_ROUNDING_SLACK
from .types import LoopReport, LoopStop, VaultState


class LeverageLoopController:
    """Turns freshly deposited base asset into a levered collateral/debt position.

    The opening round supplies part of the deposit as market liquidity,
    stakes the rest as collateral and borrows that liquidity back into more
    collateral. Further rounds borrow against the newest collateral until the
    market reaches the target utilization or the round budget runs out. The
    opening round counts against that budget.
    """

    def __init__(
        self,
        state: VaultState,
        *,
        vault: str,
        market: MarketGateway,
        staking: StakingGateway,
        certificate: CertificateConversion,
        max_iterations: int | None = None,
    ) -> None:
        if max_iterations is not None and max_iterations < 1:
            raise ValidationError("loop budget must allow the opening round")
        self.state = state
        self.vault = to_checksum_address(vault)
        self.market = market
        self.staking = staking
        self.certificate = certificate
        self._max_iterations = max_iterations
        self.logger = logger.bind(component="LeverageLoopController")

    @property
    def max_iterations(self) -> int:
        if self._max_iterations is not None:
            return self._max_iterations
        return self.state.require_params().max_loop_iterations

    async def split(self, assets: int) -> tuple[int, int]:
        """Return ``(collateral_principal, market_supply)`` for a deposit."""
        ltv = self.state.require_params().target_strategy_ltv
        collateral_units = await self.certificate.value_to_shares(assets)
        collateral_principal = zero_floor_sub(
            mul_div_down(collateral_units, WAD, WAD + ltv), SPLIT_ROUNDING_SLACK
        )
        principal_value = await self.certificate.shares_to_value(collateral_principal)
        market_supply = min(w_mul_down(principal_value, ltv), assets)
        return collateral_principal, market_supply

    async def _snapshot(self) -> MarketTotals:
        return await self.market.market_totals(
            self.state.require_params().market_params.id
        )

    async def _stake_and_supply(self, amount: int) -> int:
        collateral = await self.staking.stake(amount)
        await self.market.supply_collateral(
            self.state.require_params().market_params, collateral, self.vault
        )
        return collateral

    async def _borrow(self, amount: int) -> None:
        await self.market.borrow(
            self.state.require_params().market_params, amount, 0, self.vault, self.vault
        )

    async def execute(self, assets: int) -> LoopReport:
        params = self.state.require_params()
        target = params.target_utilization

        collateral_principal, market_supply = await self.split(assets)
        if market_supply == 0:
            raise ValidationError(f"deposit of {assets} is too small to lever")

        await self.market.supply(params.market_params, market_supply, 0, self.vault)
        await self._stake_and_supply(assets - market_supply)
        await self._borrow(market_supply)
        last_collateral = await self._stake_and_supply(market_supply)
        borrowed = market_supply

        totals = await self._snapshot()
        current = totals.utilization
        if current > target:
            raise PolicyViolation(
                f"utilization {from_wad(current):.6f} above target "
                f"{from_wad(target):.6f} after opening round"
            )

        iterations = 1
        while True:
            if current >= target:
                stop = LoopStop.TARGET_REACHED
                break
            if iterations >= self.max_iterations:
                stop = LoopStop.ITERATION_CAP
                break

            collateral_value = await self.certificate.shares_to_value(last_collateral)
            amount = w_mul_down(collateral_value, params.target_strategy_ltv)
            if amount == 0:
                stop = LoopStop.ZERO_CANDIDATE
                break
            projected = utilization(
                totals.total_borrow_assets + amount, totals.total_supply_assets
            )
            if projected >= target:
                residual = (
                    w_mul_down(target, totals.total_supply_assets)
                    - totals.total_borrow_assets
                )
                if residual <= 0:
                    stop = LoopStop.NO_RESIDUAL
                    break
                amount = residual

            await self._borrow(amount)
            last_collateral = await self._stake_and_supply(amount)
            borrowed += amount
            iterations += 1

            totals = await self._snapshot()
            current = totals.utilization
            self.logger.debug(
                f"Loop round {iterations}: borrowed {amount}, "
                f"utilization {from_wad(current):.6f}"
            )

        self.logger.info(
            f"Levered {assets}: supplied {market_supply}, borrowed {borrowed} over "
            f"{iterations} rounds, utilization {from_wad(current):.6f} "
            f"({stop.value})"
        )
        return LoopReport(
            collateral_principal=collateral_principal,
            market_supply=market_supply,
            iterations=iterations,
            borrowed=borrowed,
            final_utilization=current,
            stop_reason=stop,
        )
