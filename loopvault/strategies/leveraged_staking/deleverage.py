"""Proportional unwind of the levered position for one withdrawal.

The unwind is two-phase. ``execute`` asks the market for a same-call loan of
the debt being repaid and hands it a serialized continuation; the market then
calls back into the engine, which forwards to ``settle``. Settlement repays
the debt, releases collateral, buys back the loaned base asset with part of
that collateral (bounded by the swap-loss cap) and sends the rest to the
receiver. The market pulls the loan back once the callback returns.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address
from loguru import logger

from loopvault.core.adapters.gateways import (
    CertificateConversion,
    MarketGateway,
    SettlementReceiver,
    SwapGateway,
    TokenGateway,
)
from loopvault.core.constants.base import FULL_EXIT_THRESHOLD, WAD
from loopvault.core.errors import (
    AuthorizationError,
    ExternalFailure,
    SlippageExceeded,
    ValidationError,
)
from loopvault.core.utils.fixed_point import (
    mul_div_down,
    to_assets_up,
    w_mul_down,
)
from loopvault.core.utils.swap_path import SwapPath, validate_exact_output_path
from loopvault.core.utils.units import from_wad

from .constants import SETTLEMENT_CONTINUATION_TYPES
from .types import SettlementResult, VaultState, WithdrawalPlan


def exit_percentage(assets: int, total_assets: int) -> int:
    """Fraction of the position a withdrawal of ``assets`` exits, WAD-scaled."""
    if total_assets == 0:
        return WAD if assets else 0
    percentage = mul_div_down(min(assets, total_assets), WAD, total_assets)
    if percentage > FULL_EXIT_THRESHOLD:
        return WAD
    return percentage


class DeleverageCoordinator:
    def __init__(
        self,
        state: VaultState,
        *,
        vault: str,
        market: MarketGateway,
        certificate: CertificateConversion,
        swap_router: SwapGateway,
        tokens: TokenGateway,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state
        self.vault = to_checksum_address(vault)
        self.market = market
        self.certificate = certificate
        self.swap_router = swap_router
        self.tokens = tokens
        self._clock = clock
        self._pending: bytes | None = None
        self._result: SettlementResult | None = None
        self.logger = logger.bind(component="DeleverageCoordinator")

    @property
    def awaiting_settlement(self) -> bool:
        return self._pending is not None

    def resolve_path(self, swap_path: SwapPath | bytes | str | None) -> SwapPath:
        params = self.state.require_params()
        if swap_path is None:
            path = params.default_swap_path
        elif isinstance(swap_path, SwapPath):
            path = swap_path
        else:
            path = SwapPath.decode(swap_path)
        validate_exact_output_path(
            path, output_token=params.base_asset, input_token=params.collateral_asset
        )
        return path

    async def plan(self, assets: int, total_assets: int) -> WithdrawalPlan:
        params = self.state.require_params()
        market_id = params.market_params.id
        percentage = exit_percentage(assets, total_assets)

        position = await self.market.position(market_id, self.vault)
        tier = await self.market.tier_borrow_totals(market_id, position.rate_tier)
        debt_shares = w_mul_down(position.borrow_shares, percentage)
        idle = await self.tokens.balance_of(params.base_asset, self.vault)

        return WithdrawalPlan(
            percentage=percentage,
            requested_assets=assets,
            collateral_to_release=w_mul_down(position.collateral, percentage),
            debt_shares=debt_shares,
            repay_assets=to_assets_up(
                debt_shares, tier.borrow_assets, tier.borrow_shares
            ),
            market_shares=w_mul_down(position.supply_shares, percentage),
            idle_assets=w_mul_down(idle, percentage),
        )

    async def execute(
        self,
        plan: WithdrawalPlan,
        *,
        receiver: str,
        path: SwapPath,
        deadline: int,
        settlement_receiver: SettlementReceiver,
    ) -> tuple[SettlementResult, int]:
        """Unwind ``plan``; returns the settlement result and base asset redeemed."""
        params = self.state.require_params()
        receiver = to_checksum_address(receiver)
        result = SettlementResult(swap_cost=0, collateral_to_receiver=0)

        if plan.debt_shares:
            data = encode(
                SETTLEMENT_CONTINUATION_TYPES,
                [
                    plan.debt_shares,
                    plan.collateral_to_release,
                    plan.requested_assets,
                    receiver,
                    path.encode(),
                    int(deadline),
                ],
            )
            self._pending = keccak(data)
            self._result = None
            try:
                await self.market.flash_settlement(
                    params.base_asset, plan.repay_assets, data, settlement_receiver
                )
                if self._result is None:
                    raise ExternalFailure("market returned without settling")
                result = self._result
            finally:
                self._pending = None
                self._result = None
        elif plan.collateral_to_release:
            await self.market.withdraw_collateral(
                params.market_params, plan.collateral_to_release, self.vault, receiver
            )
            result = SettlementResult(
                swap_cost=0, collateral_to_receiver=plan.collateral_to_release
            )

        redeemed = 0
        if plan.market_shares:
            redeemed, _ = await self.market.withdraw(
                params.market_params, 0, plan.market_shares, self.vault, receiver
            )
        if plan.idle_assets:
            await self.tokens.transfer(params.base_asset, receiver, plan.idle_assets)

        self.logger.info(
            f"Unwound {from_wad(plan.percentage):.6%} of position: repaid "
            f"{plan.repay_assets}, released {plan.collateral_to_release} collateral, "
            f"swap cost {result.swap_cost}, redeemed {redeemed} from market"
        )
        return result, redeemed

    def authenticate(self, sender: str, data: bytes) -> None:
        if to_checksum_address(sender) != to_checksum_address(self.market.address):
            raise AuthorizationError(f"settlement callback from {sender}, not the market")
        if self._pending is None or keccak(data) != self._pending:
            raise AuthorizationError("no settlement is awaiting this callback")

    async def settle(self, sender: str, assets: int, data: bytes) -> SettlementResult:
        """Second phase, run inside the market's settlement callback."""
        self.authenticate(sender, data)
        self._pending = None
        params = self.state.require_params()
        debt_shares, collateral, requested, receiver, raw_path, deadline = decode(
            SETTLEMENT_CONTINUATION_TYPES, data
        )
        path = SwapPath.decode(raw_path)

        await self.market.repay(params.market_params, 0, debt_shares, self.vault, b"")
        await self.market.withdraw_collateral(
            params.market_params, collateral, self.vault, self.vault
        )

        # Repay amount and loss allowance are both base-asset values; the cap is
        # converted to collateral units once, since the swap spends collateral.
        max_cost = await self.certificate.value_to_shares(
            assets + w_mul_down(requested, params.max_swap_loss)
        )
        cost = await self.swap_router.swap_for_exact_output(
            path.encode(), self.vault, assets, max_cost, deadline
        )
        if cost > max_cost:
            raise SlippageExceeded(cost, max_cost)
        if cost > collateral:
            raise ExternalFailure(
                f"swap spent {cost} collateral but only {collateral} was released"
            )

        remaining = collateral - cost
        if remaining:
            await self.tokens.transfer(
                params.collateral_asset, to_checksum_address(receiver), remaining
            )
        self.logger.debug(
            f"Settled {assets}: repaid {debt_shares} debt shares, swap cost {cost} "
            f"(max {max_cost}), {remaining} collateral to {receiver}"
        )
        self._result = SettlementResult(swap_cost=cost, collateral_to_receiver=remaining)
        return self._result

    def require_fresh_deadline(self, deadline: int) -> None:
        if deadline < self._clock():
            raise ValidationError(f"swap deadline {deadline} already passed")
