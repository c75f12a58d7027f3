"""Asset/share conversion and performance-fee accrual.

Rounding always favours the pool: shares issued and assets paid out round
down, shares burned and assets pulled in round up.
"""

from __future__ import annotations

from collections.abc import Callable

from eth_utils import to_checksum_address
from loguru import logger

from loopvault.core.adapters.gateways import (
    CertificateConversion,
    MarketGateway,
    ProtocolFeePolicy,
    TokenGateway,
)
from loopvault.core.constants.base import WAD, ZERO_ADDRESS
from loopvault.core.errors import ExternalFailure
from loopvault.core.utils.fixed_point import (
    Rounding,
    mul_div,
    mul_div_down,
    to_assets_down,
    to_assets_up,
    zero_floor_sub,
)
from loopvault.core.vault.events import AccrueInterest
from loopvault.core.vault.share_ledger import ShareLedger

from .types import VaultState


class ConversionAccountant:
    def __init__(
        self,
        state: VaultState,
        shares: ShareLedger,
        *,
        vault: str,
        market: MarketGateway,
        certificate: CertificateConversion,
        tokens: TokenGateway,
        fee_policy: ProtocolFeePolicy | None = None,
        emit: Callable[[AccrueInterest], None] | None = None,
    ) -> None:
        self.state = state
        self.shares = shares
        self.vault = to_checksum_address(vault)
        self.market = market
        self.certificate = certificate
        self.tokens = tokens
        self.fee_policy = fee_policy
        self._emit = emit or (lambda event: None)
        self.logger = logger.bind(component="ConversionAccountant")

    @property
    def virtual_shares(self) -> int:
        return 10 ** self.state.require_params().decimals_offset

    async def total_assets(self) -> int:
        """Net value of the whole position in base-asset units, from fresh reads."""
        params = self.state.require_params()
        market_id = params.market_params.id
        position = await self.market.position(market_id, self.vault)
        totals = await self.market.market_totals(market_id)
        tier = await self.market.tier_borrow_totals(market_id, position.rate_tier)

        supplied = to_assets_down(
            position.supply_shares,
            totals.total_supply_assets,
            totals.total_supply_shares,
        )
        borrowed = to_assets_up(
            position.borrow_shares, tier.borrow_assets, tier.borrow_shares
        )
        collateral_value = await self.certificate.shares_to_value(position.collateral)
        idle = await self.tokens.balance_of(params.base_asset, self.vault)
        return zero_floor_sub(supplied + collateral_value + idle, borrowed)

    def to_shares(
        self, assets: int, total_assets: int, total_supply: int, rounding: Rounding
    ) -> int:
        return mul_div(
            assets, total_supply + self.virtual_shares, total_assets + 1, rounding
        )

    def to_assets(
        self, shares: int, total_assets: int, total_supply: int, rounding: Rounding
    ) -> int:
        return mul_div(
            shares, total_assets + 1, total_supply + self.virtual_shares, rounding
        )

    def fee_shares_for(self, total_assets: int, total_supply: int) -> int:
        fees = self.state.fees
        interest = zero_floor_sub(total_assets, fees.last_total_assets)
        if interest == 0 or fees.fee == 0:
            return 0
        fee_assets = mul_div_down(interest, fees.fee, WAD)
        # Priced against assets net of the fee so the fee does not earn itself.
        return self.to_shares(
            fee_assets, total_assets - fee_assets, total_supply, Rounding.FLOOR
        )

    async def accrued_fee_shares(self) -> tuple[int, int]:
        """Return ``(pending_fee_shares, new_total_assets)`` without minting."""
        total_assets = await self.total_assets()
        return self.fee_shares_for(total_assets, self.shares.total_supply), total_assets

    async def preview_shares(self, assets: int, rounding: Rounding) -> int:
        fee_shares, total_assets = await self.accrued_fee_shares()
        return self.to_shares(
            assets, total_assets, self.shares.total_supply + fee_shares, rounding
        )

    async def preview_assets(self, shares: int, rounding: Rounding) -> int:
        fee_shares, total_assets = await self.accrued_fee_shares()
        return self.to_assets(
            shares, total_assets, self.shares.total_supply + fee_shares, rounding
        )

    async def split_fee_shares(self, fee_shares: int) -> tuple[int, int, str | None]:
        """Return ``(recipient_shares, protocol_shares, protocol_recipient)``."""
        if self.fee_policy is None or fee_shares == 0:
            return fee_shares, 0, None
        fraction = await self.fee_policy.fee_fraction(self.vault)
        if fraction == 0:
            return fee_shares, 0, None
        if fraction > WAD:
            raise ExternalFailure(f"protocol fee fraction {fraction} exceeds 100%")
        recipient = await self.fee_policy.fee_recipient(self.vault)
        if not recipient or to_checksum_address(recipient) == ZERO_ADDRESS:
            raise ExternalFailure("protocol fee recipient is not set")
        protocol_shares = mul_div_down(fee_shares, fraction, WAD)
        return fee_shares - protocol_shares, protocol_shares, recipient

    async def accrue_fee(self) -> int:
        """Mint pending fee shares and fold interest into ``last_total_assets``.

        Must run before any operation touches the share supply. Returns the
        fresh total assets the caller should price against.
        """
        fee_shares, new_total_assets = await self.accrued_fee_shares()
        protocol_shares = 0
        if fee_shares:
            recipient = self.state.fees.fee_recipient
            if recipient is None:
                raise ExternalFailure("fee shares accrued with no fee recipient")
            owner_shares, protocol_shares, protocol_recipient = (
                await self.split_fee_shares(fee_shares)
            )
            if owner_shares:
                self.shares.mint(recipient, owner_shares)
            if protocol_shares and protocol_recipient:
                self.shares.mint(protocol_recipient, protocol_shares)
            self.logger.debug(
                f"Accrued fee: {fee_shares} shares ({protocol_shares} to protocol) "
                f"on total assets {new_total_assets}"
            )
        self.state.fees.last_total_assets = new_total_assets
        self._emit(
            AccrueInterest(
                new_total_assets=new_total_assets,
                fee_shares=fee_shares,
                protocol_fee_shares=protocol_shares,
            )
        )
        return new_total_assets
