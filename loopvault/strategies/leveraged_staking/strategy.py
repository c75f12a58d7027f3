from __future__ import annotations

import copy
import time
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any

from eth_utils import to_checksum_address

from loopvault.core.config import StrategySettings
from loopvault.core.adapters.gateways import (
    CertificateConversion,
    MarketGateway,
    ProtocolFeePolicy,
    StakingGateway,
    SwapGateway,
    TokenGateway,
)
from loopvault.core.constants.base import (
    DEFAULT_SWAP_DEADLINE_SECONDS,
    MAX_FEE,
    MAX_UINT256,
    ZERO_ADDRESS,
)
from loopvault.core.errors import (
    AuthorizationError,
    ExternalFailure,
    ReentrancyError,
    StrategyError,
    ValidationError,
)
from loopvault.core.strategies.Strategy import StatusDict, Strategy
from loopvault.core.utils.fixed_point import Rounding, to_assets_down, zero_floor_sub
from loopvault.core.utils.swap_path import SwapPath, validate_exact_output_path
from loopvault.core.utils.units import from_wad
from loopvault.core.vault.atomic import Checkpointable, atomic
from loopvault.core.vault.events import (
    Deleverage,
    Deposit,
    Initialized,
    OwnershipTransferred,
    SetDefaultSwapPath,
    SetFee,
    SetFeeRecipient,
    SetMaxSwapLoss,
    SetTargetUtilization,
    VaultEvent,
    Withdraw,
)
from loopvault.core.vault.multicall import BatchExecutor, Call
from loopvault.core.vault.ownership import Ownership
from loopvault.core.vault.share_ledger import ShareLedger

from .accountant import ConversionAccountant
from .constants import (
    BATCHABLE_CALLS,
    DEFAULT_SHARE_NAME,
    DEFAULT_SHARE_SYMBOL,
    MAX_SWAP_LOSS,
    MAX_TARGET_UTILIZATION,
)
from .deleverage import DeleverageCoordinator
from .loop import LeverageLoopController
from .types import FeeState, Lifecycle, LoopReport, StrategyParams, VaultState


class LeveragedStakingStrategy(Strategy):
    """Pooled leveraged staking vault.

    Deposits are levered by ``LeverageLoopController``; withdrawals are unwound
    by ``DeleverageCoordinator`` through a borrowed-liquidity settlement. Every
    entry point is serialized by a busy guard and runs all-or-nothing: engine
    state, the share ledger, ownership and the optional environment journal are
    restored if any step raises.
    """

    name = "Leveraged Staking Loop"

    def __init__(
        self,
        *,
        address: str,
        owner: str,
        market: MarketGateway,
        staking: StakingGateway,
        certificate: CertificateConversion,
        swap_router: SwapGateway,
        tokens: TokenGateway,
        fee_policy: ProtocolFeePolicy | None = None,
        journal: Checkpointable | None = None,
        share_name: str = DEFAULT_SHARE_NAME,
        share_symbol: str = DEFAULT_SHARE_SYMBOL,
        chain_id: int = 1,
        max_loop_iterations: int | None = None,
        clock: Callable[[], float] = time.time,
        config: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(config)
        self.address = to_checksum_address(address)
        self.market = market
        self.staking = staking
        self.certificate = certificate
        self.swap_router = swap_router
        self.tokens = tokens
        self.fee_policy = fee_policy
        self._journal = journal
        self._clock = clock

        self.state = VaultState()
        self.ownership = Ownership(owner)
        self.shares = ShareLedger(
            share_name,
            share_symbol,
            address=self.address,
            chain_id=chain_id,
            clock=clock,
        )
        self.events: list[VaultEvent] = []

        self.accountant = ConversionAccountant(
            self.state,
            self.shares,
            vault=self.address,
            market=market,
            certificate=certificate,
            tokens=tokens,
            fee_policy=fee_policy,
            emit=self._emit,
        )
        self.loop = LeverageLoopController(
            self.state,
            vault=self.address,
            market=market,
            staking=staking,
            certificate=certificate,
            max_iterations=max_loop_iterations,
        )
        self.deleverage = DeleverageCoordinator(
            self.state,
            vault=self.address,
            market=market,
            certificate=certificate,
            swap_router=swap_router,
            tokens=tokens,
            clock=clock,
        )
        self._batch = BatchExecutor(self, BATCHABLE_CALLS)
        self._busy: str | None = None

    # ─────────────────────────────────────────────────────────────────────
    # State record, atomicity and the busy guard
    # ─────────────────────────────────────────────────────────────────────

    def checkpoint(self) -> Any:
        return copy.deepcopy(self.state), list(self.events)

    def restore(self, snapshot: Any) -> None:
        state, events = snapshot
        # Components hold a reference to self.state, so restore in place.
        self.state.params = state.params
        self.state.fees = state.fees
        self.state.lifecycle = state.lifecycle
        self.state.version = state.version
        self.events = list(events)

    def _participants(self) -> list[Checkpointable]:
        participants: list[Checkpointable] = [self, self.shares, self.ownership]
        if self._journal is not None:
            participants.append(self._journal)
        return participants

    def _emit(self, event: VaultEvent) -> None:
        event.version = self.state.version + 1
        self.events.append(event)

    @asynccontextmanager
    async def _operation(
        self, name: str, *, require_active: bool = True
    ) -> AsyncIterator[None]:
        if self._busy is not None:
            raise ReentrancyError(
                f"{name} called while {self._busy} is in flight", operation=name
            )
        if require_active and self.state.lifecycle is not Lifecycle.ACTIVE:
            raise ValidationError("strategy is not initialized", operation=name)
        self._busy = name
        try:
            async with atomic(self._participants()):
                try:
                    yield
                except StrategyError as exc:
                    exc.operation = exc.operation or name
                    raise
                except Exception as exc:
                    raise ExternalFailure(
                        f"{name} failed: {exc}", operation=name
                    ) from exc
            self.state.version += 1
        except StrategyError as exc:
            self.logger.warning(f"{name} rolled back ({exc.kind}): {exc}")
            raise
        finally:
            self._busy = None

    def _require_active(self) -> StrategyParams:
        if self.state.lifecycle is not Lifecycle.ACTIVE:
            raise ValidationError("strategy is not initialized")
        return self.state.require_params()

    async def _accrue(self) -> int:
        params = self.state.require_params()
        await self.market.accrue_interest(params.market_params)
        return await self.accountant.accrue_fee()

    def _resolve_deadline(self, deadline: int | None) -> int:
        if deadline is None:
            return int(self._clock()) + DEFAULT_SWAP_DEADLINE_SECONDS
        self.deleverage.require_fresh_deadline(int(deadline))
        return int(deadline)

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    def _validate_params(self, params: StrategyParams) -> None:
        market = params.market_params
        if params.base_asset != market.loan_token:
            raise ValidationError("base asset must be the market loan token")
        if params.collateral_asset != market.collateral_token:
            raise ValidationError("collateral asset must be the market collateral token")
        if not 0 < params.target_utilization <= MAX_TARGET_UTILIZATION:
            raise ValidationError("target utilization must be in (0, 1]")
        if not 0 < params.target_strategy_ltv < market.lltv:
            raise ValidationError("target strategy LTV must be positive and below LLTV")
        if params.max_swap_loss > MAX_SWAP_LOSS:
            raise ValidationError("max swap loss must be at most 100%")
        if params.max_loop_iterations < 1:
            raise ValidationError("loop budget must allow the opening round")
        if params.decimals_offset < 0:
            raise ValidationError("decimals offset must be non-negative")
        validate_exact_output_path(
            params.default_swap_path,
            output_token=params.base_asset,
            input_token=params.collateral_asset,
        )

    async def initialize(
        self,
        params: StrategyParams,
        *,
        sender: str,
        fee: int = 0,
        fee_recipient: str | None = None,
    ) -> None:
        async with self._operation("initialize", require_active=False):
            self.ownership.require_owner(sender)
            if self.state.lifecycle is Lifecycle.ACTIVE:
                raise ValidationError("strategy already initialized")
            self._validate_params(params)
            recipient = self._normalize_recipient(fee_recipient)
            self._validate_fee(fee, recipient)

            self.state.params = params
            self.state.fees = FeeState(fee=fee, fee_recipient=recipient)
            await self.tokens.approve(params.base_asset, self.market.address, MAX_UINT256)
            await self.tokens.approve(
                params.collateral_asset, self.market.address, MAX_UINT256
            )
            await self.tokens.approve(
                params.collateral_asset, self.swap_router.address, MAX_UINT256
            )
            self.state.lifecycle = Lifecycle.ACTIVE
            self._emit(
                Initialized(
                    market_id=params.market_params.id,
                    base_asset=params.base_asset,
                    collateral_asset=params.collateral_asset,
                )
            )
        self.logger.info(
            f"Initialized on market {params.market_params.id} "
            f"(target utilization {from_wad(params.target_utilization):.4f}, "
            f"LTV {from_wad(params.target_strategy_ltv):.4f})"
        )

    async def initialize_from_settings(
        self, settings: StrategySettings, *, sender: str
    ) -> None:
        fee, fee_recipient = settings.fee_settings()
        await self.initialize(
            settings.to_params(), sender=sender, fee=fee, fee_recipient=fee_recipient
        )

    # ─────────────────────────────────────────────────────────────────────
    # ERC4626 views
    # ─────────────────────────────────────────────────────────────────────

    def asset(self) -> str:
        return self._require_active().base_asset

    async def total_assets(self) -> int:
        self._require_active()
        return await self.accountant.total_assets()

    async def convert_to_shares(self, assets: int) -> int:
        self._require_active()
        return await self.accountant.preview_shares(assets, Rounding.FLOOR)

    async def convert_to_assets(self, shares: int) -> int:
        self._require_active()
        return await self.accountant.preview_assets(shares, Rounding.FLOOR)

    async def preview_deposit(self, assets: int) -> int:
        return await self.convert_to_shares(assets)

    async def preview_mint(self, shares: int) -> int:
        self._require_active()
        return await self.accountant.preview_assets(shares, Rounding.CEIL)

    async def preview_withdraw(self, assets: int) -> int:
        self._require_active()
        return await self.accountant.preview_shares(assets, Rounding.CEIL)

    async def preview_redeem(self, shares: int) -> int:
        return await self.convert_to_assets(shares)

    def max_deposit(self, receiver: str) -> int:
        return MAX_UINT256

    def max_mint(self, receiver: str) -> int:
        return MAX_UINT256

    def max_redeem(self, owner: str) -> int:
        return self.shares.balance_of(owner)

    async def max_withdraw(self, owner: str) -> int:
        return await self.preview_redeem(self.shares.balance_of(owner))

    # ─────────────────────────────────────────────────────────────────────
    # Deposit side
    # ─────────────────────────────────────────────────────────────────────

    async def deposit(self, assets: int, receiver: str, *, sender: str) -> int:
        async with self._operation("deposit"):
            new_total_assets = await self._accrue()
            shares = self.accountant.to_shares(
                assets, new_total_assets, self.shares.total_supply, Rounding.FLOOR
            )
            await self._deposit(sender, receiver, assets, shares)
        return shares

    async def mint(self, shares: int, receiver: str, *, sender: str) -> int:
        async with self._operation("mint"):
            new_total_assets = await self._accrue()
            assets = self.accountant.to_assets(
                shares, new_total_assets, self.shares.total_supply, Rounding.CEIL
            )
            await self._deposit(sender, receiver, assets, shares)
        return assets

    async def _deposit(
        self, sender: str, receiver: str, assets: int, shares: int
    ) -> LoopReport:
        if assets == 0 or shares == 0:
            raise ValidationError("deposit would mint zero shares")
        params = self.state.require_params()

        self.state.fees.last_total_assets += assets
        await self.tokens.transfer_from(params.base_asset, sender, self.address, assets)
        report = await self.loop.execute(assets)
        self.shares.mint(receiver, shares)

        self._emit(
            Deposit(
                sender=to_checksum_address(sender),
                owner=to_checksum_address(receiver),
                assets=assets,
                shares=shares,
                loop_iterations=report.iterations,
                final_utilization=report.final_utilization,
            )
        )
        self.logger.info(f"Deposit {assets} by {sender}: minted {shares} to {receiver}")
        return report

    # ─────────────────────────────────────────────────────────────────────
    # Withdrawal side
    # ─────────────────────────────────────────────────────────────────────

    async def withdraw(
        self,
        assets: int,
        receiver: str,
        owner: str,
        *,
        sender: str,
        swap_path: SwapPath | bytes | str | None = None,
        deadline: int | None = None,
    ) -> int:
        async with self._operation("withdraw"):
            path = self.deleverage.resolve_path(swap_path)
            deadline = self._resolve_deadline(deadline)
            new_total_assets = await self._accrue()
            shares = self.accountant.to_shares(
                assets, new_total_assets, self.shares.total_supply, Rounding.CEIL
            )
            await self._withdraw(
                sender, receiver, owner, assets, shares, new_total_assets, path, deadline
            )
        return shares

    async def redeem(
        self,
        shares: int,
        receiver: str,
        owner: str,
        *,
        sender: str,
        swap_path: SwapPath | bytes | str | None = None,
        deadline: int | None = None,
    ) -> int:
        async with self._operation("redeem"):
            path = self.deleverage.resolve_path(swap_path)
            deadline = self._resolve_deadline(deadline)
            new_total_assets = await self._accrue()
            assets = self.accountant.to_assets(
                shares, new_total_assets, self.shares.total_supply, Rounding.FLOOR
            )
            await self._withdraw(
                sender, receiver, owner, assets, shares, new_total_assets, path, deadline
            )
        return assets

    async def _withdraw(
        self,
        sender: str,
        receiver: str,
        owner: str,
        assets: int,
        shares: int,
        new_total_assets: int,
        path: SwapPath,
        deadline: int,
    ) -> None:
        if assets == 0 or shares == 0:
            raise ValidationError("withdrawal of zero assets")
        if to_checksum_address(sender) != to_checksum_address(owner):
            self.shares.spend_allowance(owner, sender, shares)
        self.shares.burn(owner, shares)
        # Settled before the market can call back into the vault.
        self.state.fees.last_total_assets = zero_floor_sub(new_total_assets, assets)

        plan = await self.deleverage.plan(assets, new_total_assets)
        result, redeemed = await self.deleverage.execute(
            plan,
            receiver=receiver,
            path=path,
            deadline=deadline,
            settlement_receiver=self,
        )
        self._emit(
            Deleverage(
                percentage=plan.percentage,
                repaid_assets=plan.repay_assets,
                repaid_shares=plan.debt_shares,
                collateral_released=plan.collateral_to_release,
                swap_cost=result.swap_cost,
                collateral_to_receiver=result.collateral_to_receiver,
                market_assets_redeemed=redeemed,
                idle_assets=plan.idle_assets,
            )
        )
        self._emit(
            Withdraw(
                sender=to_checksum_address(sender),
                receiver=to_checksum_address(receiver),
                owner=to_checksum_address(owner),
                assets=assets,
                shares=shares,
            )
        )
        self.logger.info(
            f"Withdraw {assets} for {owner}: burned {shares} shares, "
            f"exit {from_wad(plan.percentage):.6%} of position"
        )

    async def on_flash_settlement(self, sender: str, assets: int, data: bytes) -> None:
        """Settlement callback; only the market may call it, once, mid-withdrawal."""
        if self._busy not in ("withdraw", "redeem"):
            raise ReentrancyError("settlement callback outside of a withdrawal")
        if not self.deleverage.awaiting_settlement:
            raise AuthorizationError("no settlement is awaiting a callback")
        await self.deleverage.settle(sender, assets, data)

    # ─────────────────────────────────────────────────────────────────────
    # Fee maintenance and administration
    # ─────────────────────────────────────────────────────────────────────

    async def accrue_fee(self, *, sender: str) -> int:
        async with self._operation("accrue_fee"):
            new_total_assets = await self._accrue()
        return new_total_assets

    @staticmethod
    def _normalize_recipient(recipient: str | None) -> str | None:
        if recipient is None:
            return None
        recipient = to_checksum_address(recipient)
        return None if recipient == ZERO_ADDRESS else recipient

    @staticmethod
    def _validate_fee(fee: int, recipient: str | None) -> None:
        if fee < 0 or fee > MAX_FEE:
            raise ValidationError(f"fee {fee} above maximum {MAX_FEE}")
        if fee != 0 and recipient is None:
            raise ValidationError("nonzero fee requires a fee recipient")

    async def set_fee(self, fee: int, *, sender: str) -> None:
        async with self._operation("set_fee"):
            self.ownership.require_owner(sender)
            if fee == self.state.fees.fee:
                raise ValidationError("fee already set")
            self._validate_fee(fee, self.state.fees.fee_recipient)
            # Interest so far is charged at the previous rate.
            await self._accrue()
            self.state.fees.fee = fee
            self._emit(SetFee(sender=to_checksum_address(sender), fee=fee))

    async def set_fee_recipient(self, fee_recipient: str | None, *, sender: str) -> None:
        async with self._operation("set_fee_recipient"):
            self.ownership.require_owner(sender)
            recipient = self._normalize_recipient(fee_recipient)
            if recipient == self.state.fees.fee_recipient:
                raise ValidationError("fee recipient already set")
            if recipient is None and self.state.fees.fee != 0:
                raise ValidationError("nonzero fee requires a fee recipient")
            # Pending fee shares go to the previous recipient.
            await self._accrue()
            self.state.fees.fee_recipient = recipient
            self._emit(SetFeeRecipient(fee_recipient=recipient or ZERO_ADDRESS))

    async def set_max_swap_loss(self, max_swap_loss: int, *, sender: str) -> None:
        async with self._operation("set_max_swap_loss"):
            self.ownership.require_owner(sender)
            params = self.state.require_params()
            if max_swap_loss == params.max_swap_loss:
                raise ValidationError("max swap loss already set")
            if not 0 <= max_swap_loss <= MAX_SWAP_LOSS:
                raise ValidationError("max swap loss must be within [0, 1]")
            params.max_swap_loss = max_swap_loss
            self._emit(SetMaxSwapLoss(max_swap_loss=max_swap_loss))

    async def set_target_utilization(self, target_utilization: int, *, sender: str) -> None:
        async with self._operation("set_target_utilization"):
            self.ownership.require_owner(sender)
            params = self.state.require_params()
            if target_utilization == params.target_utilization:
                raise ValidationError("target utilization already set")
            if not 0 < target_utilization <= MAX_TARGET_UTILIZATION:
                raise ValidationError("target utilization must be in (0, 1]")
            params.target_utilization = target_utilization
            self._emit(SetTargetUtilization(target_utilization=target_utilization))

    async def set_default_swap_path(
        self, swap_path: SwapPath | bytes | str, *, sender: str
    ) -> None:
        async with self._operation("set_default_swap_path"):
            self.ownership.require_owner(sender)
            path = self.deleverage.resolve_path(swap_path)
            params = self.state.require_params()
            if path == params.default_swap_path:
                raise ValidationError("default swap path already set")
            params.default_swap_path = path
            self._emit(SetDefaultSwapPath(path="0x" + path.encode().hex()))

    async def transfer_ownership(self, new_owner: str, *, sender: str) -> None:
        async with self._operation("transfer_ownership", require_active=False):
            self.ownership.transfer_ownership(sender, new_owner)

    async def accept_ownership(self, *, sender: str) -> None:
        async with self._operation("accept_ownership", require_active=False):
            previous = self.ownership.accept_ownership(sender)
            self._emit(
                OwnershipTransferred(
                    previous_owner=previous, new_owner=self.ownership.owner
                )
            )

    async def multicall(self, calls: Sequence[Call], *, sender: str) -> list[Any]:
        """Run several entry points as one sender; all of them or none apply."""
        if self._busy is not None:
            raise ReentrancyError(f"multicall while {self._busy} is in flight")
        async with atomic(self._participants()):
            return await self._batch.execute(calls, sender=sender)

    # ─────────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────────

    async def _status(self) -> StatusDict:
        params = self._require_active()
        market_id = params.market_params.id
        position = await self.market.position(market_id, self.address)
        totals = await self.market.market_totals(market_id)
        return StatusDict(
            total_assets=await self.accountant.total_assets(),
            total_supply=self.shares.total_supply,
            last_total_assets=self.state.fees.last_total_assets,
            collateral=position.collateral,
            borrow_shares=position.borrow_shares,
            supply_shares=position.supply_shares,
            market_supplied_assets=to_assets_down(
                position.supply_shares,
                totals.total_supply_assets,
                totals.total_supply_shares,
            ),
            utilization=from_wad(totals.utilization),
            target_utilization=from_wad(params.target_utilization),
            fee=from_wad(self.state.fees.fee),
            strategy_status=self.state.lifecycle.value,
        )
