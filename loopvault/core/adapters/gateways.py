"""Narrow interfaces to the collaborators the vault drives.

Every gateway acts on behalf of one wallet (the vault) and is substitutable by
a test double; ``loopvault.testing.simulated`` ships in-memory ones.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from eth_abi import encode
from eth_utils import encode_hex, keccak, to_checksum_address

from loopvault.core.utils.fixed_point import utilization


@dataclass(frozen=True)
class MarketParams:
    loan_token: str
    collateral_token: str
    oracle: str
    irm: str
    lltv: int

    def __post_init__(self) -> None:
        for field_name in ("loan_token", "collateral_token", "oracle", "irm"):
            object.__setattr__(
                self, field_name, to_checksum_address(getattr(self, field_name))
            )
        object.__setattr__(self, "lltv", int(self.lltv))

    @property
    def id(self) -> str:
        return encode_hex(
            keccak(
                encode(
                    ["address", "address", "address", "address", "uint256"],
                    [
                        self.loan_token,
                        self.collateral_token,
                        self.oracle,
                        self.irm,
                        self.lltv,
                    ],
                )
            )
        )


@dataclass(frozen=True)
class Position:
    collateral: int = 0
    borrow_shares: int = 0
    supply_shares: int = 0
    rate_tier: int = 0


@dataclass(frozen=True)
class MarketTotals:
    total_supply_assets: int = 0
    total_supply_shares: int = 0
    total_borrow_assets: int = 0
    total_borrow_shares: int = 0

    @property
    def utilization(self) -> int:
        return utilization(self.total_borrow_assets, self.total_supply_assets)


@dataclass(frozen=True)
class TierTotals:
    borrow_assets: int = 0
    borrow_shares: int = 0


@runtime_checkable
class SettlementReceiver(Protocol):
    async def on_flash_settlement(self, sender: str, assets: int, data: bytes) -> None: ...


class MarketGateway(ABC):
    address: str

    @abstractmethod
    async def accrue_interest(self, params: MarketParams) -> None: ...

    @abstractmethod
    async def supply(
        self, params: MarketParams, assets: int, shares: int, on_behalf: str
    ) -> tuple[int, int]: ...

    @abstractmethod
    async def withdraw(
        self,
        params: MarketParams,
        assets: int,
        shares: int,
        on_behalf: str,
        receiver: str,
    ) -> tuple[int, int]: ...

    @abstractmethod
    async def supply_collateral(
        self, params: MarketParams, assets: int, on_behalf: str
    ) -> None: ...

    @abstractmethod
    async def withdraw_collateral(
        self, params: MarketParams, assets: int, on_behalf: str, receiver: str
    ) -> None: ...

    @abstractmethod
    async def borrow(
        self,
        params: MarketParams,
        assets: int,
        shares: int,
        on_behalf: str,
        receiver: str,
    ) -> tuple[int, int]: ...

    @abstractmethod
    async def repay(
        self,
        params: MarketParams,
        assets: int,
        shares: int,
        on_behalf: str,
        data: bytes = b"",
    ) -> tuple[int, int]: ...

    @abstractmethod
    async def flash_settlement(
        self, token: str, assets: int, data: bytes, receiver: SettlementReceiver
    ) -> None:
        """Lend ``assets`` of ``token``, call ``receiver.on_flash_settlement`` and
        pull the same amount back before returning."""

    @abstractmethod
    async def position(self, market_id: str, user: str) -> Position: ...

    @abstractmethod
    async def market_totals(self, market_id: str) -> MarketTotals: ...

    @abstractmethod
    async def tier_borrow_totals(self, market_id: str, rate_tier: int) -> TierTotals: ...


class StakingGateway(ABC):
    address: str

    @abstractmethod
    async def stake(self, amount: int) -> int:
        """Stake ``amount`` of the base asset, returning certificate shares received."""


class CertificateConversion(ABC):
    @abstractmethod
    async def value_to_shares(self, amount: int) -> int: ...

    @abstractmethod
    async def shares_to_value(self, shares: int) -> int: ...


class SwapGateway(ABC):
    address: str

    @abstractmethod
    async def swap_for_exact_output(
        self,
        path: bytes,
        recipient: str,
        amount_out: int,
        amount_in_maximum: int,
        deadline: int,
    ) -> int:
        """Buy exactly ``amount_out`` along ``path``; returns the input spent."""


class TokenGateway(ABC):
    @abstractmethod
    async def balance_of(self, token: str, account: str) -> int: ...

    @abstractmethod
    async def allowance(self, token: str, owner: str, spender: str) -> int: ...

    @abstractmethod
    async def transfer(self, token: str, recipient: str, amount: int) -> None: ...

    @abstractmethod
    async def transfer_from(
        self, token: str, owner: str, recipient: str, amount: int
    ) -> None: ...

    @abstractmethod
    async def approve(self, token: str, spender: str, amount: int) -> None: ...


class ProtocolFeePolicy(ABC):
    @abstractmethod
    async def fee_fraction(self, vault: str) -> int:
        """Share of the performance fee owed to the protocol, WAD-scaled."""

    @abstractmethod
    async def fee_recipient(self, vault: str) -> str: ...
