from typing import Literal

from pydantic import BaseModel


class EventBase(BaseModel):
    # Bumped by the engine on every committed state change; lets callers tell
    # which state version an event was emitted against.
    version: int = 0


class Deposit(EventBase):
    type: Literal["DEPOSIT"] = "DEPOSIT"
    sender: str
    owner: str
    assets: int
    shares: int
    loop_iterations: int = 0
    final_utilization: int = 0


class Withdraw(EventBase):
    type: Literal["WITHDRAW"] = "WITHDRAW"
    sender: str
    receiver: str
    owner: str
    assets: int
    shares: int


class Deleverage(EventBase):
    type: Literal["DELEVERAGE"] = "DELEVERAGE"
    percentage: int
    repaid_assets: int
    repaid_shares: int
    collateral_released: int
    swap_cost: int
    collateral_to_receiver: int
    market_assets_redeemed: int
    idle_assets: int


class AccrueInterest(EventBase):
    type: Literal["ACCRUE_INTEREST"] = "ACCRUE_INTEREST"
    new_total_assets: int
    fee_shares: int
    protocol_fee_shares: int = 0


class SetFee(EventBase):
    type: Literal["SET_FEE"] = "SET_FEE"
    sender: str
    fee: int


class SetFeeRecipient(EventBase):
    type: Literal["SET_FEE_RECIPIENT"] = "SET_FEE_RECIPIENT"
    fee_recipient: str


class SetMaxSwapLoss(EventBase):
    type: Literal["SET_MAX_SWAP_LOSS"] = "SET_MAX_SWAP_LOSS"
    max_swap_loss: int


class SetTargetUtilization(EventBase):
    type: Literal["SET_TARGET_UTILIZATION"] = "SET_TARGET_UTILIZATION"
    target_utilization: int


class SetDefaultSwapPath(EventBase):
    type: Literal["SET_DEFAULT_SWAP_PATH"] = "SET_DEFAULT_SWAP_PATH"
    path: str


class OwnershipTransferred(EventBase):
    type: Literal["OWNERSHIP_TRANSFERRED"] = "OWNERSHIP_TRANSFERRED"
    previous_owner: str | None
    new_owner: str


class Initialized(EventBase):
    type: Literal["INITIALIZED"] = "INITIALIZED"
    market_id: str
    base_asset: str
    collateral_asset: str


VaultEvent = (
    Deposit
    | Withdraw
    | Deleverage
    | AccrueInterest
    | SetFee
    | SetFeeRecipient
    | SetMaxSwapLoss
    | SetTargetUtilization
    | SetDefaultSwapPath
    | OwnershipTransferred
    | Initialized
)
