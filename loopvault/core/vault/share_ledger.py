from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import to_checksum_address

from loopvault.core.constants.base import MAX_UINT256, ZERO_ADDRESS
from loopvault.core.errors import (
    AuthorizationError,
    InsufficientAllowance,
    ValidationError,
)

PERMIT_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Permit": [
        {"name": "owner", "type": "address"},
        {"name": "spender", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
}


class ShareLedger:
    """Pooled-share bookkeeping: balances, allowances and EIP-2612 permits."""

    def __init__(
        self,
        name: str,
        symbol: str,
        *,
        address: str,
        decimals: int = 18,
        chain_id: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.symbol = symbol
        self.decimals = int(decimals)
        self.address = to_checksum_address(address)
        self.chain_id = int(chain_id)
        self._clock = clock
        self.total_supply = 0
        self._balances: dict[str, int] = {}
        self._allowances: dict[tuple[str, str], int] = {}
        self._nonces: dict[str, int] = {}

    def checkpoint(self) -> Any:
        return (
            self.total_supply,
            dict(self._balances),
            dict(self._allowances),
            dict(self._nonces),
        )

    def restore(self, snapshot: Any) -> None:
        total_supply, balances, allowances, nonces = snapshot
        self.total_supply = total_supply
        self._balances = dict(balances)
        self._allowances = dict(allowances)
        self._nonces = dict(nonces)

    def balance_of(self, account: str) -> int:
        return self._balances.get(to_checksum_address(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get(
            (to_checksum_address(owner), to_checksum_address(spender)), 0
        )

    def nonces(self, owner: str) -> int:
        return self._nonces.get(to_checksum_address(owner), 0)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if int(amount) < 0:
            raise ValidationError("allowance must be non-negative")
        owner, spender = to_checksum_address(owner), to_checksum_address(spender)
        if ZERO_ADDRESS in (owner, spender):
            raise ValidationError("cannot approve to or from the zero address")
        self._allowances[(owner, spender)] = int(amount)

    def spend_allowance(self, owner: str, spender: str, amount: int) -> None:
        current = self.allowance(owner, spender)
        if current == MAX_UINT256:
            return
        if current < amount:
            raise InsufficientAllowance(owner, spender, current, amount)
        self._allowances[(to_checksum_address(owner), to_checksum_address(spender))] = (
            current - amount
        )

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self._move(sender, recipient, amount)

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        self.spend_allowance(owner, spender, amount)
        self._move(owner, recipient, amount)

    def mint(self, account: str, amount: int) -> None:
        account = to_checksum_address(account)
        if account == ZERO_ADDRESS:
            raise ValidationError("cannot mint to the zero address")
        self.total_supply += int(amount)
        self._balances[account] = self._balances.get(account, 0) + int(amount)

    def burn(self, account: str, amount: int) -> None:
        account = to_checksum_address(account)
        balance = self._balances.get(account, 0)
        if balance < amount:
            raise ValidationError(f"burn of {amount} exceeds balance {balance} of {account}")
        self._balances[account] = balance - int(amount)
        self.total_supply -= int(amount)

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        sender, recipient = to_checksum_address(sender), to_checksum_address(recipient)
        if recipient == ZERO_ADDRESS:
            raise ValidationError("cannot transfer to the zero address")
        balance = self._balances.get(sender, 0)
        if balance < amount:
            raise ValidationError(
                f"transfer of {amount} exceeds balance {balance} of {sender}"
            )
        self._balances[sender] = balance - int(amount)
        self._balances[recipient] = self._balances.get(recipient, 0) + int(amount)

    # --- permit -----------------------------------------------------------

    def domain(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": "1",
            "chainId": self.chain_id,
            "verifyingContract": self.address,
        }

    def permit_typed_data(
        self,
        owner: str,
        spender: str,
        value: int,
        deadline: int,
        *,
        nonce: int | None = None,
    ) -> dict[str, Any]:
        owner = to_checksum_address(owner)
        return {
            "types": PERMIT_TYPES,
            "primaryType": "Permit",
            "domain": self.domain(),
            "message": {
                "owner": owner,
                "spender": to_checksum_address(spender),
                "value": int(value),
                "nonce": self.nonces(owner) if nonce is None else int(nonce),
                "deadline": int(deadline),
            },
        }

    def permit(
        self,
        owner: str,
        spender: str,
        value: int,
        deadline: int,
        signature: bytes | str,
    ) -> None:
        if self._clock() > deadline:
            raise ValidationError(f"permit expired at {deadline}")
        payload = encode_typed_data(
            full_message=self.permit_typed_data(owner, spender, value, deadline)
        )
        signer = Account.recover_message(payload, signature=signature)
        if to_checksum_address(signer) != to_checksum_address(owner):
            raise AuthorizationError(f"permit signed by {signer}, not {owner}")
        owner = to_checksum_address(owner)
        self._nonces[owner] = self._nonces.get(owner, 0) + 1
        self.approve(owner, spender, value)
