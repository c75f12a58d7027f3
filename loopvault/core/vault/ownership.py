from __future__ import annotations

from typing import Any

from eth_utils import to_checksum_address

from loopvault.core.constants.base import ZERO_ADDRESS
from loopvault.core.errors import AuthorizationError, ValidationError


class Ownership:
    """Two-step owner handover: the current owner nominates, the nominee accepts."""

    def __init__(self, owner: str) -> None:
        self.owner = to_checksum_address(owner)
        self.pending_owner: str | None = None

    def checkpoint(self) -> Any:
        return (self.owner, self.pending_owner)

    def restore(self, snapshot: Any) -> None:
        self.owner, self.pending_owner = snapshot

    def require_owner(self, sender: str) -> None:
        if to_checksum_address(sender) != self.owner:
            raise AuthorizationError(f"{sender} is not the owner")

    def transfer_ownership(self, sender: str, new_owner: str) -> None:
        self.require_owner(sender)
        new_owner = to_checksum_address(new_owner)
        if new_owner == ZERO_ADDRESS:
            raise ValidationError("new owner is the zero address")
        self.pending_owner = new_owner

    def accept_ownership(self, sender: str) -> str:
        sender = to_checksum_address(sender)
        if sender != self.pending_owner:
            raise AuthorizationError(f"{sender} is not the pending owner")
        previous = self.owner
        self.owner = sender
        self.pending_owner = None
        return previous
