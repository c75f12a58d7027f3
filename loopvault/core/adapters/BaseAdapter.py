from __future__ import annotations

from abc import ABC
from typing import Any

from eth_utils import to_checksum_address
from loguru import logger


class BaseAdapter(ABC):
    """Common base for gateway adapters bound to one acting wallet."""

    adapter_type: str | None = None

    def __init__(
        self,
        name: str,
        config: dict[str, Any] | None = None,
        *,
        wallet_address: str | None = None,
    ):
        self.name = name
        self.config = config or {}
        self.wallet_address: str | None = (
            to_checksum_address(wallet_address) if wallet_address else None
        )
        self.logger = logger.bind(adapter=self.__class__.__name__)

    def _require_wallet(self) -> str:
        if not self.wallet_address:
            raise ValueError(f"{self.name}: wallet address not configured")
        return self.wallet_address
