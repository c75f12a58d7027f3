from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TypedDict

from loguru import logger


class StatusDict(TypedDict):
    total_assets: int
    total_supply: int
    last_total_assets: int
    collateral: int
    borrow_shares: int
    supply_shares: int
    market_supplied_assets: int
    utilization: float
    target_utilization: float
    fee: float
    strategy_status: str


class Strategy(ABC):
    name: str | None = None

    def __init__(self, config: dict[str, Any] | None = None, **kwargs: Any):
        self.logger = logger.bind(strategy=self.__class__.__name__)
        self.config: dict[str, Any] = config or {}

    @abstractmethod
    async def deposit(self, assets: int, receiver: str, *, sender: str) -> int:
        pass

    @abstractmethod
    async def withdraw(
        self, assets: int, receiver: str, owner: str, *, sender: str, **kwargs: Any
    ) -> int:
        pass

    @abstractmethod
    async def _status(self) -> StatusDict:
        pass

    async def status(self) -> StatusDict:
        status = await self._status()
        self.logger.debug(f"status: {status}")
        return status
