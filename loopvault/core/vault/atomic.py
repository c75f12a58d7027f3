from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Checkpointable(Protocol):
    def checkpoint(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


@asynccontextmanager
async def atomic(participants: Iterable[Checkpointable]) -> AsyncIterator[None]:
    """Run a block all-or-nothing across every participant.

    Snapshots are restored in reverse order when the block raises; the
    exception is re-raised unchanged.
    """
    unique: dict[int, Checkpointable] = {}
    for participant in participants:
        unique.setdefault(id(participant), participant)
    snapshots = [(p, p.checkpoint()) for p in unique.values()]
    try:
        yield
    except BaseException:
        for participant, snapshot in reversed(snapshots):
            participant.restore(snapshot)
        raise
