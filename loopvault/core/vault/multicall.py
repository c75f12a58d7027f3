from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from loopvault.core.errors import ValidationError

Call = tuple[str, Mapping[str, Any]]


class BatchExecutor:
    """Dispatch a sequence of named calls against ``target`` as one sender.

    Only names in ``allowed`` may be called; atomicity is the caller's concern.
    """

    def __init__(self, target: Any, allowed: Iterable[str]) -> None:
        self.target = target
        self.allowed = frozenset(allowed)

    async def execute(self, calls: Sequence[Call], *, sender: str) -> list[Any]:
        for name, _ in calls:
            if name not in self.allowed:
                raise ValidationError(f"{name!r} cannot be batched")
        results: list[Any] = []
        for name, kwargs in calls:
            if "sender" in kwargs:
                raise ValidationError("batched calls inherit the batch sender")
            results.append(await getattr(self.target, name)(**kwargs, sender=sender))
        return results
