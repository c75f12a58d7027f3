from __future__ import annotations


class StrategyError(Exception):
    """Base class for every error an engine operation can abort with."""

    kind = "strategy"

    def __init__(self, message: str, *, operation: str | None = None):
        self.operation = operation
        super().__init__(message)


class ValidationError(StrategyError):
    kind = "validation"


class AuthorizationError(StrategyError):
    kind = "authorization"


class InsufficientAllowance(AuthorizationError):
    def __init__(self, owner: str, spender: str, allowance: int, needed: int):
        self.owner = owner
        self.spender = spender
        self.allowance = allowance
        self.needed = needed
        super().__init__(
            f"insufficient allowance: {spender} may spend {allowance} of {owner}'s "
            f"shares, needs {needed}"
        )


class ReentrancyError(AuthorizationError):
    pass


class PolicyViolation(StrategyError):
    kind = "policy"


class ExternalFailure(StrategyError):
    kind = "external"


class SlippageExceeded(ExternalFailure):
    def __init__(self, cost: int, max_cost: int):
        self.cost = cost
        self.max_cost = max_cost
        super().__init__(f"swap cost {cost} exceeds maximum {max_cost}")
