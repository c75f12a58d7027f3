from loopvault.core.adapters.BaseAdapter import BaseAdapter
from loopvault.core.errors import StrategyError
from loopvault.core.strategies.Strategy import StatusDict, Strategy

__all__ = [
    "Strategy",
    "StatusDict",
    "StrategyError",
    "BaseAdapter",
]
