__version__ = "0.1.0"

from loopvault.core import BaseAdapter, StatusDict, Strategy, StrategyError

__all__ = [
    "__version__",
    "BaseAdapter",
    "Strategy",
    "StatusDict",
    "StrategyError",
]
