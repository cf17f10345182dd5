"""
Export/import strategies and their dispatch table.
"""

from dbstage.backup.dispatcher import ExportDispatcher, ImportDispatcher
from dbstage.backup.factory import StrategyFactory, register_strategy
from dbstage.backup.strategies import ExportStrategy, ImportStrategy, StrategyContext

__all__ = [
    "ExportDispatcher",
    "ImportDispatcher",
    "StrategyFactory",
    "register_strategy",
    "ExportStrategy",
    "ImportStrategy",
    "StrategyContext",
]
