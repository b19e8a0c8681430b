"""
Dreaming: parallel sandboxed trials of remediation strategies.

Provides:
- DreamEngine: diagnose, select, dream concurrently, rank
- select_strategies: merge suggestions, fallbacks and past wins
- Strategy implementations keyed by name
"""

from sre_dreamer.dreamer.engine import DreamEngine, pick_winner, rank_results
from sre_dreamer.dreamer.selector import select_strategies
from sre_dreamer.dreamer.strategies import (
    ROLLBACK_APPROXIMATED,
    STRATEGY_DESCRIPTIONS,
    STRATEGY_REGISTRY,
    DreamContext,
    StrategyOutcome,
    apply_strategy,
)

__all__ = [
    # Engine
    "DreamEngine",
    "pick_winner",
    "rank_results",
    # Selection
    "select_strategies",
    # Strategies
    "ROLLBACK_APPROXIMATED",
    "STRATEGY_DESCRIPTIONS",
    "STRATEGY_REGISTRY",
    "DreamContext",
    "StrategyOutcome",
    "apply_strategy",
]
