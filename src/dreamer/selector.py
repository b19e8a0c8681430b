"""
Strategy selection for a dream cycle.

Merges a rollback baseline, the diagnosis's suggestions and
deterministic fallbacks keyed by incident type, then lets past wins
jump the queue. Lower priority runs first and wins ties.
"""

from __future__ import annotations

from typing import Sequence

import structlog

from sre_dreamer.core.models import (
    Diagnosis,
    Incident,
    IncidentMemory,
    IncidentType,
    StrategyDefinition,
)
from sre_dreamer.dreamer.strategies import STRATEGY_DESCRIPTIONS

logger = structlog.get_logger(__name__)

BOOSTED_PRIORITY = 0
SUGGESTED_PRIORITY = 2
BASELINE_STRATEGY = "rollback_simulation"
BASELINE_PRIORITY = 5

PAST_WIN_THRESHOLD = 0.8

FALLBACKS_BY_TYPE: dict[IncidentType, tuple[tuple[str, int], ...]] = {
    IncidentType.VISUAL_OCCLUSION: (
        ("css_patch_targeted", 3),
        ("dom_removal", 4),
    ),
}


def _definition(name: str, priority: int, description: str | None = None) -> StrategyDefinition:
    return StrategyDefinition(
        name=name,
        description=description or STRATEGY_DESCRIPTIONS.get(name, name),
        priority=priority,
    )


def select_strategies(
    incident: Incident,
    diagnosis: Diagnosis,
    past_incidents: Sequence[IncidentMemory],
) -> list[StrategyDefinition]:
    """
    Ordered strategies to dream about for an incident.

    Args:
        incident: Incident being remediated
        diagnosis: Root-cause hypothesis with suggested strategies
        past_incidents: Similar past incidents, most relevant first

    Returns:
        Strategy definitions sorted by ascending priority
    """
    strategies: dict[str, StrategyDefinition] = {
        BASELINE_STRATEGY: _definition(BASELINE_STRATEGY, BASELINE_PRIORITY),
    }

    for name in diagnosis.suggested_strategies:
        if name not in strategies:
            strategies[name] = _definition(
                name, SUGGESTED_PRIORITY, f"LLM-suggested strategy: {name}"
            )

    for name, priority in FALLBACKS_BY_TYPE.get(incident.type, ()):
        if name not in strategies:
            strategies[name] = _definition(name, priority)

    past_wins = [m for m in past_incidents if m.score > PAST_WIN_THRESHOLD]
    if past_wins:
        preferred = max(past_wins, key=lambda m: m.score).strategy_used
        if preferred in strategies:
            strategies[preferred] = strategies[preferred].with_priority(BOOSTED_PRIORITY)
            logger.info(
                "Boosting strategy from past successes",
                strategy=preferred,
                past_wins=len(past_wins),
            )

    # sorted() is stable, so equal priorities keep insertion order
    return sorted(strategies.values(), key=lambda s: s.priority)
