"""The agent loop tying perception, dreaming, action and memory together."""

from sre_dreamer.orchestrator.agent import (
    RunPhase,
    RunResult,
    SREDreamerAgent,
    run_agent_with_profile,
)

__all__ = [
    "RunPhase",
    "RunResult",
    "SREDreamerAgent",
    "run_agent_with_profile",
]
