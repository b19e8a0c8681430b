"""
SRE Dreamer.

Autonomous site reliability agent that perceives broken user flows in a
real browser, dreams about candidate fixes in parallel sandboxes, applies
the best one to production and learns from the outcome.
"""

__version__ = "0.1.0"

from sre_dreamer.config.settings import AgentSettings, load_agent_config
from sre_dreamer.core.models import (
    ActionResult,
    Diagnosis,
    DreamReport,
    DreamResult,
    Incident,
    IncidentMemory,
    IncidentType,
    ScoreBreakdown,
    Severity,
    StrategyDefinition,
)
from sre_dreamer.dreamer import DreamEngine, select_strategies
from sre_dreamer.logging_config import configure_logging
from sre_dreamer.memory import IncidentMemoryStore, cosine_similarity
from sre_dreamer.orchestrator import (
    RunPhase,
    RunResult,
    SREDreamerAgent,
    run_agent_with_profile,
)
from sre_dreamer.profiles import (
    SiteProfile,
    create_generic_profile,
    load_profile,
    shopdemo_profile,
)
from sre_dreamer.scoring import PageHealthEvaluator, compute_score, score_latency

__all__ = [
    "__version__",
    # Agent
    "RunPhase",
    "RunResult",
    "SREDreamerAgent",
    "run_agent_with_profile",
    # Configuration
    "AgentSettings",
    "configure_logging",
    "load_agent_config",
    # Models
    "ActionResult",
    "Diagnosis",
    "DreamReport",
    "DreamResult",
    "Incident",
    "IncidentMemory",
    "IncidentType",
    "ScoreBreakdown",
    "Severity",
    "StrategyDefinition",
    # Dreaming
    "DreamEngine",
    "select_strategies",
    # Scoring
    "PageHealthEvaluator",
    "compute_score",
    "score_latency",
    # Memory
    "IncidentMemoryStore",
    "cosine_similarity",
    # Profiles
    "SiteProfile",
    "create_generic_profile",
    "load_profile",
    "shopdemo_profile",
]
