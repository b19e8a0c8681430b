"""
Core domain records shared by every stage of the remediation loop.
"""

from sre_dreamer.core.models import (
    ActionResult,
    Diagnosis,
    DreamReport,
    DreamResult,
    FlowCheck,
    Incident,
    IncidentMemory,
    IncidentSealedError,
    IncidentType,
    LatencyDetails,
    ReachabilityDetails,
    ReachabilityMode,
    SafetyDetails,
    ScoreBreakdown,
    ScoreDetails,
    Severity,
    StrategyDefinition,
    VisualDetails,
    VisualMode,
)

__all__ = [
    # Incidents
    "Incident",
    "IncidentSealedError",
    "IncidentType",
    "Severity",
    # Diagnosis and strategies
    "Diagnosis",
    "StrategyDefinition",
    # Scoring
    "FlowCheck",
    "LatencyDetails",
    "ReachabilityDetails",
    "ReachabilityMode",
    "SafetyDetails",
    "ScoreBreakdown",
    "ScoreDetails",
    "VisualDetails",
    "VisualMode",
    # Dreams
    "DreamReport",
    "DreamResult",
    # Memory and actions
    "ActionResult",
    "IncidentMemory",
]
