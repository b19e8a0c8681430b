"""
Perception layer.

Provides:
- PerceptionRunner: HTTP probe plus browser-driven critical flow checks
- build_incident_from_perception: failed perception pass to Incident
"""

from sre_dreamer.perception.detector import (
    OCCLUSION_SIGNALS,
    FlowTestResult,
    HttpHealth,
    PerceptionResult,
    PerceptionRunner,
    is_occlusion_error,
)
from sre_dreamer.perception.incident import build_incident_from_perception, generate_incident_id

__all__ = [
    "OCCLUSION_SIGNALS",
    "FlowTestResult",
    "HttpHealth",
    "PerceptionResult",
    "PerceptionRunner",
    "build_incident_from_perception",
    "generate_incident_id",
    "is_occlusion_error",
]
