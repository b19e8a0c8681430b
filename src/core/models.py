"""
Core domain records for the dream-and-score remediation loop.

Defines the records that flow between perception, diagnosis, dreaming,
scoring, action dispatch and memory:
- Incident and its classification enums
- Diagnosis and StrategyDefinition produced before dreaming
- ScoreBreakdown with one typed detail record per scoring check
- DreamResult / DreamReport produced by the dream engine
- IncidentMemory persisted for the learning loop
- ActionResult returned by the action dispatcher
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class IncidentType(StrEnum):
    """Classification of a detected anomaly."""

    VISUAL_OCCLUSION = "visual_occlusion"
    ELEMENT_UNCLICKABLE = "element_unclickable"
    LAYOUT_SHIFT = "layout_shift"
    CONTENT_MISSING = "content_missing"
    UNKNOWN = "unknown"


class Severity(StrEnum):
    """Severity class of an incident."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IncidentSealedError(RuntimeError):
    """Raised when an incident is enriched after the action phase began."""


@dataclass
class Incident:
    """
    One detected anomaly.

    Only the description may change after creation, and only until
    the incident is sealed for the action phase.
    """

    id: str
    """Unique identifier generated at detection time."""

    type: IncidentType
    """Classification of the anomaly."""

    severity: Severity
    """Severity class."""

    description: str
    """Human-readable description, enriched by the dream engine."""

    url: str
    """Target URL the anomaly was observed on."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    """Detection time (UTC)."""

    dom_snapshot: str | None = None
    """Annotated DOM summary captured during perception."""

    error_message: str | None = None
    """First error text observed by a failing flow."""

    blocking_element: str | None = None
    """Structural locator of the element intercepting interaction (may be stale)."""

    sealed: bool = False
    """Set once the action phase begins."""

    def enrich(self, note: str) -> None:
        """Append a note to the description."""
        if self.sealed:
            raise IncidentSealedError(
                f"Incident {self.id} is sealed and can no longer be enriched"
            )
        self.description = f"{self.description}\n\n{note}" if self.description else note

    def seal(self) -> None:
        """Freeze the incident before dispatching a production action."""
        self.sealed = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": str(self.type),
            "severity": str(self.severity),
            "description": self.description,
            "url": self.url,
            "timestamp": self.timestamp.isoformat(),
            "dom_snapshot": self.dom_snapshot,
            "error_message": self.error_message,
            "blocking_element": self.blocking_element,
        }


@dataclass(frozen=True)
class Diagnosis:
    """Root-cause hypothesis produced once per incident."""

    root_cause: str
    confidence: float
    category: str
    suggested_strategies: tuple[str, ...]
    reasoning: str = ""

    def __post_init__(self) -> None:
        # Bounded to [0, 1] regardless of what the reasoning layer returned
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))


@dataclass(frozen=True)
class StrategyDefinition:
    """A candidate remediation; lower priority runs and wins ties first."""

    name: str
    description: str
    priority: int

    def with_priority(self, priority: int) -> StrategyDefinition:
        return replace(self, priority=priority)


# ============================================================================
# Score breakdown details
# ============================================================================


class ReachabilityMode(StrEnum):
    """How reachability was measured."""

    PROFILE_FLOWS = "profile_flows"
    HIT_TEST = "hit_test"
    ERROR = "error"


class VisualMode(StrEnum):
    """How visual integrity was measured."""

    EXPECTED_ELEMENTS = "expected_elements"
    GENERIC_STRUCTURE = "generic_structure"
    ERROR = "error"


@dataclass
class FlowCheck:
    """Outcome of one critical flow replayed inside a sandbox."""

    name: str
    passed: bool
    priority: int
    error: str | None = None


@dataclass
class ReachabilityDetails:
    """Trace of the reachability check."""

    mode: ReachabilityMode
    flows: list[FlowCheck] = field(default_factory=list)
    candidates_checked: int = 0
    candidates_reachable: int = 0
    error: str | None = None


@dataclass
class VisualDetails:
    """Trace of the visual integrity check."""

    mode: VisualMode
    elements_found: int = 0
    elements_total: int = 0
    missing: list[str] = field(default_factory=list)
    structural_checks: dict[str, bool] = field(default_factory=dict)
    deterministic_score: float | None = None
    llm_score: float | None = None
    llm_issues: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class SafetyDetails:
    """Trace of the safety check."""

    issues: list[str] = field(default_factory=list)
    page_destroyed: bool = False
    error: str | None = None


@dataclass
class LatencyDetails:
    """Elapsed wall-clock time of the whole dream attempt."""

    duration_ms: int | None = None


@dataclass
class ScoreDetails:
    """Per-check diagnostic records, one per scoring dimension."""

    reachability: ReachabilityDetails
    visual: VisualDetails
    safety: SafetyDetails
    latency: LatencyDetails = field(default_factory=LatencyDetails)


@dataclass
class ScoreBreakdown:
    """
    Weighted score of one dream outcome.

    Latency is the only field updated after construction, once the
    dream engine knows the elapsed time.
    """

    reachability: float
    visual_integrity: float
    safety: float
    latency: float
    aggregate: float
    details: ScoreDetails


# ============================================================================
# Dream results
# ============================================================================


@dataclass(frozen=True)
class DreamResult:
    """Outcome of one strategy trial; success implies reachability > 0.5."""

    strategy: str
    success: bool
    score: float
    details: str
    duration_ms: int
    side_effects: tuple[str, ...] = ()
    priority: int = 0
    session_url: str | None = None
    breakdown: ScoreBreakdown | None = None


@dataclass
class DreamReport:
    """All dream outcomes for one incident, ranked by score."""

    incident_id: str
    diagnosis: Diagnosis
    results: list[DreamResult]
    best_strategy: DreamResult | None
    total_duration_ms: int

    @property
    def has_winner(self) -> bool:
        return self.best_strategy is not None

    def summary(self) -> str:
        """One line per strategy for operator-facing logs."""
        lines = []
        for rank, result in enumerate(self.results, start=1):
            verdict = "ok" if result.success else "fail"
            lines.append(
                f"{rank}. {result.strategy} score={result.score:.2f} "
                f"[{verdict}] {result.details}"
            )
        return "\n".join(lines)


# ============================================================================
# Memory and actions
# ============================================================================


@dataclass
class IncidentMemory:
    """Append-only record of one resolved incident cycle."""

    incident_id: str
    timestamp: datetime
    type: IncidentType
    description: str
    resolution: str
    strategy_used: str
    score: float
    embedding: list[float] | None = None

    @property
    def timestamp_ms(self) -> int:
        return int(self.timestamp.timestamp() * 1000)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["type"] = str(self.type)
        data.pop("embedding")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IncidentMemory:
        timestamp = datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        try:
            incident_type = IncidentType(data.get("type", "unknown"))
        except ValueError:
            incident_type = IncidentType.UNKNOWN
        return cls(
            incident_id=data["incident_id"],
            timestamp=timestamp,
            type=incident_type,
            description=data.get("description", ""),
            resolution=data.get("resolution", ""),
            strategy_used=data.get("strategy_used", ""),
            score=float(data.get("score", 0.0)),
            embedding=data.get("embedding"),
        )


@dataclass
class ActionResult:
    """Outcome of one production remediation action."""

    success: bool
    action_type: str
    message: str
    duration_ms: int
    metadata: dict[str, Any] = field(default_factory=dict)
