"""
Page health evaluation for dream outcomes.

Scores the page state left behind by a remediation attempt on four
dimensions and combines them with fixed weights:

- Reachability (0.4): can users complete the critical flows?
- Visual integrity (0.25): is the expected content still there?
- Safety (0.2): did the fix break the page?
- Latency (0.15): how long did the whole attempt take?

Every check absorbs its own failures and degrades to a conservative
value, so evaluation itself never fails a dream.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

import structlog

from sre_dreamer.core.models import (
    FlowCheck,
    LatencyDetails,
    ReachabilityDetails,
    ReachabilityMode,
    SafetyDetails,
    ScoreBreakdown,
    ScoreDetails,
    VisualDetails,
    VisualMode,
)
from sre_dreamer.llm.config import ReasoningTask
from sre_dreamer.profiles.models import (
    CriticalFlow,
    SelectorVerification,
    SiteProfile,
    UrlChangeVerification,
)
from sre_dreamer.sandbox import scripts
from sre_dreamer.sandbox.session import BrowserSession, SandboxError

if TYPE_CHECKING:
    from sre_dreamer.llm.service import ReasoningService

logger = structlog.get_logger(__name__)

WEIGHTS: dict[str, float] = {
    "reachability": 0.4,
    "visual_integrity": 0.25,
    "safety": 0.2,
    "latency": 0.15,
}

LATENCY_FULL_SCORE_MS = 5_000
LATENCY_ZERO_SCORE_MS = 120_000

SAFETY_PENALTY_PER_ISSUE = 0.3
SAFETY_UNCERTAIN = 0.5

DETERMINISTIC_VISUAL_WEIGHT = 0.6
LLM_VISUAL_WEIGHT = 0.4
UNSELECTABLE_ELEMENT_CREDIT = 0.5

HIT_TEST_LIMIT = 20


def compute_score(
    reachability: float,
    visual_integrity: float,
    safety: float,
    latency: float,
) -> float:
    """Weighted aggregate of four sub-scores already bounded to [0, 1]."""
    return (
        reachability * WEIGHTS["reachability"]
        + visual_integrity * WEIGHTS["visual_integrity"]
        + safety * WEIGHTS["safety"]
        + latency * WEIGHTS["latency"]
    )


def score_latency(duration_ms: float) -> float:
    """
    Normalize an elapsed time to a score.

    Under 5s scores 1.0, 120s or more scores 0.0, linear in between.
    """
    if duration_ms <= LATENCY_FULL_SCORE_MS:
        return 1.0
    if duration_ms >= LATENCY_ZERO_SCORE_MS:
        return 0.0
    return 1.0 - (duration_ms - LATENCY_FULL_SCORE_MS) / (
        LATENCY_ZERO_SCORE_MS - LATENCY_FULL_SCORE_MS
    )


def apply_latency(breakdown: ScoreBreakdown, duration_ms: int) -> ScoreBreakdown:
    """Back-fill the latency sub-score once the elapsed time is known."""
    breakdown.latency = score_latency(duration_ms)
    breakdown.details.latency = LatencyDetails(duration_ms=duration_ms)
    breakdown.aggregate = compute_score(
        breakdown.reachability,
        breakdown.visual_integrity,
        breakdown.safety,
        breakdown.latency,
    )
    return breakdown


def score_safety_issues(issues: list[str]) -> float:
    """Safety sub-score for a set of detected danger signals."""
    distinct = set(issues)
    if not distinct:
        return 1.0
    if "page_destroyed" in distinct:
        return 0.0
    return max(0.0, 1.0 - len(distinct) * SAFETY_PENALTY_PER_ISSUE)


class PageHealthEvaluator:
    """
    Scores the current state of a sandboxed page.

    Usage:
        evaluator = PageHealthEvaluator(reasoning)
        breakdown = await evaluator.evaluate_page_health(session, profile)
        apply_latency(breakdown, elapsed_ms)
    """

    def __init__(
        self,
        reasoning: ReasoningService | None = None,
        hit_test_limit: int = HIT_TEST_LIMIT,
    ) -> None:
        self._reasoning = reasoning
        self._hit_test_limit = hit_test_limit
        self._log = logger.bind(component="page_health_evaluator")

    async def evaluate_page_health(
        self,
        session: BrowserSession,
        profile: SiteProfile | None = None,
    ) -> ScoreBreakdown:
        """
        Evaluate reachability, visual integrity and safety of the page.

        Latency starts at 1.0 and is back-filled by the caller with
        ``apply_latency`` once the full attempt duration is known.
        """
        reachability, reach_details = await self.check_reachability(session, profile)
        visual, visual_details = await self.check_visual_integrity(session, profile)
        safety, safety_details = await self.check_safety(session)
        latency = 1.0

        breakdown = ScoreBreakdown(
            reachability=reachability,
            visual_integrity=visual,
            safety=safety,
            latency=latency,
            aggregate=compute_score(reachability, visual, safety, latency),
            details=ScoreDetails(
                reachability=reach_details,
                visual=visual_details,
                safety=safety_details,
            ),
        )
        self._log.debug(
            "Page health evaluated",
            session=session.session_id,
            reachability=round(reachability, 3),
            visual_integrity=round(visual, 3),
            safety=round(safety, 3),
            aggregate=round(breakdown.aggregate, 3),
        )
        return breakdown

    # =========================================================================
    # Reachability
    # =========================================================================

    async def check_reachability(
        self,
        session: BrowserSession,
        profile: SiteProfile | None,
    ) -> tuple[float, ReachabilityDetails]:
        try:
            if profile is not None and profile.critical_flows:
                return await self._reachability_from_flows(session, profile)
            return await self._reachability_from_hit_test(session)
        except Exception as e:
            self._log.warning("Reachability check failed", error=str(e))
            return 0.0, ReachabilityDetails(mode=ReachabilityMode.ERROR, error=str(e))

    async def _reachability_from_flows(
        self,
        session: BrowserSession,
        profile: SiteProfile,
    ) -> tuple[float, ReachabilityDetails]:
        details = ReachabilityDetails(mode=ReachabilityMode.PROFILE_FLOWS)
        earned = 0

        for flow in profile.critical_flows:
            check = await self._replay_flow(session, flow)
            details.flows.append(check)
            if check.passed:
                earned += flow.priority

        total = profile.total_flow_priority
        return (earned / total if total else 0.0), details

    async def _replay_flow(self, session: BrowserSession, flow: CriticalFlow) -> FlowCheck:
        try:
            await session.act(flow.action)
            reached = await self._flow_target_reached(session, flow)
        except SandboxError as e:
            return FlowCheck(name=flow.name, passed=False, priority=flow.priority, error=str(e))

        return FlowCheck(
            name=flow.name,
            passed=reached,
            priority=flow.priority,
            error=None if reached else "Flow target not reached after action",
        )

    @staticmethod
    async def _flow_target_reached(session: BrowserSession, flow: CriticalFlow) -> bool:
        verification = flow.verification
        match verification:
            case SelectorVerification(expect_visible=True):
                return await session.is_visible(verification.selector)
            case SelectorVerification():
                return await session.count(verification.selector) > 0
            case UrlChangeVerification():
                return re.search(verification.expected_pattern, session.current_url) is not None
            case _:
                # The click went through, which is what reachability measures
                return True

    async def _reachability_from_hit_test(
        self,
        session: BrowserSession,
    ) -> tuple[float, ReachabilityDetails]:
        result = await session.evaluate(scripts.HIT_TEST_INTERACTIVES, self._hit_test_limit)
        checked = int(result.get("checked", 0))
        reachable = int(result.get("reachable", 0))
        details = ReachabilityDetails(
            mode=ReachabilityMode.HIT_TEST,
            candidates_checked=checked,
            candidates_reachable=reachable,
        )
        return (reachable / checked if checked else 0.0), details

    # =========================================================================
    # Visual integrity
    # =========================================================================

    async def check_visual_integrity(
        self,
        session: BrowserSession,
        profile: SiteProfile | None,
    ) -> tuple[float, VisualDetails]:
        try:
            if profile is not None and profile.expected_elements:
                return await self._visual_from_expected_elements(session, profile)
            return await self._visual_from_structure(session)
        except Exception as e:
            self._log.warning("Visual integrity check failed", error=str(e))
            return 0.0, VisualDetails(mode=VisualMode.ERROR, error=str(e))

    async def _visual_from_expected_elements(
        self,
        session: BrowserSession,
        profile: SiteProfile,
    ) -> tuple[float, VisualDetails]:
        details = VisualDetails(
            mode=VisualMode.EXPECTED_ELEMENTS,
            elements_total=len(profile.expected_elements),
        )
        credit = 0.0

        for element in profile.expected_elements:
            if element.selector is None:
                credit += UNSELECTABLE_ELEMENT_CREDIT
                continue
            if await session.count(element.selector) > 0:
                details.elements_found += 1
                credit += 1.0
            else:
                details.missing.append(element.description)

        deterministic = credit / details.elements_total
        details.deterministic_score = deterministic

        if self._reasoning is None or not self._reasoning.is_enabled(
            ReasoningTask.VISUAL_ASSESSMENT
        ):
            return deterministic, details

        assessment = await self._reasoning.assess_page_visually(
            await session.dom_summary(),
            json.dumps(await session.evaluate(scripts.PAGE_STATE)),
            profile,
            screenshot_png=await self._screenshot(session),
        )
        if assessment.fallback_used:
            details.llm_issues = assessment.issues_found
            return deterministic, details

        details.llm_score = assessment.overall_score
        details.llm_issues = assessment.issues_found
        blended = (
            DETERMINISTIC_VISUAL_WEIGHT * deterministic
            + LLM_VISUAL_WEIGHT * assessment.overall_score
        )
        return blended, details

    async def _screenshot(self, session: BrowserSession) -> bytes | None:
        try:
            return await session.screenshot()
        except SandboxError as e:
            self._log.debug("Screenshot unavailable for visual assessment", error=str(e))
            return None

    @staticmethod
    async def _visual_from_structure(session: BrowserSession) -> tuple[float, VisualDetails]:
        checks = await session.evaluate(scripts.STRUCTURE_CHECKS)
        structural = {name: bool(value) for name, value in checks.items()}
        passed = sum(structural.values())
        details = VisualDetails(
            mode=VisualMode.GENERIC_STRUCTURE,
            structural_checks=structural,
            deterministic_score=passed / len(structural) if structural else 0.0,
        )
        return details.deterministic_score or 0.0, details

    # =========================================================================
    # Safety
    # =========================================================================

    async def check_safety(self, session: BrowserSession) -> tuple[float, SafetyDetails]:
        try:
            issues = list(dict.fromkeys(await session.evaluate(scripts.SAFETY_SIGNALS) or []))
        except Exception as e:
            # An evaluation failure does not prove a safety problem
            self._log.warning("Safety check failed", error=str(e))
            return SAFETY_UNCERTAIN, SafetyDetails(error=str(e))

        details = SafetyDetails(issues=issues, page_destroyed="page_destroyed" in issues)
        return score_safety_issues(issues), details
