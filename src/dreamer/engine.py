"""
The dream engine.

For one incident: diagnose, select strategies, then try every strategy
at once, each in its own freshly provisioned sandbox. Dreams are
independent: a dream that crashes or times out becomes a zero-score
result and never disturbs its siblings. Once all have settled, results
are ranked and a winner is chosen.
"""

from __future__ import annotations

import asyncio
import time
from typing import Sequence

import structlog

from sre_dreamer.actions.deployments import DeploymentClient
from sre_dreamer.config.settings import DreamSettings
from sre_dreamer.core.models import (
    DreamReport,
    DreamResult,
    Incident,
    IncidentMemory,
    StrategyDefinition,
)
from sre_dreamer.dreamer.selector import select_strategies
from sre_dreamer.dreamer.strategies import DreamContext, apply_strategy
from sre_dreamer.llm.service import ReasoningService
from sre_dreamer.profiles.models import SiteProfile
from sre_dreamer.sandbox.provider import SandboxProvider
from sre_dreamer.sandbox.session import SandboxError
from sre_dreamer.scoring.evaluator import PageHealthEvaluator, apply_latency

logger = structlog.get_logger(__name__)

WINNING_SCORE = 0.5
SUCCESS_REACHABILITY = 0.5

SIDE_EFFECT_TAG = "potential_side_effects"
CRASHED_TAG = "dream_crashed"
ERROR_TAG = "dream_error"
TIMEOUT_TAG = "dream_timeout"


def rank_results(results: Sequence[DreamResult]) -> list[DreamResult]:
    """
    Sort results by descending score.

    Equal scores are ordered by strategy priority, then by the order the
    strategies were selected in.
    """
    order = sorted(
        range(len(results)),
        key=lambda i: (-results[i].score, results[i].priority, i),
    )
    return [results[i] for i in order]


def pick_winner(ranked: Sequence[DreamResult]) -> DreamResult | None:
    """Highest ranked successful result scoring above 0.5, if any."""
    return next((r for r in ranked if r.success and r.score > WINNING_SCORE), None)


class DreamEngine:
    """
    Runs dream cycles.

    Usage:
        engine = DreamEngine(reasoning, provider, evaluator, deployments, settings)
        report = await engine.run_dream_cycle(incident, past_incidents, profile)
        if report.best_strategy:
            ...
    """

    def __init__(
        self,
        reasoning: ReasoningService,
        provider: SandboxProvider,
        evaluator: PageHealthEvaluator,
        deployments: DeploymentClient | None = None,
        settings: DreamSettings | None = None,
        known_good_deployment_id: str = "",
    ) -> None:
        self._reasoning = reasoning
        self._provider = provider
        self._evaluator = evaluator
        self._deployments = deployments
        self._settings = settings or DreamSettings()
        self._known_good_deployment_id = known_good_deployment_id
        self._log = logger.bind(component="dream_engine")

    async def run_dream_cycle(
        self,
        incident: Incident,
        past_incidents: Sequence[IncidentMemory],
        profile: SiteProfile,
    ) -> DreamReport:
        """
        Diagnose an incident and dream about every candidate strategy.

        Returns:
            DreamReport with one result per selected strategy, ranked
        """
        start = time.monotonic()
        log = self._log.bind(incident_id=incident.id)

        diagnosis = await self._reasoning.diagnose_root_cause(incident, profile)
        log.info(
            "Root cause diagnosed",
            root_cause=diagnosis.root_cause,
            confidence=round(diagnosis.confidence, 2),
            category=diagnosis.category,
            reasoning=diagnosis.reasoning,
        )

        strategies = select_strategies(incident, diagnosis, past_incidents)
        log.info(
            "Starting dream cycle",
            strategies=[s.name for s in strategies],
        )

        context = DreamContext(
            incident=incident,
            target_url=profile.url,
            deployments=self._deployments,
            known_good_deployment_id=self._known_good_deployment_id,
            rollback_listing_limit=self._settings.rollback_listing_limit,
        )

        outcomes = await asyncio.gather(
            *(
                asyncio.wait_for(
                    self._execute_dream(strategy, context, profile),
                    timeout=self._settings.dream_timeout_seconds,
                )
                for strategy in strategies
            ),
            return_exceptions=True,
        )

        results = [
            self._settle(strategy, outcome) for strategy, outcome in zip(strategies, outcomes)
        ]
        ranked = rank_results(results)
        best = pick_winner(ranked)

        report = DreamReport(
            incident_id=incident.id,
            diagnosis=diagnosis,
            results=ranked,
            best_strategy=best,
            total_duration_ms=int((time.monotonic() - start) * 1000),
        )

        log.info(
            "Dream cycle complete",
            duration_ms=report.total_duration_ms,
            ranking="\n" + report.summary(),
        )
        if best is not None:
            log.info("Best strategy found", strategy=best.strategy, score=round(best.score, 3))
        else:
            log.warning(
                "No viable strategy found",
                reason="no dream succeeded with a score above 0.5",
            )
        return report

    def _settle(
        self,
        strategy: StrategyDefinition,
        outcome: DreamResult | BaseException,
    ) -> DreamResult:
        """Turn a settled dream into a result; crashes become zero scores."""
        if isinstance(outcome, DreamResult):
            return outcome
        if not isinstance(outcome, Exception):
            raise outcome

        if isinstance(outcome, TimeoutError):
            detail = f"Dream timed out after {self._settings.dream_timeout_seconds:.0f}s"
            tag = TIMEOUT_TAG
        else:
            detail = f"Dream failed: {outcome}"
            tag = CRASHED_TAG

        self._log.error("Dream crashed", strategy=strategy.name, error=detail)
        return DreamResult(
            strategy=strategy.name,
            success=False,
            score=0.0,
            details=detail,
            duration_ms=0,
            side_effects=(tag,),
            priority=strategy.priority,
        )

    async def _execute_dream(
        self,
        strategy: StrategyDefinition,
        context: DreamContext,
        profile: SiteProfile,
    ) -> DreamResult:
        """One dream: navigate, mutate, score, always tear the sandbox down."""
        start = time.monotonic()
        log = self._log.bind(strategy=strategy.name)
        log.debug("Dream starting")

        try:
            async with self._provider.session(strategy.name) as session:
                await session.navigate(context.target_url)
                outcome = await apply_strategy(strategy.name, session, context)
                breakdown = await self._evaluator.evaluate_page_health(session, profile)
                duration_ms = int((time.monotonic() - start) * 1000)
                apply_latency(breakdown, duration_ms)
                session_url = session.replay_url
        except SandboxError as e:
            log.warning("Dream sandbox error", error=str(e))
            return DreamResult(
                strategy=strategy.name,
                success=False,
                score=0.0,
                details=f"Dream error: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
                side_effects=(ERROR_TAG,),
                priority=strategy.priority,
            )

        side_effects = list(outcome.tags)
        if breakdown.safety < 1.0:
            side_effects.append(SIDE_EFFECT_TAG)

        log.info(
            "Dream complete",
            score=round(breakdown.aggregate, 3),
            reachability=round(breakdown.reachability, 2),
            visual_integrity=round(breakdown.visual_integrity, 2),
            safety=round(breakdown.safety, 2),
            latency=round(breakdown.latency, 2),
            detail=outcome.detail,
        )
        return DreamResult(
            strategy=strategy.name,
            success=breakdown.reachability > SUCCESS_REACHABILITY,
            score=breakdown.aggregate,
            details=outcome.detail,
            duration_ms=duration_ms,
            side_effects=tuple(side_effects),
            priority=strategy.priority,
            session_url=session_url,
            breakdown=breakdown,
        )
