"""
The SRE Dreamer agent loop.

    1. PERCEIVE  - drive the critical flows in a real browser
    2. DREAM     - diagnose, then try every candidate fix in parallel sandboxes
    3. ACT       - apply the winning strategy's production action
    4. VERIFY    - re-run perception once the change has propagated
    5. LEARN     - store a post-mortem and embedding for future incidents

The agent owns the lifecycle of every collaborator it is given. Memory is
optional: when the store is unreachable the loop runs without learning.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass
from enum import StrEnum
from typing import Awaitable, Callable, TypeVar

import structlog

from sre_dreamer.actions.deployments import DeploymentClient
from sre_dreamer.actions.dispatcher import ActionDispatcher
from sre_dreamer.config.settings import AgentSettings, load_agent_config
from sre_dreamer.core.models import (
    ActionResult,
    DreamReport,
    DreamResult,
    Incident,
    IncidentMemory,
)
from sre_dreamer.dreamer.engine import DreamEngine
from sre_dreamer.llm.config import LLMConfig, load_llm_config
from sre_dreamer.llm.service import ReasoningService
from sre_dreamer.memory.store import IncidentMemoryStore, MemoryStoreError
from sre_dreamer.perception.detector import PerceptionResult, PerceptionRunner
from sre_dreamer.perception.incident import build_incident_from_perception
from sre_dreamer.profiles.models import SiteProfile
from sre_dreamer.sandbox.provider import SandboxProvider
from sre_dreamer.scoring.evaluator import PageHealthEvaluator

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RunPhase(StrEnum):
    """Terminal phase of one agent run."""

    HEALTHY = "healthy"
    NO_VIABLE_STRATEGY = "no_viable_strategy"
    FAILED = "failed"
    RESOLVED = "resolved"
    VERIFIED = "verified"


@dataclass
class RunResult:
    """Everything one run observed and decided."""

    phase: RunPhase
    perception: PerceptionResult | None = None
    incident: Incident | None = None
    dream_report: DreamReport | None = None
    action_result: ActionResult | None = None
    verification: PerceptionResult | None = None
    resolution: str | None = None
    post_mortem: str | None = None
    memory_updated: bool = False
    verified: bool = False


class SREDreamerAgent:
    """
    Perceive, dream, act, verify and learn for one site profile.

    Usage:
        async with SREDreamerAgent.from_settings(settings) as agent:
            result = await agent.run(profile)
    """

    def __init__(
        self,
        settings: AgentSettings,
        reasoning: ReasoningService,
        provider: SandboxProvider,
        memory: IncidentMemoryStore,
        deployments: DeploymentClient,
        perception: PerceptionRunner,
        engine: DreamEngine,
        dispatcher: ActionDispatcher,
    ) -> None:
        self._settings = settings
        self._reasoning = reasoning
        self._provider = provider
        self._memory = memory
        self._deployments = deployments
        self._perception = perception
        self._engine = engine
        self._dispatcher = dispatcher
        self._memory_available = False
        self._log = logger.bind(component="agent")

    @classmethod
    def from_settings(
        cls,
        settings: AgentSettings,
        llm_config: LLMConfig | None = None,
    ) -> SREDreamerAgent:
        """Wire every collaborator from configuration."""
        llm_config = llm_config or load_llm_config(settings.llm_config_file)
        reasoning = ReasoningService(llm_config)
        provider = SandboxProvider(settings.browser, resolver=reasoning.resolve_action_target)
        deployments = DeploymentClient(settings.vercel)
        return cls(
            settings=settings,
            reasoning=reasoning,
            provider=provider,
            memory=IncidentMemoryStore(settings.redis_url, settings.memory),
            deployments=deployments,
            perception=PerceptionRunner(provider, reasoning, settings.browser),
            engine=DreamEngine(
                reasoning,
                provider,
                PageHealthEvaluator(reasoning),
                deployments,
                settings.dream,
                known_good_deployment_id=settings.vercel.good_deployment_id,
            ),
            dispatcher=ActionDispatcher(
                deployments,
                github_token=settings.github_token.get_secret_value(),
            ),
        )

    @property
    def memory_available(self) -> bool:
        return self._memory_available

    async def start(self) -> None:
        await self._provider.start()
        try:
            await self._memory.connect()
        except MemoryStoreError as e:
            self._log.warning("Memory store unavailable, running without learning", error=str(e))
            return

        self._memory_available = True
        stats = await self._remember("get_memory_stats", self._memory.get_memory_stats)
        if stats and stats["total"]:
            self._log.info(
                "Memory loaded",
                total=stats["total"],
                with_embeddings=stats["with_embeddings"],
            )

    async def stop(self) -> None:
        """Release every resource; a failing step does not skip the others."""
        # Callbacks run last-in first-out, after the provider stops
        async with AsyncExitStack() as stack:
            stack.push_async_callback(self._reasoning.close)
            stack.push_async_callback(self._deployments.close)
            stack.push_async_callback(self._dispatcher.close)
            stack.push_async_callback(self._disconnect_memory)
            await self._provider.stop()

    async def _disconnect_memory(self) -> None:
        if self._memory_available:
            self._memory_available = False
            await self._memory.disconnect()

    async def __aenter__(self) -> SREDreamerAgent:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()

    async def _remember(self, operation: str, call: Callable[[], Awaitable[T]]) -> T | None:
        """Run a memory operation; failures are logged and skipped."""
        if not self._memory_available:
            return None
        try:
            return await call()
        except MemoryStoreError as e:
            self._log.warning("Memory operation failed", operation=operation, error=str(e))
            return None

    # =========================================================================
    # The loop
    # =========================================================================

    async def run(self, profile: SiteProfile) -> RunResult:
        """Run one full perceive-dream-act-verify-learn cycle."""
        log = self._log.bind(site=profile.name)

        log.info(
            "PERCEIVE: checking critical flows",
            url=profile.url,
            flows=[f.name for f in profile.critical_flows],
        )
        perception = await self._perception.run_perception(profile)
        log.info(
            "Perception complete",
            http_status=perception.http_status,
            http_healthy=perception.http_healthy,
            healthy=perception.healthy,
        )
        for flow in perception.flow_results:
            log.info(
                "Flow result",
                flow=flow.flow.name,
                passed=flow.passed,
                occlusion=flow.occlusion_detected,
                blocker=flow.blocking_element,
                duration_ms=flow.duration_ms,
            )

        incident = build_incident_from_perception(perception, profile)
        if incident is None:
            log.info("All flows passed; site is healthy")
            return RunResult(phase=RunPhase.HEALTHY, perception=perception)

        log = log.bind(incident_id=incident.id)
        log.warning(
            "Anomaly detected",
            type=incident.type,
            severity=incident.severity,
            description=incident.description,
        )
        await self._remember("start_thread", lambda: self._memory.start_thread(incident))

        log.info("DREAM: recalling past incidents")
        past_incidents = await self._recall(incident)

        report = await self._engine.run_dream_cycle(incident, past_incidents, profile)
        for dream in report.results:
            await self._remember(
                "log_thread_step",
                lambda dream=dream: self._memory.log_thread_step(
                    incident.id,
                    "dream_executed",
                    {
                        "strategy": dream.strategy,
                        "score": dream.score,
                        "success": dream.success,
                        "session_url": dream.session_url,
                    },
                ),
            )

        best = report.best_strategy
        if best is None:
            log.warning(
                "No viable remediation strategy; not acting",
                outcomes="\n" + report.summary(),
            )
            return RunResult(
                phase=RunPhase.NO_VIABLE_STRATEGY,
                perception=perception,
                incident=incident,
                dream_report=report,
            )

        log.info("ACT: applying winning strategy", strategy=best.strategy, score=round(best.score, 3))
        diagnosis = report.diagnosis
        incident.enrich(
            f"Dream analysis: {best.details}\n"
            f"Diagnosis: {diagnosis.root_cause} ({diagnosis.category}, "
            f"confidence: {diagnosis.confidence:.2f})"
        )
        incident.seal()
        action = await self._dispatcher.execute_remediation_action(profile, incident, best.strategy)

        verification = await self._verify(profile, action)
        verified = verification is not None and verification.healthy

        post_mortem, memory_updated = await self._learn(incident, report, best, action, verified)

        if verified:
            phase = RunPhase.VERIFIED
        elif action.success:
            phase = RunPhase.RESOLVED
        else:
            phase = RunPhase.FAILED
        log.info("Run complete", phase=phase, resolution=action.message)

        return RunResult(
            phase=phase,
            perception=perception,
            incident=incident,
            dream_report=report,
            action_result=action,
            verification=verification,
            resolution=action.message,
            post_mortem=post_mortem,
            memory_updated=memory_updated,
            verified=verified,
        )

    async def _recall(self, incident: Incident) -> list[IncidentMemory]:
        if not self._memory_available:
            return []

        query = await self._reasoning.generate_embedding(f"{incident.type}: {incident.description}")
        if query is None:
            self._log.info("No query embedding; recalling by incident type")

        past = await self._remember(
            "find_similar_incidents",
            lambda: self._memory.find_similar_incidents(incident.type, query),
        )
        if not past:
            self._log.info("No past incidents found; this is a novel event")
            return []

        self._log.info(
            "Found similar past incidents",
            count=len(past),
            search="vector" if query else "type match",
            top=[f"{m.incident_id}:{m.strategy_used}:{m.score:.2f}" for m in past[:3]],
        )
        return past

    async def _verify(self, profile: SiteProfile, action: ActionResult) -> PerceptionResult | None:
        if not action.success or action.action_type == "none":
            self._log.info("VERIFY: skipped, action was report-only or failed")
            return None

        self._log.info(
            "VERIFY: waiting for changes to propagate",
            delay_seconds=self._settings.verification_delay_seconds,
        )
        await asyncio.sleep(self._settings.verification_delay_seconds)
        result = await self._perception.run_perception(profile)
        self._log.info(
            "Verification complete",
            healthy=result.healthy,
            flows={f.flow.name: f.passed for f in result.flow_results},
        )
        return result

    async def _learn(
        self,
        incident: Incident,
        report: DreamReport,
        best: DreamResult,
        action: ActionResult,
        verified: bool,
    ) -> tuple[str | None, bool]:
        if not self._memory_available:
            self._log.info("LEARN: skipped, memory store unavailable")
            return None, False

        post_mortem = await self._reasoning.generate_post_mortem(
            incident,
            report.diagnosis,
            best.strategy,
            verified or action.success,
        )
        self._log.info("LEARN: post-mortem written", post_mortem=post_mortem)

        embedding = await self._reasoning.generate_embedding(
            f"{incident.type}: {incident.description}. Resolution: {post_mortem}"
        )
        memory = IncidentMemory(
            incident_id=incident.id,
            timestamp=incident.timestamp,
            type=incident.type,
            description=post_mortem,
            resolution=action.message,
            strategy_used=best.strategy,
            score=best.score,
        )
        stored = await self._remember(
            "store_memory", lambda: self._memory.store_memory(memory, embedding)
        )
        return post_mortem, bool(stored)


async def run_agent_with_profile(
    profile: SiteProfile,
    settings: AgentSettings | None = None,
) -> RunResult:
    """Run the agent once against a profile, loading configuration when not given."""
    settings = settings or load_agent_config()
    async with SREDreamerAgent.from_settings(settings) as agent:
        return await agent.run(profile)
