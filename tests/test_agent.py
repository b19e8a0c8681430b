"""Tests for the perceive-dream-act-verify-learn loop."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import FakeProvider, FakeRedis

from sre_dreamer.config.settings import AgentSettings, VercelSettings
from sre_dreamer.core.models import (
    ActionResult,
    Diagnosis,
    DreamReport,
    DreamResult,
    IncidentMemory,
    IncidentType,
)
from sre_dreamer.llm.config import LLMConfig
from sre_dreamer.memory.store import IncidentMemoryStore
from sre_dreamer.orchestrator import RunPhase, SREDreamerAgent, run_agent_with_profile
from sre_dreamer.perception.detector import FlowTestResult, PerceptionResult
from sre_dreamer.profiles.models import CriticalFlow, ScriptAction, SiteProfile

OVERLAY = '[data-testid="ghost-overlay"]'


def perception(profile: SiteProfile, healthy: bool) -> PerceptionResult:
    flows = profile.critical_flows
    results = [FlowTestResult(flow=f, passed=True) for f in flows]
    if not healthy:
        results[0] = FlowTestResult(
            flow=flows[0],
            passed=False,
            occlusion_detected=True,
            blocking_element=OVERLAY,
            error_message="element click intercepted",
        )
    return PerceptionResult(
        healthy=healthy,
        url=profile.url,
        http_healthy=True,
        http_status=200,
        flow_results=results,
    )


def dream_report(diagnosis: Diagnosis, winner: bool = True) -> DreamReport:
    winning = DreamResult(
        strategy="css_patch_targeted",
        success=True,
        score=0.92,
        details=f"Neutralized blocking element: {OVERLAY}",
        duration_ms=1500,
        priority=2,
    )
    losing = DreamResult(
        strategy="rollback_simulation",
        success=False,
        score=0.3,
        details="No previous deployment available; simulated rollback via reload",
        duration_ms=2100,
        priority=5,
    )
    return DreamReport(
        incident_id="ignored",
        diagnosis=diagnosis,
        results=[winning, losing] if winner else [losing],
        best_strategy=winning if winner else None,
        total_duration_ms=2500,
    )


class AgentHarness:
    """An agent wired to mocks plus a real memory store over FakeRedis."""

    def __init__(
        self,
        perceptions: list[PerceptionResult],
        report: DreamReport,
        action: ActionResult | None = None,
        redis: FakeRedis | None = None,
    ) -> None:
        self.redis = redis or FakeRedis()
        self.provider = FakeProvider()
        self.memory = IncidentMemoryStore("redis://test", client=self.redis)

        self.reasoning = MagicMock()
        self.reasoning.generate_embedding = AsyncMock(return_value=[1.0, 0.0])
        self.reasoning.generate_post_mortem = AsyncMock(return_value="Ghost overlay neutralized.")
        self.reasoning.close = AsyncMock()

        self.perception = MagicMock()
        self.perception.run_perception = AsyncMock(side_effect=perceptions)

        self.engine = MagicMock()
        self.engine.run_dream_cycle = AsyncMock(return_value=report)

        self.dispatcher = MagicMock()
        self.dispatcher.execute_remediation_action = AsyncMock(
            return_value=action
            or ActionResult(success=True, action_type="script", message="Script executed", duration_ms=5)
        )
        self.dispatcher.close = AsyncMock()

        self.deployments = MagicMock()
        self.deployments.close = AsyncMock()

        self.agent = SREDreamerAgent(
            settings=AgentSettings(verification_delay_seconds=0),
            reasoning=self.reasoning,
            provider=self.provider,
            memory=self.memory,
            deployments=self.deployments,
            perception=self.perception,
            engine=self.engine,
            dispatcher=self.dispatcher,
        )


@pytest.fixture
def script_profile(site_profile: SiteProfile) -> SiteProfile:
    return site_profile.model_copy(
        update={"remediation_action": ScriptAction(command="./purge-cdn.sh")}
    )


class TestAgentLifecycle:
    """Tests for starting and stopping the agent."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, site_profile: SiteProfile, diagnosis: Diagnosis) -> None:
        harness = AgentHarness([], dream_report(diagnosis))

        async with harness.agent as agent:
            assert agent.memory_available
            assert harness.provider.started

        assert not harness.provider.started
        assert not agent.memory_available
        harness.dispatcher.close.assert_awaited_once()
        harness.deployments.close.assert_awaited_once()
        harness.reasoning.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_releases_all_when_browser_fails(self, diagnosis: Diagnosis) -> None:
        """Test a failing browser shutdown still closes every client."""
        harness = AgentHarness([], dream_report(diagnosis))
        harness.provider.stop = AsyncMock(side_effect=RuntimeError("browser gone"))

        await harness.agent.start()
        with pytest.raises(RuntimeError, match="browser gone"):
            await harness.agent.stop()

        assert not harness.agent.memory_available
        assert harness.memory._redis is None
        harness.dispatcher.close.assert_awaited_once()
        harness.deployments.close.assert_awaited_once()
        harness.reasoning.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_runs_without_memory(self, script_profile: SiteProfile, diagnosis: Diagnosis) -> None:
        """Test an unreachable memory store only disables learning."""
        harness = AgentHarness(
            [perception(script_profile, False), perception(script_profile, True)],
            dream_report(diagnosis),
            redis=FakeRedis(reachable=False),
        )

        async with harness.agent as agent:
            assert not agent.memory_available
            result = await agent.run(script_profile)

        assert result.phase is RunPhase.VERIFIED
        assert result.post_mortem is None
        assert not result.memory_updated
        assert harness.engine.run_dream_cycle.await_args.args[1] == []
        harness.reasoning.generate_post_mortem.assert_not_awaited()

    def test_from_settings_wiring(self) -> None:
        settings = AgentSettings(
            redis_url="redis://memory:6379/1",
            vercel=VercelSettings(good_deployment_id="dpl_good"),
        )

        agent = SREDreamerAgent.from_settings(settings, LLMConfig())

        assert agent._memory._redis_url == "redis://memory:6379/1"
        assert agent._engine._known_good_deployment_id == "dpl_good"
        assert agent._engine._deployments is agent._deployments
        assert agent._perception._provider is agent._provider
        assert not agent.memory_available


class TestAgentRun:
    """Tests for one full cycle."""

    @pytest.mark.asyncio
    async def test_healthy_site(self, site_profile: SiteProfile, diagnosis: Diagnosis) -> None:
        harness = AgentHarness([perception(site_profile, True)], dream_report(diagnosis))

        async with harness.agent as agent:
            result = await agent.run(site_profile)

        assert result.phase is RunPhase.HEALTHY
        assert result.incident is None
        harness.engine.run_dream_cycle.assert_not_awaited()
        harness.dispatcher.execute_remediation_action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verified_fix_is_learned(
        self, script_profile: SiteProfile, diagnosis: Diagnosis
    ) -> None:
        """Test the full loop: dream, act, verify, then remember the fix."""
        harness = AgentHarness(
            [perception(script_profile, False), perception(script_profile, True)],
            dream_report(diagnosis),
        )

        async with harness.agent as agent:
            result = await agent.run(script_profile)
            memories = await harness.memory.get_recent_memories()
            steps = await harness.memory.get_thread_steps(result.incident.id)

        incident = result.incident
        assert result.phase is RunPhase.VERIFIED
        assert result.verified
        assert result.resolution == "Script executed"
        assert incident.type is IncidentType.VISUAL_OCCLUSION
        assert incident.sealed
        assert "Dream analysis: Neutralized blocking element" in incident.description
        assert "(css_overlay, confidence: 0.90)" in incident.description
        harness.dispatcher.execute_remediation_action.assert_awaited_once_with(
            script_profile, incident, "css_patch_targeted"
        )
        assert harness.perception.run_perception.await_count == 2

        assert result.memory_updated
        assert result.post_mortem == "Ghost overlay neutralized."
        (stored,) = memories
        assert stored.incident_id == incident.id
        assert stored.strategy_used == "css_patch_targeted"
        assert stored.score == pytest.approx(0.92)
        assert stored.description == "Ghost overlay neutralized."
        assert stored.resolution == "Script executed"
        assert [s["strategy"] for s in steps] == ["css_patch_targeted", "rollback_simulation"]

    @pytest.mark.asyncio
    async def test_past_incidents_recalled(
        self, script_profile: SiteProfile, diagnosis: Diagnosis
    ) -> None:
        redis = FakeRedis()
        seeded = IncidentMemoryStore("redis://test", client=redis)
        await seeded.connect()
        await seeded.store_memory(
            IncidentMemory(
                incident_id="inc_past",
                timestamp=datetime(2026, 1, 1, tzinfo=UTC),
                type=IncidentType.VISUAL_OCCLUSION,
                description="Overlay blocked checkout",
                resolution="Rollback triggered",
                strategy_used="dom_removal",
                score=0.95,
            ),
            [1.0, 0.0],
        )
        harness = AgentHarness(
            [perception(script_profile, False), perception(script_profile, True)],
            dream_report(diagnosis),
            redis=redis,
        )

        async with harness.agent as agent:
            await agent.run(script_profile)

        past = harness.engine.run_dream_cycle.await_args.args[1]
        assert [m.incident_id for m in past] == ["inc_past"]
        query = harness.reasoning.generate_embedding.await_args_list[0].args[0]
        assert query.startswith("visual_occlusion: Visual health check failed for ShopTest")

    @pytest.mark.asyncio
    async def test_no_viable_strategy(self, site_profile: SiteProfile, diagnosis: Diagnosis) -> None:
        """Test nothing touches production when no dream wins."""
        harness = AgentHarness(
            [perception(site_profile, False)], dream_report(diagnosis, winner=False)
        )

        async with harness.agent as agent:
            result = await agent.run(site_profile)
            remembered = await harness.memory.get_memory_count()

        assert result.phase is RunPhase.NO_VIABLE_STRATEGY
        assert result.action_result is None
        assert not result.incident.sealed
        harness.dispatcher.execute_remediation_action.assert_not_awaited()
        assert remembered == 0

    @pytest.mark.asyncio
    async def test_report_only_is_resolved(
        self, site_profile: SiteProfile, diagnosis: Diagnosis
    ) -> None:
        """Test a report-only action is not verified but is still learned."""
        harness = AgentHarness(
            [perception(site_profile, False)],
            dream_report(diagnosis),
            action=ActionResult(
                success=True, action_type="none", message="Report only: testing", duration_ms=0
            ),
        )

        async with harness.agent as agent:
            result = await agent.run(site_profile)

        assert result.phase is RunPhase.RESOLVED
        assert result.verification is None
        assert not result.verified
        assert result.memory_updated
        assert harness.perception.run_perception.await_count == 1

    @pytest.mark.asyncio
    async def test_routed_report_skips_verification(
        self, script_profile: SiteProfile, diagnosis: Diagnosis
    ) -> None:
        """Test a win routed to report-only is not re-perceived."""
        harness = AgentHarness(
            [perception(script_profile, False)],
            dream_report(diagnosis),
            action=ActionResult(
                success=True,
                action_type="none",
                message="Report only: css_patch_targeted needs a code change; rollback skipped",
                duration_ms=0,
            ),
        )

        async with harness.agent as agent:
            result = await agent.run(script_profile)

        assert result.phase is RunPhase.RESOLVED
        assert result.verification is None
        assert harness.perception.run_perception.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_action(self, script_profile: SiteProfile, diagnosis: Diagnosis) -> None:
        harness = AgentHarness(
            [perception(script_profile, False)],
            dream_report(diagnosis),
            action=ActionResult(
                success=False,
                action_type="script",
                message="Script failed: exit code 1: boom",
                duration_ms=12,
            ),
        )

        async with harness.agent as agent:
            result = await agent.run(script_profile)

        assert result.phase is RunPhase.FAILED
        assert result.verification is None
        assert result.resolution == "Script failed: exit code 1: boom"
        # The attempt is still remembered, flagged as unsuccessful
        assert harness.reasoning.generate_post_mortem.await_args.args[3] is False

    @pytest.mark.asyncio
    async def test_unverified_fix_is_resolved(
        self, script_profile: SiteProfile, diagnosis: Diagnosis
    ) -> None:
        harness = AgentHarness(
            [perception(script_profile, False), perception(script_profile, False)],
            dream_report(diagnosis),
        )

        async with harness.agent as agent:
            result = await agent.run(script_profile)

        assert result.phase is RunPhase.RESOLVED
        assert result.verification is not None
        assert not result.verified


class TestRunAgentWithProfile:
    """Tests for the one-shot entry point."""

    @pytest.mark.asyncio
    async def test_runs_once(self, site_profile: SiteProfile, diagnosis: Diagnosis) -> None:
        harness = AgentHarness([perception(site_profile, True)], dream_report(diagnosis))
        settings = AgentSettings()

        with patch.object(SREDreamerAgent, "from_settings", return_value=harness.agent) as factory:
            result = await run_agent_with_profile(site_profile, settings)

        factory.assert_called_once_with(settings)
        assert result.phase is RunPhase.HEALTHY
        assert not harness.provider.started
