"""
Perception: exercise a site the way a user would.

An HTTP probe records what traditional monitoring sees, then every
critical flow of the site profile is driven through a real browser
session and checked against its verification predicate. Flows that
fail are inspected for occlusion: an element that is visually present
while something else intercepts the pointer.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx
import structlog

from sre_dreamer.config.settings import BrowserSettings
from sre_dreamer.llm.service import ReasoningService
from sre_dreamer.profiles.models import (
    CriticalFlow,
    NetworkVerification,
    SelectorVerification,
    SiteProfile,
    UrlChangeVerification,
    VisualVerification,
)
from sre_dreamer.sandbox import scripts
from sre_dreamer.sandbox.provider import SandboxProvider
from sre_dreamer.sandbox.session import BrowserSession, SandboxError

logger = structlog.get_logger(__name__)

HTTP_PROBE_PATHS = ("/api/health", "/")
HTTP_PROBE_TIMEOUT_SECONDS = 10.0

OCCLUSION_SIGNALS = (
    "not clickable at point",
    "intercept",
    "obscured",
    "other element would receive",
    "element is not visible",
    "element click intercepted",
)

SILENT_FAILURE_MESSAGE = (
    "Action completed but verification failed; "
    "element may be visually present but non-interactive"
)


def is_occlusion_error(message: str) -> bool:
    """True when an interaction error reads like pointer interception."""
    lowered = message.lower()
    return any(signal in lowered for signal in OCCLUSION_SIGNALS)


@dataclass
class HttpHealth:
    """What a plain HTTP health check reports."""

    healthy: bool
    status: int | None = None


@dataclass
class FlowTestResult:
    """Outcome of one critical flow."""

    flow: CriticalFlow
    passed: bool
    occlusion_detected: bool = False
    blocking_element: str | None = None
    error_message: str | None = None
    dom_snapshot: str | None = None
    duration_ms: int = 0


@dataclass
class PerceptionResult:
    """Outcome of one perception pass over a site."""

    healthy: bool
    url: str
    http_healthy: bool
    http_status: int | None = None
    flow_results: list[FlowTestResult] = field(default_factory=list)
    dom_snapshot: str = ""
    session_replay_url: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def failed_flows(self) -> list[FlowTestResult]:
        return [r for r in self.flow_results if not r.passed]


class PerceptionRunner:
    """
    Runs the critical flows of a site profile in a fresh browser session.

    Usage:
        runner = PerceptionRunner(provider, reasoning, settings.browser)
        result = await runner.run_perception(profile)
    """

    def __init__(
        self,
        provider: SandboxProvider,
        reasoning: ReasoningService | None = None,
        settings: BrowserSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider = provider
        self._reasoning = reasoning
        self._settings = settings or BrowserSettings()
        self._http_client = http_client
        self._log = logger.bind(component="perception")

    async def run_perception(self, profile: SiteProfile) -> PerceptionResult:
        """
        Probe HTTP health, then drive every critical flow.

        The site is healthy only if all critical flows pass.
        """
        http = await self.check_http_health(profile.url)
        self._log.info(
            "HTTP health probe",
            url=profile.url,
            healthy=http.healthy,
            status=http.status,
        )

        async with self._provider.session("perception") as session:
            await session.navigate(profile.url)
            dom_snapshot = await session.dom_summary()

            flow_results = []
            for flow in profile.critical_flows:
                result = await self._test_flow(session, flow)
                flow_results.append(result)
                self._log.info(
                    "Critical flow checked",
                    flow=flow.name,
                    passed=result.passed,
                    occlusion=result.occlusion_detected,
                    duration_ms=result.duration_ms,
                )
                if not result.passed:
                    # Reload so one broken flow does not pollute the next
                    try:
                        await session.navigate(profile.url)
                    except SandboxError as e:
                        self._log.warning("Reload after failed flow failed", error=str(e))

            replay_url = session.replay_url

        return PerceptionResult(
            healthy=all(r.passed for r in flow_results),
            url=profile.url,
            http_healthy=http.healthy,
            http_status=http.status,
            flow_results=flow_results,
            dom_snapshot=dom_snapshot,
            session_replay_url=replay_url,
        )

    async def check_http_health(self, url: str) -> HttpHealth:
        """Try ``/api/health`` then ``/``; the first answer wins."""
        client = self._http_client or httpx.AsyncClient(timeout=HTTP_PROBE_TIMEOUT_SECONDS)
        try:
            for path in HTTP_PROBE_PATHS:
                try:
                    response = await client.get(f"{url}{path}", timeout=HTTP_PROBE_TIMEOUT_SECONDS)
                except httpx.HTTPError:
                    continue
                return HttpHealth(healthy=response.is_success, status=response.status_code)
            return HttpHealth(healthy=False)
        finally:
            if self._http_client is None:
                await client.aclose()

    async def _test_flow(self, session: BrowserSession, flow: CriticalFlow) -> FlowTestResult:
        start = time.monotonic()

        try:
            await session.act(flow.action)
        except SandboxError as e:
            message = str(e)
            occlusion = is_occlusion_error(message)
            blocking = None
            snapshot = None
            if occlusion:
                blocking = await self.identify_blocking_element(session, flow)
                snapshot = await session.dom_summary()
            return FlowTestResult(
                flow=flow,
                passed=False,
                occlusion_detected=occlusion,
                blocking_element=blocking,
                error_message=message,
                dom_snapshot=snapshot,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        if await self._verify(session, flow):
            return FlowTestResult(
                flow=flow,
                passed=True,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        # The action went through but nothing happened: look for an overlay
        blocking = await self.identify_blocking_element(session, flow)
        return FlowTestResult(
            flow=flow,
            passed=False,
            occlusion_detected=blocking is not None,
            blocking_element=blocking,
            error_message=SILENT_FAILURE_MESSAGE,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def _verify(self, session: BrowserSession, flow: CriticalFlow) -> bool:
        verification = flow.verification
        try:
            match verification:
                case SelectorVerification(expect_visible=True):
                    return await session.is_visible(
                        verification.selector, self._settings.verification_timeout_ms
                    )
                case SelectorVerification():
                    return await session.count(verification.selector) > 0
                case VisualVerification():
                    if self._reasoning is None:
                        return False
                    return await self._reasoning.check_visual_expectation(
                        verification.expectation,
                        await session.dom_summary(),
                        session.current_url,
                    )
                case UrlChangeVerification():
                    return re.search(verification.expected_pattern, session.current_url) is not None
                case NetworkVerification():
                    # Request interception is not wired; a completed action passes
                    return True
        except SandboxError as e:
            self._log.debug("Verification errored", flow=flow.name, error=str(e))
        return False

    async def identify_blocking_element(
        self,
        session: BrowserSession,
        flow: CriticalFlow | None = None,
    ) -> str | None:
        """Locator of a likely overlay sitting on the flow's target, if any."""
        selector = flow.target_selector if flow is not None else None
        try:
            blocking = await session.evaluate(scripts.BLOCKING_ELEMENT, selector)
        except SandboxError as e:
            self._log.debug("Blocking element lookup failed", error=str(e))
            return None
        return blocking or None
