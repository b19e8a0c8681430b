"""
Remediation strategies tried inside dreams.

Every strategy mutates only the sandboxed session it is given. A strategy
that cannot apply its mutation reports so in its outcome instead of
raising, and the page is scored as it stands.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from sre_dreamer.actions.deployments import DeploymentAPIError, DeploymentClient
from sre_dreamer.core.models import Incident
from sre_dreamer.sandbox import scripts
from sre_dreamer.sandbox.session import BrowserSession, SandboxError

logger = structlog.get_logger(__name__)

DEFAULT_BLOCKER_SELECTOR = '[data-testid="ghost-overlay"]'

BLANKET_OVERLAY_CSS = """
[id*="overlay"], [class*="overlay"], [id*="modal"], [class*="modal"],
[data-testid="ghost-overlay"] {
  pointer-events: none !important;
  z-index: -1 !important;
}
""".strip()

POSITIONED_OVERRIDE_CSS = """
* {
  pointer-events: auto !important;
}
[style*="position: fixed"], [style*="position:fixed"],
[style*="position: absolute"], [style*="position:absolute"] {
  pointer-events: none !important;
}
""".strip()

ROLLBACK_APPROXIMATED = "rollback_approximated"


@dataclass(frozen=True)
class StrategyOutcome:
    """What a strategy did to its sandbox."""

    detail: str
    applied: bool = True
    tags: tuple[str, ...] = ()


@dataclass
class DreamContext:
    """Inputs shared read-only by all dreams of one cycle."""

    incident: Incident
    target_url: str
    deployments: DeploymentClient | None = None
    known_good_deployment_id: str = ""
    rollback_listing_limit: int = 5


StrategyFn = Callable[[BrowserSession, DreamContext], Awaitable[StrategyOutcome]]


def targeted_patch_css(selector: str) -> str:
    return f"{selector} {{ pointer-events: none !important; z-index: -1 !important; }}"


async def css_patch_targeted(session: BrowserSession, context: DreamContext) -> StrategyOutcome:
    """Neutralize the known blocker via CSS, or every overlay-looking element."""
    blocker = context.incident.blocking_element
    if blocker:
        try:
            await session.add_style(targeted_patch_css(blocker))
        except SandboxError as e:
            return StrategyOutcome(f"Failed to apply targeted patch: {e}", applied=False)
        return StrategyOutcome(f"Neutralized blocking element: {blocker}")

    try:
        await session.add_style(BLANKET_OVERLAY_CSS)
    except SandboxError as e:
        return StrategyOutcome(f"Failed to apply blanket patch: {e}", applied=False)
    return StrategyOutcome("Applied blanket overlay neutralization")


async def dom_removal(session: BrowserSession, context: DreamContext) -> StrategyOutcome:
    """Remove the blocking element from the DOM."""
    selector = context.incident.blocking_element or DEFAULT_BLOCKER_SELECTOR
    try:
        removed = await session.evaluate(scripts.REMOVE_ELEMENT, selector)
    except SandboxError as e:
        return StrategyOutcome(f"Failed to remove element: {e}", applied=False)
    if removed:
        return StrategyOutcome(f"Removed element matching: {selector}")
    return StrategyOutcome(f"No element found matching: {selector}", applied=False)


async def style_override(session: BrowserSession, context: DreamContext) -> StrategyOutcome:
    try:
        await session.add_style(POSITIONED_OVERRIDE_CSS)
    except SandboxError as e:
        return StrategyOutcome(f"Style override failed: {e}", applied=False)
    return StrategyOutcome("Applied global style override for positioned elements")


async def js_injection(session: BrowserSession, context: DreamContext) -> StrategyOutcome:
    """Scan computed styles and disable pointer events on transparent overlays."""
    try:
        count = await session.evaluate(scripts.NEUTRALIZE_OVERLAYS)
    except SandboxError as e:
        return StrategyOutcome(f"JS injection failed: {e}", applied=False)
    return StrategyOutcome(f"JS injection: neutralized {count} overlay element(s)")


async def cache_clear(session: BrowserSession, context: DreamContext) -> StrategyOutcome:
    try:
        await session.clear_cache()
        await session.reload()
    except SandboxError as e:
        return StrategyOutcome(f"Cache clear failed: {e}", applied=False)
    return StrategyOutcome("Cache cleared and page reloaded")


async def rollback_simulation(session: BrowserSession, context: DreamContext) -> StrategyOutcome:
    """
    Browse the most recent other ready deployment.

    Without a reachable deployment API the rollback is approximated by
    removing the blocking element, and the outcome is tagged so it is not
    mistaken for a genuine rollback.
    """
    try:
        if context.deployments is None:
            raise DeploymentAPIError("No deployment client configured")
        deployments = await context.deployments.list_recent_deployments(
            limit=context.rollback_listing_limit
        )
    except DeploymentAPIError as e:
        removal = await dom_removal(session, context)
        return StrategyOutcome(
            f"Deployment API unavailable ({e}); approximated rollback by removing blocker: "
            f"{removal.detail}",
            applied=removal.applied,
            tags=(ROLLBACK_APPROXIMATED,),
        )

    target = next(
        (d for d in deployments if d.is_ready and d.id != context.known_good_deployment_id),
        None,
    )
    if target is None:
        try:
            await session.reload()
        except SandboxError as e:
            return StrategyOutcome(f"Rollback reload failed: {e}", applied=False)
        return StrategyOutcome("No previous deployment available; simulated rollback via reload")

    url = target.browsable_url
    try:
        await session.navigate(url)
    except SandboxError as e:
        return StrategyOutcome(f"Could not open deployment {target.id}: {e}", applied=False)
    return StrategyOutcome(f"Simulated rollback: navigated to previous deployment {target.id} ({url})")


STRATEGY_REGISTRY: dict[str, StrategyFn] = {
    "rollback_simulation": rollback_simulation,
    "css_patch_targeted": css_patch_targeted,
    "dom_removal": dom_removal,
    "style_override": style_override,
    "js_injection": js_injection,
    "cache_clear": cache_clear,
}

STRATEGY_DESCRIPTIONS: dict[str, str] = {
    "rollback_simulation": "Simulate rollback to last known-good state",
    "css_patch_targeted": "Neutralize blocking element via CSS",
    "dom_removal": "Remove blocking element from DOM",
    "style_override": "Disable pointer events on positioned elements",
    "js_injection": "Neutralize overlays found by computed-style scanning",
    "cache_clear": "Clear caches and reload",
}


async def apply_strategy(
    name: str,
    session: BrowserSession,
    context: DreamContext,
) -> StrategyOutcome:
    """Run a strategy by name; unknown names leave the page untouched."""
    strategy = STRATEGY_REGISTRY.get(name)
    if strategy is None:
        logger.info("Strategy has no implementation", strategy=name)
        return StrategyOutcome(f'Strategy "{name}" has no implementation; skipped', applied=False)
    return await strategy(session, context)
