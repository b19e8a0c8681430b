"""
Action dispatcher.

Translates the winning dream strategy into a production action and
executes it. Dream strategies are evaluated only inside sandboxes; this
is the single place that touches production.

Strategy to action routing:
    rollback_simulation   -> real rollback when credentials are configured,
                             else the profile's action
    css_patch_targeted,
    dom_removal,
    style_override,
    js_injection          -> the profile's action unless it is a rollback,
                             which becomes a report-only result (these fixes
                             need a code change and cannot be applied live)
    cache_clear, other    -> the profile's action
"""

from __future__ import annotations

import time
from enum import StrEnum

import httpx
import structlog

from sre_dreamer.actions.deployments import DeploymentAPIError, DeploymentClient
from sre_dreamer.actions.notifications import (
    create_github_issue,
    run_script,
    send_slack_alert,
    send_webhook,
)
from sre_dreamer.core.models import ActionResult, Incident
from sre_dreamer.profiles.models import (
    GithubIssueAction,
    NoAction,
    RemediationAction,
    ScriptAction,
    SiteProfile,
    SlackAlertAction,
    VercelRollbackAction,
    WebhookAction,
)

logger = structlog.get_logger(__name__)


class ActionRoute(StrEnum):
    """How a strategy name maps onto a production action."""

    ROLLBACK = "rollback"
    REPORT = "report"
    PROFILE = "profile"


STRATEGY_ACTIONS: dict[str, ActionRoute] = {
    "rollback_simulation": ActionRoute.ROLLBACK,
    "css_patch_targeted": ActionRoute.REPORT,
    "dom_removal": ActionRoute.REPORT,
    "style_override": ActionRoute.REPORT,
    "js_injection": ActionRoute.REPORT,
    "cache_clear": ActionRoute.PROFILE,
}
"""Strategies missing from the table use ActionRoute.PROFILE."""


class ActionDispatcher:
    """
    Executes remediation actions with bounded timeouts.

    Every failure, including a malformed reply, is returned as a failed
    ActionResult; nothing is retried.
    """

    def __init__(
        self,
        deployments: DeploymentClient,
        github_token: str = "",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._deployments = deployments
        self._github_token = github_token
        self._client = http_client
        self._owns_client = http_client is None
        self._log = logger.bind(component="action_dispatcher")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def resolve_action(self, strategy_name: str, profile_action: RemediationAction) -> RemediationAction:
        """Pick the concrete action for a winning strategy."""
        route = STRATEGY_ACTIONS.get(strategy_name, ActionRoute.PROFILE)
        if route is ActionRoute.ROLLBACK and self._deployments.is_configured:
            vercel = self._deployments.settings
            override = profile_action if isinstance(profile_action, VercelRollbackAction) else None
            return VercelRollbackAction(
                project_id=(override and override.project_id) or vercel.project_id,
                good_deployment_id=(override and override.good_deployment_id)
                or vercel.good_deployment_id,
                team_id=(override and override.team_id) or vercel.team_id,
            )
        if route is ActionRoute.REPORT and isinstance(profile_action, VercelRollbackAction):
            # A rollback would discard the fix the dream proved; report it instead
            return NoAction(reason=f"{strategy_name} needs a code change; rollback skipped")
        return profile_action

    async def execute_remediation_action(
        self,
        profile: SiteProfile,
        incident: Incident,
        strategy_name: str,
    ) -> ActionResult:
        """
        Execute the production action for a winning strategy.

        Returns:
            ActionResult; failures are reported, never raised
        """
        started = time.monotonic()
        action = self.resolve_action(strategy_name, profile.remediation_action)
        self._log.info(
            "Dispatching remediation action",
            strategy=strategy_name,
            action=action.type,
            incident_id=incident.id,
        )

        try:
            result = await self._execute(action, incident, strategy_name)
        except (httpx.HTTPError, OSError, ValueError, DeploymentAPIError) as e:
            result = ActionResult(
                success=False,
                action_type=action.type,
                message=f"Action failed: {e}",
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        log = self._log.info if result.success else self._log.warning
        log(
            "Remediation action finished",
            action=result.action_type,
            success=result.success,
            message=result.message,
            duration_ms=result.duration_ms,
        )
        return result

    async def _execute(
        self,
        action: RemediationAction,
        incident: Incident,
        strategy_name: str,
    ) -> ActionResult:
        match action:
            case VercelRollbackAction():
                return await self._rollback(action)
            case WebhookAction():
                return await send_webhook(self._get_client(), action, incident)
            case GithubIssueAction():
                return await create_github_issue(
                    self._get_client(), action, incident, strategy_name, self._github_token
                )
            case SlackAlertAction():
                return await send_slack_alert(self._get_client(), action, incident, strategy_name)
            case ScriptAction():
                return await run_script(action)
            case NoAction():
                return ActionResult(
                    success=True,
                    action_type="none",
                    message=f"Report only: {action.reason}",
                    duration_ms=0,
                )

    async def _rollback(self, action: VercelRollbackAction) -> ActionResult:
        deployment_id = action.good_deployment_id or self._deployments.settings.good_deployment_id
        if not deployment_id:
            return ActionResult(
                success=False,
                action_type="vercel_rollback",
                message="No known-good deployment id configured for rollback",
                duration_ms=0,
            )

        result = await self._deployments.rollback_to(
            deployment_id,
            project_id=action.project_id or None,
            team_id=action.team_id,
        )
        return ActionResult(
            success=result.success,
            action_type="vercel_rollback",
            message=result.message,
            duration_ms=result.duration_ms,
            metadata={"deployment_id": deployment_id},
        )
