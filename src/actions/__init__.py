"""
Production remediation actions.

Provides:
- ActionDispatcher: maps the winning strategy to an action and executes it
- DeploymentClient: Vercel deployment listing, status and rollback
- Webhook, GitHub issue, Slack alert and script handlers
"""

from sre_dreamer.actions.deployments import (
    Deployment,
    DeploymentAPIError,
    DeploymentClient,
    RollbackResult,
)
from sre_dreamer.actions.dispatcher import STRATEGY_ACTIONS, ActionDispatcher, ActionRoute
from sre_dreamer.actions.notifications import (
    create_github_issue,
    render_issue,
    render_slack_payload,
    render_webhook_body,
    run_script,
    send_slack_alert,
    send_webhook,
)

__all__ = [
    # Dispatcher
    "STRATEGY_ACTIONS",
    "ActionDispatcher",
    "ActionRoute",
    # Deployments
    "Deployment",
    "DeploymentAPIError",
    "DeploymentClient",
    "RollbackResult",
    # Notifications
    "create_github_issue",
    "render_issue",
    "render_slack_payload",
    "render_webhook_body",
    "run_script",
    "send_slack_alert",
    "send_webhook",
]
