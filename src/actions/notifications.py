"""
Reporting and notification actions.

Each handler performs one outbound call with a bounded timeout and
reports the outcome as an ActionResult. Handlers raise on transport
errors; the dispatcher converts those into failed results.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import httpx
import structlog

from sre_dreamer.core.models import ActionResult, Incident
from sre_dreamer.profiles.models import (
    GithubIssueAction,
    ScriptAction,
    SlackAlertAction,
    WebhookAction,
)

logger = structlog.get_logger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 30.0
SLACK_TIMEOUT_SECONDS = 10.0
GITHUB_TIMEOUT_SECONDS = 30.0
SCRIPT_TIMEOUT_SECONDS = 60.0

GITHUB_API_URL = "https://api.github.com"
ISSUE_TITLE_DESCRIPTION_LIMIT = 80
SCRIPT_OUTPUT_LIMIT = 200


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def render_webhook_body(action: WebhookAction, incident: Incident) -> str:
    """Webhook payload from the action's template, or the default JSON event."""
    if action.body_template:
        return (
            action.body_template.replace("{{incident.id}}", incident.id)
            .replace("{{incident.type}}", str(incident.type))
            .replace("{{incident.description}}", incident.description)
            .replace("{{incident.url}}", incident.url)
        )
    return json.dumps(
        {
            "event": "sre_dreamer_incident",
            "incident": {
                "id": incident.id,
                "type": str(incident.type),
                "severity": str(incident.severity),
                "description": incident.description,
                "url": incident.url,
                "timestamp": incident.timestamp.isoformat(),
            },
        }
    )


def render_issue(incident: Incident, strategy: str) -> tuple[str, str]:
    """Title and markdown body of the issue filed for an incident."""
    title = (
        f"[SRE Dreamer] {incident.type}: "
        f"{incident.description[:ISSUE_TITLE_DESCRIPTION_LIMIT]}"
    )
    body = f"""## Auto-Detected Incident

| Field | Value |
|-------|-------|
| **ID** | `{incident.id}` |
| **Type** | {incident.type} |
| **Severity** | {incident.severity} |
| **URL** | {incident.url} |
| **Detected** | {incident.timestamp.isoformat()} |
| **Blocking Element** | `{incident.blocking_element or "N/A"}` |
| **Recommended Strategy** | {strategy} |

### Description
{incident.description}

### Error
```
{incident.error_message or "N/A"}
```

---
*Created automatically by SRE Dreamer*"""
    return title, body


def render_slack_payload(
    action: SlackAlertAction,
    incident: Incident,
    strategy: str,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"SRE Dreamer Alert: {incident.type}"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Severity:*\n{incident.severity}"},
                    {"type": "mrkdwn", "text": f"*URL:*\n{incident.url}"},
                    {"type": "mrkdwn", "text": f"*Strategy:*\n{strategy}"},
                    {"type": "mrkdwn", "text": f"*Detected:*\n{incident.timestamp.isoformat()}"},
                ],
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Description:*\n{incident.description}"},
            },
        ],
    }
    if action.channel:
        payload["channel"] = action.channel
    return payload


async def send_webhook(
    client: httpx.AsyncClient,
    action: WebhookAction,
    incident: Incident,
) -> ActionResult:
    started = time.monotonic()
    url = str(action.url)
    response = await client.request(
        action.method,
        url,
        content=render_webhook_body(action, incident),
        headers={"Content-Type": "application/json", **action.headers},
        timeout=WEBHOOK_TIMEOUT_SECONDS,
    )
    ok = response.is_success
    return ActionResult(
        success=ok,
        action_type="webhook",
        message=(
            f"Webhook delivered to {url} ({response.status_code})"
            if ok
            else f"Webhook failed: {response.status_code} {response.reason_phrase}"
        ),
        duration_ms=_elapsed_ms(started),
        metadata={"status_code": response.status_code},
    )


async def create_github_issue(
    client: httpx.AsyncClient,
    action: GithubIssueAction,
    incident: Incident,
    strategy: str,
    token: str,
) -> ActionResult:
    started = time.monotonic()
    if not token:
        return ActionResult(
            success=False,
            action_type="github_issue",
            message="GITHUB_TOKEN not set; cannot create issue",
            duration_ms=_elapsed_ms(started),
        )

    title, body = render_issue(incident, strategy)
    response = await client.post(
        f"{GITHUB_API_URL}/repos/{action.repo}/issues",
        json={"title": title, "body": body, "labels": action.labels},
        headers={
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        },
        timeout=GITHUB_TIMEOUT_SECONDS,
    )
    if response.is_error:
        return ActionResult(
            success=False,
            action_type="github_issue",
            message=f"GitHub issue creation failed: {response.status_code} {response.text[:200]}",
            duration_ms=_elapsed_ms(started),
        )

    try:
        data = response.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        return ActionResult(
            success=False,
            action_type="github_issue",
            message=f"GitHub issue reply unreadable: {response.status_code} {response.text[:200]}",
            duration_ms=_elapsed_ms(started),
        )
    return ActionResult(
        success=True,
        action_type="github_issue",
        message=f"GitHub issue created: {data.get('html_url')}",
        duration_ms=_elapsed_ms(started),
        metadata={"issue_url": data.get("html_url"), "issue_number": data.get("number")},
    )


async def send_slack_alert(
    client: httpx.AsyncClient,
    action: SlackAlertAction,
    incident: Incident,
    strategy: str,
) -> ActionResult:
    started = time.monotonic()
    response = await client.post(
        str(action.webhook_url),
        json=render_slack_payload(action, incident, strategy),
        timeout=SLACK_TIMEOUT_SECONDS,
    )
    ok = response.is_success
    return ActionResult(
        success=ok,
        action_type="slack_alert",
        message="Slack alert sent" if ok else f"Slack alert failed: {response.status_code}",
        duration_ms=_elapsed_ms(started),
    )


async def run_script(action: ScriptAction) -> ActionResult:
    """Run the configured shell command, killing it after the timeout."""
    started = time.monotonic()
    process = await asyncio.create_subprocess_shell(
        action.command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout_raw, stderr_raw = await asyncio.wait_for(
            process.communicate(), timeout=SCRIPT_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return ActionResult(
            success=False,
            action_type="script",
            message=f"Script failed: timed out after {SCRIPT_TIMEOUT_SECONDS:.0f}s",
            duration_ms=_elapsed_ms(started),
        )

    stdout = stdout_raw.decode(errors="replace")
    stderr = stderr_raw.decode(errors="replace")
    if process.returncode != 0:
        logger.warning("Remediation script failed", returncode=process.returncode)
        return ActionResult(
            success=False,
            action_type="script",
            message=f"Script failed: exit code {process.returncode}: {stderr.strip()[:SCRIPT_OUTPUT_LIMIT]}",
            duration_ms=_elapsed_ms(started),
            metadata={"stdout": stdout, "stderr": stderr, "returncode": process.returncode},
        )

    return ActionResult(
        success=True,
        action_type="script",
        message=f"Script executed: {stdout.strip()[:SCRIPT_OUTPUT_LIMIT]}",
        duration_ms=_elapsed_ms(started),
        metadata={"stdout": stdout, "stderr": stderr, "returncode": 0},
    )
