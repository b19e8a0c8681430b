"""
Pydantic models for site profiles.

A site profile describes what "healthy" means for one website: the
critical user flows to exercise, the elements that must be present,
the production action to take once a fix is proven, and domain facts
handed to the reasoning layer.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    field_validator,
)


class VerificationType(StrEnum):
    """How a critical flow proves it succeeded."""

    SELECTOR = "selector"
    VISUAL = "visual"
    URL_CHANGE = "url_change"
    NETWORK = "network"


class ActionType(StrEnum):
    """Production remediation action kinds."""

    VERCEL_ROLLBACK = "vercel_rollback"
    WEBHOOK = "webhook"
    GITHUB_ISSUE = "github_issue"
    SLACK_ALERT = "slack_alert"
    SCRIPT = "script"
    NONE = "none"


# ============================================================================
# Verification predicates
# ============================================================================


class SelectorVerification(BaseModel):
    """An element matching the selector must appear (or merely exist)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["selector"] = "selector"
    selector: str = Field(..., min_length=1)
    expect_visible: bool = True


class VisualVerification(BaseModel):
    """The reasoning layer answers yes/no to a plain-language expectation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["visual"] = "visual"
    expectation: str = Field(..., min_length=1)


class UrlChangeVerification(BaseModel):
    """The page URL must match a regular expression after the action."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["url_change"] = "url_change"
    expected_pattern: str = Field(..., min_length=1)

    @field_validator("expected_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid URL pattern: {e}") from e
        return v


class NetworkVerification(BaseModel):
    """A request matching the pattern is expected; passes when the action completes."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["network"] = "network"
    url_pattern: str = Field(..., min_length=1)
    method: str = "GET"


Verification = Annotated[
    SelectorVerification | VisualVerification | UrlChangeVerification | NetworkVerification,
    Field(discriminator="type"),
]


class CriticalFlow(BaseModel):
    """A named user flow driven by a natural-language action."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    action: str = Field(
        ...,
        min_length=1,
        description="Natural-language action, e.g. 'Click the login button'",
    )
    verification: Verification
    priority: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Higher is more critical; weights reachability scoring",
    )

    @property
    def target_selector(self) -> str | None:
        """Selector of the element the flow expects, when it names one."""
        if isinstance(self.verification, SelectorVerification):
            return self.verification.selector
        return None


class ExpectedElement(BaseModel):
    """An element that should always be present on a healthy page."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    description: str = Field(..., min_length=1)
    selector: str | None = None


# ============================================================================
# Remediation actions
# ============================================================================


class VercelRollbackAction(BaseModel):
    """Roll production back to a known-good deployment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["vercel_rollback"] = "vercel_rollback"
    project_id: str = ""
    good_deployment_id: str = ""
    team_id: str | None = None


class WebhookAction(BaseModel):
    """Deliver the incident to an HTTP endpoint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["webhook"] = "webhook"
    url: HttpUrl
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body_template: str | None = Field(
        default=None,
        description="Body with {{incident.id}}, {{incident.type}}, "
        "{{incident.description}} and {{incident.url}} placeholders",
    )


class GithubIssueAction(BaseModel):
    """Open an issue carrying the incident and the proven fix."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["github_issue"] = "github_issue"
    repo: str = Field(..., pattern=r"^[\w.-]+/[\w.-]+$", description="owner/repo")
    labels: list[str] = Field(default_factory=lambda: ["bug", "auto-detected"])


class SlackAlertAction(BaseModel):
    """Post an alert to a Slack incoming webhook."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["slack_alert"] = "slack_alert"
    webhook_url: HttpUrl
    channel: str | None = None


class ScriptAction(BaseModel):
    """Run a local shell command."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["script"] = "script"
    command: str = Field(..., min_length=1)


class NoAction(BaseModel):
    """Report only."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["none"] = "none"
    reason: str = "Report only - no automated remediation"


RemediationAction = Annotated[
    VercelRollbackAction
    | WebhookAction
    | GithubIssueAction
    | SlackAlertAction
    | ScriptAction
    | NoAction,
    Field(discriminator="type"),
]


class SiteProfile(BaseModel):
    """Immutable description of one monitored site."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    url: str = Field(..., description="Target URL to monitor")
    description: str = ""
    critical_flows: list[CriticalFlow] = Field(..., min_length=1)
    expected_elements: list[ExpectedElement] = Field(default_factory=list)
    remediation_action: RemediationAction = Field(default_factory=NoAction)
    knowledge_base: list[str] = Field(default_factory=list)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v

    @property
    def total_flow_priority(self) -> int:
        return sum(flow.priority for flow in self.critical_flows)

    def with_url(self, url: str) -> SiteProfile:
        """Copy of this profile pointed at another deployment of the same site."""
        return SiteProfile.model_validate({**self.model_dump(mode="json"), "url": url})
