"""
Site profiles: what "healthy" means for a monitored website.

Provides:
- Pydantic profile models with typed verification and action variants
- The built-in ShopDemo profile and a generic profile factory
- A YAML loader with environment interpolation
"""

from sre_dreamer.profiles.loader import ProfileLoadError, load_profile, parse_profile
from sre_dreamer.profiles.models import (
    ActionType,
    CriticalFlow,
    ExpectedElement,
    GithubIssueAction,
    NetworkVerification,
    NoAction,
    RemediationAction,
    ScriptAction,
    SelectorVerification,
    SiteProfile,
    SlackAlertAction,
    UrlChangeVerification,
    VercelRollbackAction,
    VerificationType,
    VisualVerification,
    WebhookAction,
)
from sre_dreamer.profiles.presets import create_generic_profile, shopdemo_profile

__all__ = [
    # Models
    "CriticalFlow",
    "ExpectedElement",
    "SiteProfile",
    # Verification
    "NetworkVerification",
    "SelectorVerification",
    "UrlChangeVerification",
    "VerificationType",
    "VisualVerification",
    # Actions
    "ActionType",
    "GithubIssueAction",
    "NoAction",
    "RemediationAction",
    "ScriptAction",
    "SlackAlertAction",
    "VercelRollbackAction",
    "WebhookAction",
    # Presets
    "create_generic_profile",
    "shopdemo_profile",
    # Loading
    "ProfileLoadError",
    "load_profile",
    "parse_profile",
]
