"""
Built-in site profiles and the generic profile factory.
"""

from __future__ import annotations

import os
from urllib.parse import urlparse

from sre_dreamer.profiles.models import (
    CriticalFlow,
    ExpectedElement,
    NoAction,
    RemediationAction,
    SelectorVerification,
    SiteProfile,
    VercelRollbackAction,
    VisualVerification,
)

SHOPDEMO_KNOWLEDGE = [
    "CSS stacking contexts are formed by elements with opacity < 1, transform, "
    "filter, will-change, or position: fixed/sticky.",
    "A z-index value only matters within its stacking context. z-index: 9999 inside "
    "a child context can still be below z-index: 1 in a parent context.",
    "Invisible overlays with pointer-events: auto will intercept all clicks even if "
    "they have no visible content.",
    "Common culprits: modal backdrops that weren't removed, toast notification "
    "containers, cookie consent overlays.",
    "Dynamic components often create new stacking contexts unintentionally via "
    "transform or opacity transitions.",
]


def shopdemo_profile(url: str | None = None) -> SiteProfile:
    """
    Profile for the ShopDemo e-commerce target.

    The URL and rollback identifiers are read from the environment when
    not given, so the same profile works against local and hosted builds.
    """
    return SiteProfile(
        name="ShopDemo",
        url=url or os.environ.get("TARGET_URL", "http://localhost:3000"),
        description=(
            "E-commerce demo application. Users browse products and click Login to "
            "authenticate. Known vulnerability: CSS z-index ghost overlays that block "
            "all pointer events."
        ),
        critical_flows=[
            CriticalFlow(
                name="User Login",
                action="Click the login button",
                verification=SelectorVerification(
                    selector='[data-testid="login-success"]',
                ),
                priority=10,
            ),
            CriticalFlow(
                name="Add to Cart",
                action="Click the Add to Cart button on the first product",
                verification=VisualVerification(
                    expectation="The button should respond to the click with visual feedback",
                ),
                priority=7,
            ),
            CriticalFlow(
                name="Navigation",
                action="Click the Products navigation link",
                verification=VisualVerification(
                    expectation="The page should scroll or navigate to a products section",
                ),
                priority=5,
            ),
        ],
        expected_elements=[
            ExpectedElement(description="Header with site name", selector="header h1"),
            ExpectedElement(description="Navigation bar", selector="nav"),
            ExpectedElement(description="Login button", selector='[data-testid="login-btn"]'),
            ExpectedElement(description="Product cards", selector="main"),
            ExpectedElement(description="Footer", selector="footer"),
        ],
        remediation_action=VercelRollbackAction(
            project_id=os.environ.get("VERCEL_PROJECT_ID", ""),
            good_deployment_id=os.environ.get("VERCEL_GOOD_DEPLOYMENT_ID", ""),
            team_id=os.environ.get("VERCEL_TEAM_ID") or None,
        ),
        knowledge_base=list(SHOPDEMO_KNOWLEDGE),
    )


def create_generic_profile(
    url: str,
    flows: list[dict[str, str]],
    name: str | None = None,
    description: str | None = None,
    remediation_action: RemediationAction | None = None,
) -> SiteProfile:
    """
    Point the agent at any URL with minimal configuration.

    Each flow is a mapping with ``name``, ``action`` and ``expectation``.
    Flows are verified visually, and earlier flows are weighted higher
    (10, 9, 8, ...; never below 1).

    Args:
        url: Target URL
        flows: Flow definitions in priority order
        name: Profile name (defaults to the URL host)
        description: Site description for the reasoning layer
        remediation_action: Production action (defaults to report only)

    Returns:
        A validated SiteProfile
    """
    return SiteProfile(
        name=name or urlparse(url).hostname or url,
        url=url,
        description=description or f"Website at {url}. Monitoring critical user flows.",
        critical_flows=[
            CriticalFlow(
                name=flow["name"],
                action=flow["action"],
                verification=VisualVerification(expectation=flow["expectation"]),
                priority=max(1, 10 - index),
            )
            for index, flow in enumerate(flows)
        ],
        remediation_action=remediation_action
        or NoAction(reason="Generic profile - report only"),
    )
