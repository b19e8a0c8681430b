"""
Sandboxed browsing capability.

Provides:
- BrowserSession: the operations dreams, scoring and perception rely on
- PlaywrightSession: a session over one isolated Playwright browser context
- SandboxProvider: per-dream session provisioning with guaranteed teardown
"""

from sre_dreamer.sandbox.provider import SandboxProvider
from sre_dreamer.sandbox.session import (
    ActionResolver,
    BrowserSession,
    PlaywrightSession,
    SandboxActionError,
    SandboxError,
    SandboxProvisioningError,
    action_target,
)

__all__ = [
    "ActionResolver",
    "BrowserSession",
    "PlaywrightSession",
    "SandboxActionError",
    "SandboxError",
    "SandboxProvider",
    "SandboxProvisioningError",
    "action_target",
]
