"""
Agent configuration loaded from YAML, ``.env`` and the environment.
"""

from sre_dreamer.config.settings import (
    AgentSettings,
    BrowserSettings,
    DreamSettings,
    MemorySettings,
    VercelSettings,
    load_agent_config,
)

__all__ = [
    "AgentSettings",
    "BrowserSettings",
    "DreamSettings",
    "MemorySettings",
    "VercelSettings",
    "load_agent_config",
]
