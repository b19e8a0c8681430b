"""
YAML loader for site profiles.

Supports ``${env:NAME}`` and ``${env:NAME:-default}`` interpolation so that
secrets and deployment identifiers stay out of profile files.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from sre_dreamer.profiles.models import SiteProfile

logger = structlog.get_logger(__name__)

_ENV_PATTERN = re.compile(r"\$\{env:([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class ProfileLoadError(Exception):
    """Raised when a profile file cannot be read or validated."""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        line: int | None = None,
    ) -> None:
        self.source = source
        self.line = line
        location = ""
        if source:
            location = f" ({source}"
            if line is not None:
                location += f", line {line}"
            location += ")"
        super().__init__(f"{message}{location}")


def _interpolate(value: Any, source: str | None) -> Any:
    """Resolve env references in every string of a parsed YAML tree."""
    if isinstance(value, str):

        def replace(match: re.Match[str]) -> str:
            name, default = match.group(1), match.group(2)
            resolved = os.environ.get(name)
            if resolved is None:
                if default is None:
                    raise ProfileLoadError(
                        f"Environment variable {name} is not set", source=source
                    )
                return default
            return resolved

        return _ENV_PATTERN.sub(replace, value)
    if isinstance(value, dict):
        return {k: _interpolate(v, source) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate(v, source) for v in value]
    return value


def parse_profile(content: str, source: str | None = None) -> SiteProfile:
    """Parse a profile from YAML text."""
    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        raise ProfileLoadError(
            f"Invalid YAML: {e}",
            source=source,
            line=mark.line + 1 if mark else None,
        ) from e

    if not isinstance(raw, dict):
        raise ProfileLoadError("Profile root must be a mapping", source=source)

    resolved = _interpolate(raw, source)

    try:
        profile = SiteProfile.model_validate(resolved)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ProfileLoadError(f"Invalid profile: {errors}", source=source) from e

    logger.info(
        "Loaded site profile",
        name=profile.name,
        url=profile.url,
        flows=len(profile.critical_flows),
        action=profile.remediation_action.type,
    )
    return profile


def load_profile(path: str | Path) -> SiteProfile:
    """Load and validate a profile from a YAML file."""
    file_path = Path(path)
    if not file_path.is_file():
        raise ProfileLoadError("Profile file not found", source=str(file_path))
    return parse_profile(file_path.read_text(encoding="utf-8"), source=str(file_path))
