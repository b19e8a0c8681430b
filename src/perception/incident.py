"""Turns a failed perception pass into an incident record."""

from __future__ import annotations

import secrets
import string
import time

from sre_dreamer.core.models import Incident, IncidentType, Severity
from sre_dreamer.perception.detector import PerceptionResult
from sre_dreamer.profiles.models import SiteProfile

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_incident_id() -> str:
    """``inc_<epoch ms>_<6 random chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"inc_{int(time.time() * 1000)}_{suffix}"


def build_incident_from_perception(
    result: PerceptionResult,
    profile: SiteProfile,
) -> Incident | None:
    """
    Build the incident for a perception pass, or None when it was healthy.

    Any occlusion makes it a critical visual occlusion. Otherwise failed
    flows are unclickable elements, critical when at least half of all
    critical flows failed and high below that.
    """
    if result.healthy:
        return None

    failed = result.failed_flows
    if not failed:
        return None

    if any(r.occlusion_detected for r in failed):
        incident_type = IncidentType.VISUAL_OCCLUSION
        severity = Severity.CRITICAL
    else:
        incident_type = IncidentType.ELEMENT_UNCLICKABLE
        total = len(profile.critical_flows)
        severity = Severity.CRITICAL if len(failed) >= total / 2 else Severity.HIGH

    details = "; ".join(
        f'Flow "{r.flow.name}" failed: {r.error_message or "verification failed"}' for r in failed
    )
    blocking = next((r.blocking_element for r in failed if r.blocking_element), None)
    snapshot = next((r.dom_snapshot for r in failed if r.dom_snapshot), None)

    return Incident(
        id=generate_incident_id(),
        type=incident_type,
        severity=severity,
        description=f"Visual health check failed for {profile.name}: {details}",
        url=result.url,
        timestamp=result.timestamp,
        dom_snapshot=result.dom_snapshot or snapshot,
        error_message=failed[0].error_message,
        blocking_element=blocking,
    )
