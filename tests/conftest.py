"""Pytest fixtures for SRE Dreamer tests."""

from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator, Callable

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from sre_dreamer.core.models import (
    Diagnosis,
    Incident,
    IncidentType,
    ReachabilityDetails,
    ReachabilityMode,
    SafetyDetails,
    ScoreBreakdown,
    ScoreDetails,
    Severity,
    VisualDetails,
    VisualMode,
)
from sre_dreamer.profiles.models import (
    CriticalFlow,
    ExpectedElement,
    NoAction,
    SelectorVerification,
    SiteProfile,
    VisualVerification,
)
from sre_dreamer.sandbox import scripts
from sre_dreamer.sandbox.session import SandboxActionError
from sre_dreamer.scoring.evaluator import compute_score


class FakeRedis:
    """In-memory stand-in for the subset of the async Redis API the store uses."""

    def __init__(self, reachable: bool = True) -> None:
        self.reachable = reachable
        self.closed = False
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        if not self.reachable:
            raise RedisConnectionError("Connection refused")
        return True

    async def aclose(self) -> None:
        self.closed = True

    async def exists(self, *keys: str) -> int:
        stores = (self.strings, self.hashes, self.lists, self.zsets)
        return sum(1 for key in keys if any(key in store for store in stores))

    async def set(self, key: str, value: Any, nx: bool = False) -> bool | None:
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        return True

    async def get(self, key: str) -> str | None:
        return self.strings.get(key)

    async def hset(self, key: str, mapping: dict[str, Any]) -> int:
        fields = self.hashes.setdefault(key, {})
        added = sum(1 for name in mapping if name not in fields)
        fields.update({name: str(value) for name, value in mapping.items()})
        return added

    async def hget(self, key: str, name: str) -> str | None:
        return self.hashes.get(key, {}).get(name)

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def hincrby(self, key: str, name: str, amount: int = 1) -> int:
        fields = self.hashes.setdefault(key, {})
        value = int(fields.get(name, "0")) + amount
        fields[name] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    async def rpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        items.extend(values)
        return len(items)

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start : end + 1]

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        members = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        members.update(mapping)
        return added

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        members = sorted(
            self.zsets.get(key, {}).items(),
            key=lambda item: (item[1], item[0]),
            reverse=True,
        )
        names = [name for name, _ in members]
        return names[start:] if end == -1 else names[start : end + 1]

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))


DEFAULT_EVALUATIONS: dict[str, Any] = {
    scripts.SAFETY_SIGNALS: [],
    scripts.STRUCTURE_CHECKS: {"hasBody": True, "hasContent": True, "hasHeading": True},
    scripts.HIT_TEST_INTERACTIVES: {"checked": 0, "reachable": 0},
    scripts.REMOVE_ELEMENT: True,
    scripts.BLOCKING_ELEMENT: None,
    scripts.PAGE_STATE: {"title": "Test"},
    scripts.NEUTRALIZE_OVERLAYS: 0,
    scripts.CLEAR_CACHES: None,
}


class FakeSession:
    """
    Scriptable BrowserSession.

    ``act_errors`` maps an instruction to the exception its action raises,
    ``visible`` and ``counts`` answer selector queries and ``evaluations``
    maps a page script to its result (or to an exception to raise).
    """

    def __init__(
        self,
        label: str | None = None,
        url: str = "https://shop.example.com",
        act_errors: dict[str, Exception] | None = None,
        visible: set[str] | None = None,
        counts: dict[str, int] | None = None,
        evaluations: dict[str, Any] | None = None,
        style_error: Exception | None = None,
    ) -> None:
        self.session_id = f"fake-{label or 'session'}"
        self.label = label
        self._url = url
        self.act_errors = act_errors or {}
        self.visible = visible or set()
        self.counts = counts or {}
        self.evaluations = {**DEFAULT_EVALUATIONS, **(evaluations or {})}
        self.style_error = style_error
        self.navigations: list[str] = []
        self.actions: list[str] = []
        self.styles: list[str] = []
        self.evaluated: list[tuple[str, Any]] = []
        self.reloads = 0
        self.cache_cleared = False
        self.closed = False

    @property
    def current_url(self) -> str:
        return self._url

    @property
    def replay_url(self) -> str | None:
        return None

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)
        self._url = url

    async def reload(self) -> None:
        self.reloads += 1

    async def act(self, instruction: str) -> None:
        self.actions.append(instruction)
        error = self.act_errors.get(instruction)
        if error is not None:
            raise error

    async def click(self, selector: str) -> None:
        await self.act(selector)

    async def is_visible(self, selector: str, timeout_ms: int | None = None) -> bool:
        return selector in self.visible

    async def count(self, selector: str) -> int:
        return self.counts.get(selector, 1 if selector in self.visible else 0)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append((script, arg))
        result = self.evaluations.get(script)
        if isinstance(result, Exception):
            raise result
        return result

    async def add_style(self, css: str) -> None:
        if self.style_error is not None:
            raise self.style_error
        self.styles.append(css)

    async def clear_cache(self) -> None:
        self.cache_cleared = True

    async def dom_summary(self, max_depth: int = 4) -> str:
        return "<body>\n  <main>"

    async def screenshot(self) -> bytes:
        raise SandboxActionError("Screenshots are not available in tests")

    async def close(self) -> None:
        self.closed = True


SessionFactory = Callable[[str | None], FakeSession]


class FakeProvider:
    """SandboxProvider stand-in that hands out FakeSessions."""

    def __init__(self, factory: SessionFactory | None = None) -> None:
        self._factory = factory or (lambda label: FakeSession(label=label))
        self.sessions: list[FakeSession] = []
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    @contextlib.asynccontextmanager
    async def session(self, label: str | None = None) -> AsyncIterator[FakeSession]:
        session = self._factory(label)
        self.sessions.append(session)
        try:
            yield session
        finally:
            await session.close()


def make_breakdown(
    reachability: float = 1.0,
    visual_integrity: float = 1.0,
    safety: float = 1.0,
    latency: float = 1.0,
) -> ScoreBreakdown:
    """A fresh score breakdown with consistent aggregate."""
    return ScoreBreakdown(
        reachability=reachability,
        visual_integrity=visual_integrity,
        safety=safety,
        latency=latency,
        aggregate=compute_score(reachability, visual_integrity, safety, latency),
        details=ScoreDetails(
            reachability=ReachabilityDetails(mode=ReachabilityMode.HIT_TEST),
            visual=VisualDetails(mode=VisualMode.GENERIC_STRUCTURE),
            safety=SafetyDetails(),
        ),
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def login_flow() -> CriticalFlow:
    return CriticalFlow(
        name="User Login",
        action="Click the login button",
        verification=SelectorVerification(selector='[data-testid="login-success"]'),
        priority=10,
    )


@pytest.fixture
def cart_flow() -> CriticalFlow:
    return CriticalFlow(
        name="Add to Cart",
        action="Click the Add to Cart button",
        verification=VisualVerification(expectation="The cart counter increments"),
        priority=5,
    )


@pytest.fixture
def site_profile(login_flow: CriticalFlow, cart_flow: CriticalFlow) -> SiteProfile:
    """Two-flow profile that only reports."""
    return SiteProfile(
        name="ShopTest",
        url="https://shop.example.com",
        description="Test storefront",
        critical_flows=[login_flow, cart_flow],
        expected_elements=[
            ExpectedElement(description="Navigation bar", selector="nav"),
            ExpectedElement(description="Footer", selector="footer"),
        ],
        remediation_action=NoAction(reason="testing"),
        knowledge_base=["Invisible overlays intercept clicks."],
    )


@pytest.fixture
def incident() -> Incident:
    return Incident(
        id="inc_1700000000000_abc123",
        type=IncidentType.VISUAL_OCCLUSION,
        severity=Severity.CRITICAL,
        description='Visual health check failed for ShopTest: Flow "User Login" failed',
        url="https://shop.example.com",
        error_message="element click intercepted",
        blocking_element='[data-testid="ghost-overlay"]',
    )


@pytest.fixture
def diagnosis() -> Diagnosis:
    return Diagnosis(
        root_cause="Transparent overlay intercepts pointer events",
        confidence=0.9,
        category="css_overlay",
        suggested_strategies=("css_patch_targeted", "js_injection"),
        reasoning="A fixed element with pointer-events: auto covers the page",
    )
