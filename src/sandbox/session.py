"""
Sandboxed browser sessions.

A session is one isolated browser context with a single page. Dream
strategies, scoring checks and perception flows only ever touch the
page through this interface.
"""

from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

import structlog
from playwright.async_api import Error as PlaywrightError

from sre_dreamer.sandbox import scripts

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Locator, Page

    from sre_dreamer.config.settings import BrowserSettings

logger = structlog.get_logger(__name__)

ActionResolver = Callable[[str, str], Awaitable[str | None]]
"""Maps (instruction, dom_summary) to a CSS selector, or None."""

_ACTION_VERBS = re.compile(
    r"^(?:click|tap|press|select|open|choose)\s+(?:on\s+)?(?:the\s+)?",
    re.IGNORECASE,
)
_TRAILING_NOUNS = re.compile(
    r"\s+(?:button|link|tab|icon|menu item)(?:\s+(?:on|in|of)\s+.*)?$",
    re.IGNORECASE,
)
_QUOTED = re.compile(r"[\"“']([^\"”']+)[\"”']")


class SandboxError(Exception):
    """Base exception for sandbox errors."""


class SandboxProvisioningError(SandboxError):
    """Raised when an isolated session cannot be created."""


class SandboxActionError(SandboxError):
    """Raised when an interaction inside a session fails."""


def action_target(instruction: str) -> str:
    """
    Extract the visible label a natural-language action refers to.

    "Click the Add to Cart button on the first product" -> "Add to Cart"
    """
    quoted = _QUOTED.search(instruction)
    if quoted:
        return quoted.group(1).strip()
    target = _ACTION_VERBS.sub("", instruction.strip())
    target = _TRAILING_NOUNS.sub("", target)
    return target.strip(" .")


@runtime_checkable
class BrowserSession(Protocol):
    """Operations a sandboxed browsing session supports."""

    session_id: str

    @property
    def current_url(self) -> str: ...

    @property
    def replay_url(self) -> str | None: ...

    async def navigate(self, url: str) -> None: ...

    async def reload(self) -> None: ...

    async def act(self, instruction: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def is_visible(self, selector: str, timeout_ms: int | None = None) -> bool: ...

    async def count(self, selector: str) -> int: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def add_style(self, css: str) -> None: ...

    async def clear_cache(self) -> None: ...

    async def dom_summary(self, max_depth: int = 4) -> str: ...

    async def screenshot(self) -> bytes: ...

    async def close(self) -> None: ...


class PlaywrightSession:
    """BrowserSession over one Playwright browser context."""

    def __init__(
        self,
        context: BrowserContext | None,
        page: Page | None,
        settings: BrowserSettings,
        resolver: ActionResolver | None = None,
        label: str | None = None,
    ) -> None:
        self.session_id = str(uuid.uuid4())[:8]
        self._context = context
        self._page = page
        self._settings = settings
        self._resolver = resolver
        self._closed = False
        self._log = logger.bind(component="sandbox_session", session=self.session_id, label=label)

    @property
    def page(self) -> Page:
        if self._page is None or self._closed:
            raise SandboxError("Session is closed")
        return self._page

    @property
    def current_url(self) -> str:
        if self._page is None:
            return ""
        return self._page.url

    @property
    def replay_url(self) -> str | None:
        # Local browsers keep no replay
        return None

    async def navigate(self, url: str) -> None:
        try:
            await self.page.goto(
                url,
                wait_until="networkidle",
                timeout=self._settings.navigation_timeout_ms,
            )
        except PlaywrightError as e:
            raise SandboxActionError(f"Navigation to {url} failed: {e}") from e

    async def reload(self) -> None:
        try:
            await self.page.reload(
                wait_until="networkidle",
                timeout=self._settings.navigation_timeout_ms,
            )
        except PlaywrightError as e:
            raise SandboxActionError(f"Reload failed: {e}") from e

    async def _resolve(self, instruction: str) -> Locator | None:
        page = self.page
        target = action_target(instruction)
        if target:
            for candidate in (
                page.get_by_role("button", name=target),
                page.get_by_role("link", name=target),
                page.get_by_text(target),
            ):
                if await candidate.count() > 0:
                    return candidate.first

        if self._resolver is not None:
            selector = await self._resolver(instruction, await self.dom_summary())
            if selector:
                locator = page.locator(selector)
                if await locator.count() > 0:
                    self._log.debug("Action resolved by reasoning", selector=selector)
                    return locator.first
        return None

    async def act(self, instruction: str) -> None:
        """Perform a natural-language action such as "Click the login button"."""
        try:
            locator = await self._resolve(instruction)
        except PlaywrightError as e:
            raise SandboxActionError(f"Could not resolve action target: {e}") from e
        if locator is None:
            raise SandboxActionError(f"No element matches action: {instruction}")
        try:
            await locator.click(timeout=self._settings.action_timeout_ms)
        except PlaywrightError as e:
            raise SandboxActionError(str(e)) from e

    async def click(self, selector: str) -> None:
        try:
            await self.page.click(selector, timeout=self._settings.action_timeout_ms)
        except PlaywrightError as e:
            raise SandboxActionError(str(e)) from e

    async def is_visible(self, selector: str, timeout_ms: int | None = None) -> bool:
        locator = self.page.locator(selector).first
        try:
            await locator.wait_for(
                state="visible",
                timeout=timeout_ms or self._settings.verification_timeout_ms,
            )
        except PlaywrightError:
            return False
        return True

    async def count(self, selector: str) -> int:
        try:
            return await self.page.locator(selector).count()
        except PlaywrightError as e:
            raise SandboxActionError(f"Invalid selector {selector!r}: {e}") from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return await self.page.evaluate(script, arg)
        except PlaywrightError as e:
            raise SandboxActionError(f"Script evaluation failed: {e}") from e

    async def add_style(self, css: str) -> None:
        try:
            await self.page.add_style_tag(content=css)
        except PlaywrightError as e:
            raise SandboxActionError(f"Style injection failed: {e}") from e

    async def clear_cache(self) -> None:
        if self._context is not None:
            await self._context.clear_cookies()
        await self.evaluate(scripts.CLEAR_CACHES)

    async def dom_summary(self, max_depth: int = 4) -> str:
        try:
            return await self.evaluate(scripts.DOM_SNAPSHOT, max_depth) or ""
        except SandboxActionError:
            return "(DOM snapshot unavailable)"

    async def screenshot(self) -> bytes:
        try:
            return await self.page.screenshot(type="png")
        except PlaywrightError as e:
            raise SandboxActionError(f"Screenshot failed: {e}") from e

    async def close(self) -> None:
        """Close the context; safe to call repeatedly or on a partial session."""
        if self._closed:
            return
        self._closed = True
        if self._context is None:
            return
        try:
            await self._context.close()
        except PlaywrightError as e:
            self._log.debug("Error closing session", error=str(e))
