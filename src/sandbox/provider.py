"""
Provisioning of isolated sandboxed browser sessions.

Provides:
- One fresh browser context per dream, never shared or reused
- Guaranteed teardown on every exit path
- Local Chromium or a remote CDP endpoint as the backing browser
- Provisioning statistics
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any, AsyncIterator

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from sre_dreamer.sandbox.session import (
    ActionResolver,
    BrowserSession,
    PlaywrightSession,
    SandboxError,
    SandboxProvisioningError,
)

if TYPE_CHECKING:
    from playwright.async_api import Browser, Playwright

    from sre_dreamer.config.settings import BrowserSettings

logger = structlog.get_logger(__name__)


class SandboxProvider:
    """
    Factory of isolated browser sessions backed by Playwright.

    Usage:
        async with SandboxProvider(settings) as provider:
            async with provider.session("css_patch_targeted") as session:
                await session.navigate("https://example.com")
    """

    def __init__(
        self,
        settings: BrowserSettings,
        resolver: ActionResolver | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            settings: Browser launch and timeout settings
            resolver: Optional fallback that maps natural-language actions to selectors
        """
        self._settings = settings
        self._resolver = resolver
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._running = False
        self._active: dict[str, BrowserSession] = {}

        self._log = logger.bind(component="sandbox_provider")

        self._stats = {
            "total_provisioned": 0,
            "total_failed": 0,
            "total_released": 0,
        }

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def statistics(self) -> dict[str, Any]:
        return {**self._stats, "active": self.active_count}

    async def start(self) -> None:
        """Launch or connect to the backing browser."""
        if self._running:
            return

        self._playwright = await async_playwright().start()
        try:
            if self._settings.cdp_endpoint:
                self._browser = await self._playwright.chromium.connect_over_cdp(
                    self._settings.cdp_endpoint
                )
            else:
                self._browser = await self._playwright.chromium.launch(
                    headless=self._settings.headless
                )
        except PlaywrightError as e:
            await self._playwright.stop()
            self._playwright = None
            raise SandboxProvisioningError(f"Could not start browser: {e}") from e

        self._running = True
        self._log.info(
            "Sandbox provider started",
            remote=bool(self._settings.cdp_endpoint),
            headless=self._settings.headless,
        )

    async def stop(self) -> None:
        """Close every remaining session and the browser."""
        if not self._running:
            return
        self._running = False

        for session in list(self._active.values()):
            await session.close()
        self._active.clear()

        if self._browser is not None:
            with contextlib.suppress(PlaywrightError):
                await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

        self._log.info("Sandbox provider stopped", stats=self._stats)

    @contextlib.asynccontextmanager
    async def session(self, label: str | None = None) -> AsyncIterator[BrowserSession]:
        """
        Provision an isolated session, released on every exit path.

        Args:
            label: Name used in logs (usually the strategy name)

        Yields:
            A fresh BrowserSession

        Raises:
            SandboxProvisioningError: If the context cannot be created
        """
        session = await self._provision(label)
        try:
            yield session
        finally:
            await self._release(session)

    async def _provision(self, label: str | None) -> PlaywrightSession:
        if not self._running or self._browser is None:
            raise SandboxError("Sandbox provider is not started")

        context = None
        try:
            context = await self._browser.new_context(
                viewport={
                    "width": self._settings.viewport_width,
                    "height": self._settings.viewport_height,
                },
            )
            page = await context.new_page()
        except PlaywrightError as e:
            self._stats["total_failed"] += 1
            # Partially created contexts are closed before reporting failure
            partial = PlaywrightSession(context, None, self._settings, label=label)
            await partial.close()
            self._log.error("Failed to provision session", label=label, error=str(e))
            raise SandboxProvisioningError(f"Could not provision session: {e}") from e

        session = PlaywrightSession(
            context, page, self._settings, resolver=self._resolver, label=label
        )
        self._active[session.session_id] = session
        self._stats["total_provisioned"] += 1
        self._log.debug("Session provisioned", session=session.session_id, label=label)
        return session

    async def _release(self, session: BrowserSession) -> None:
        self._active.pop(session.session_id, None)
        await session.close()
        self._stats["total_released"] += 1
        self._log.debug("Session released", session=session.session_id)

    async def __aenter__(self) -> SandboxProvider:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop()
