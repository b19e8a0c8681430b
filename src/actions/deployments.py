"""
Vercel deployment control API client.

Lists recent deployments, reads deployment status and triggers
production rollbacks. Rollbacks are never retried automatically.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from sre_dreamer.config.settings import VercelSettings

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
READY_STATE = "READY"


class DeploymentAPIError(Exception):
    """Raised when the deployment API fails or is not configured."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Deployment:
    """One deployment as listed by the API."""

    id: str
    url: str
    state: str
    created: int | None = None

    @property
    def is_ready(self) -> bool:
        return self.state == READY_STATE

    @property
    def browsable_url(self) -> str:
        if self.url.startswith(("http://", "https://")):
            return self.url
        return f"https://{self.url}"


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of a rollback request."""

    success: bool
    deployment_id: str
    message: str
    duration_ms: int


class DeploymentClient:
    """
    Async client for the Vercel REST API.

    Usage:
        async with DeploymentClient(settings.vercel) as client:
            deployments = await client.list_recent_deployments(limit=5)
    """

    def __init__(
        self,
        settings: VercelSettings,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._log = logger.bind(component="deployment_client")

    @property
    def settings(self) -> VercelSettings:
        return self._settings

    @property
    def is_configured(self) -> bool:
        return self._settings.rollback_configured

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> DeploymentClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def _params(self, team_id: str | None = None, **extra: Any) -> dict[str, Any]:
        params = {k: v for k, v in extra.items() if v is not None}
        team = team_id or self._settings.team_id
        if team:
            params["teamId"] = team
        return params

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.token.get_secret_value()}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any],
    ) -> httpx.Response:
        if not self.is_configured:
            raise DeploymentAPIError("Vercel token and project id are not configured")

        client = await self._get_client()
        url = f"{self._settings.api_base_url.rstrip('/')}{path}"
        try:
            response = await client.request(
                method,
                url,
                params=params,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise DeploymentAPIError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise DeploymentAPIError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def list_recent_deployments(self, limit: int = 5) -> list[Deployment]:
        """Most recent deployments of the configured project, newest first."""
        path = "/v6/deployments"
        response = await self._request(
            "GET",
            path,
            self._params(projectId=self._settings.project_id, limit=limit),
        )
        try:
            return [
                Deployment(
                    id=d["uid"],
                    url=d.get("url", ""),
                    state=d.get("readyState") or d.get("state", ""),
                    created=d.get("created"),
                )
                for d in response.json().get("deployments", [])
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise DeploymentAPIError(f"GET {path} returned a malformed listing: {e!r}") from e

    async def get_deployment_status(self, deployment_id: str) -> tuple[str, str | None]:
        """Ready state and URL of one deployment."""
        path = f"/v13/deployments/{deployment_id}"
        response = await self._request("GET", path, self._params())
        try:
            data = response.json()
            return data.get("readyState", ""), data.get("url")
        except (ValueError, AttributeError) as e:
            raise DeploymentAPIError(f"GET {path} returned a malformed body: {e!r}") from e

    async def rollback_to(
        self,
        deployment_id: str,
        project_id: str | None = None,
        team_id: str | None = None,
    ) -> RollbackResult:
        """
        Roll production back to a deployment.

        Failures are reported in the result, not raised.
        """
        start = time.monotonic()
        project = project_id or self._settings.project_id
        try:
            await self._request(
                "POST",
                f"/v9/projects/{project}/rollback/{deployment_id}",
                self._params(team_id=team_id),
            )
        except DeploymentAPIError as e:
            self._log.error("Rollback failed", deployment_id=deployment_id, error=str(e))
            return RollbackResult(
                success=False,
                deployment_id=deployment_id,
                message=f"Rollback failed: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        self._log.info("Rollback triggered", deployment_id=deployment_id, project_id=project)
        return RollbackResult(
            success=True,
            deployment_id=deployment_id,
            message=f"Successfully triggered rollback to deployment {deployment_id}",
            duration_ms=int((time.monotonic() - start) * 1000),
        )
