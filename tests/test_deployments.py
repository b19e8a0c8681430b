"""Tests for the deployment control API client."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest
from pydantic import SecretStr

from sre_dreamer.actions.deployments import DeploymentAPIError, DeploymentClient
from sre_dreamer.config.settings import VercelSettings

Handler = Callable[[httpx.Request], httpx.Response]


def configured(**overrides: object) -> VercelSettings:
    values = {"token": SecretStr("vt-secret"), "project_id": "prj_1", "team_id": "team_1"}
    values.update(overrides)
    return VercelSettings(**values)


def make_client(handler: Handler, settings: VercelSettings | None = None) -> DeploymentClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DeploymentClient(settings or configured(), http_client=http)


class TestListRecentDeployments:
    """Tests for listing deployments."""

    @pytest.mark.asyncio
    async def test_lists_deployments(self) -> None:
        """Test the query parameters and the parsed records."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "deployments": [
                        {"uid": "dpl_2", "url": "two.vercel.app", "readyState": "READY", "created": 2},
                        {"uid": "dpl_1", "url": "one.vercel.app", "state": "ERROR"},
                    ]
                },
            )

        client = make_client(handler)
        deployments = await client.list_recent_deployments(limit=3)

        request = seen[0]
        assert request.url.path == "/v6/deployments"
        assert request.url.params["projectId"] == "prj_1"
        assert request.url.params["limit"] == "3"
        assert request.url.params["teamId"] == "team_1"
        assert request.headers["Authorization"] == "Bearer vt-secret"
        assert [d.id for d in deployments] == ["dpl_2", "dpl_1"]
        assert deployments[0].is_ready
        assert not deployments[1].is_ready
        assert deployments[0].browsable_url == "https://two.vercel.app"

    @pytest.mark.asyncio
    async def test_not_configured(self) -> None:
        """Test missing credentials fail before any request is made."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = make_client(handler, VercelSettings())

        assert not client.is_configured
        with pytest.raises(DeploymentAPIError, match="not configured"):
            await client.list_recent_deployments()

    @pytest.mark.asyncio
    async def test_error_status(self) -> None:
        client = make_client(lambda r: httpx.Response(403, text="forbidden"))

        with pytest.raises(DeploymentAPIError) as exc_info:
            await client.list_recent_deployments()

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(DeploymentAPIError, match="unreachable"):
            await make_client(handler).list_recent_deployments()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"deployments": [{"url": "x.vercel.app"}]}),
            httpx.Response(200, text="<html>maintenance</html>"),
            httpx.Response(200, json=["dpl_1"]),
        ],
    )
    async def test_malformed_listing(self, response: httpx.Response) -> None:
        """Test unparseable listings surface as API errors."""
        client = make_client(lambda r: response)

        with pytest.raises(DeploymentAPIError, match="malformed listing"):
            await client.list_recent_deployments()


class TestDeploymentStatus:
    """Tests for reading one deployment."""

    @pytest.mark.asyncio
    async def test_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v13/deployments/dpl_9"
            return httpx.Response(200, json={"readyState": "READY", "url": "nine.vercel.app"})

        state, url = await make_client(handler).get_deployment_status("dpl_9")

        assert state == "READY"
        assert url == "nine.vercel.app"


class TestRollback:
    """Tests for production rollback."""

    @pytest.mark.asyncio
    async def test_rollback_triggered(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={})

        result = await make_client(handler).rollback_to("dpl_good")

        assert result.success
        assert result.deployment_id == "dpl_good"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/v9/projects/prj_1/rollback/dpl_good"
        assert seen[0].url.params["teamId"] == "team_1"

    @pytest.mark.asyncio
    async def test_rollback_failure_reported(self) -> None:
        """Test failures come back in the result and are not retried."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500, text="internal")

        result = await make_client(handler).rollback_to("dpl_good")

        assert not result.success
        assert result.message.startswith("Rollback failed:")
        assert calls == 1


class TestLifecycle:
    """Tests for HTTP client ownership."""

    @pytest.mark.asyncio
    async def test_injected_client_kept_open(self) -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with DeploymentClient(configured(), http_client=http):
            pass

        assert not http.is_closed
        await http.aclose()
