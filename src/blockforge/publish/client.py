"""GraphQL client for the remote catalog service."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

import httpx

from .errors import TaskRemoteFailure, TaskTransportFailure

LOGGER = logging.getLogger(__name__)

PUBLISH_PACKAGE_MUTATION = """
mutation PublishPackage($token: String!, $input: PublishPackageInput!) {
  publishPackage(token: $token, input: $input) {
    success
    message
    packageId
    status
  }
}
"""

IMPORT_BLOCK_MUTATION = """
mutation ImportBlock($input: ImportBlockInput!) {
  importBlock(input: $input) {
    id
    blockType
    version
  }
}
"""

MY_WORKSPACES_QUERY = """
query MyWorkspaces {
  myWorkspaces {
    id
    slug
    name
    myRole
  }
}
"""


class CatalogService(Protocol):
    """Remote operations the publish tracker and HTTP surface depend on."""

    async def publish_package(self, package_input: Mapping[str, Any]) -> dict[str, Any]:
        ...

    async def import_block(
        self, block_input: Mapping[str, Any], workspace_id: str
    ) -> dict[str, Any]:
        ...

    async def list_workspaces(self) -> list[dict[str, Any]]:
        ...


class CatalogClient:
    """Thin GraphQL client over ``httpx.AsyncClient``.

    GraphQL errors surface as :class:`TaskRemoteFailure`; network and HTTP
    failures surface as :class:`TaskTransportFailure`.
    """

    def __init__(
        self,
        api_url: str,
        api_token: str,
        *,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_url: GraphQL endpoint.
            api_token: API token used for authentication.
            timeout: Transport timeout in seconds.
            transport: Optional transport, e.g. ``httpx.MockTransport`` in tests.
        """
        self._api_url = api_url
        self._api_token = api_token
        self._http = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def publish_package(self, package_input: Mapping[str, Any]) -> dict[str, Any]:
        """Submit a package to the marketplace for review."""
        data = await self._execute(
            PUBLISH_PACKAGE_MUTATION,
            {"token": self._api_token, "input": dict(package_input)},
        )
        result = data.get("publishPackage") or {}
        if not result.get("success"):
            raise TaskRemoteFailure(result.get("message") or "Failed to publish package")
        return result

    async def import_block(
        self, block_input: Mapping[str, Any], workspace_id: str
    ) -> dict[str, Any]:
        """Import a bundled block into a workspace."""
        data = await self._execute(
            IMPORT_BLOCK_MUTATION,
            {"input": dict(block_input)},
            headers=self._workspace_headers(workspace_id),
        )
        result = data.get("importBlock")
        if not result:
            raise TaskRemoteFailure("Failed to import block to workspace")
        return result

    async def list_workspaces(self) -> list[dict[str, Any]]:
        """Return the workspaces the token can publish to."""
        data = await self._execute(
            MY_WORKSPACES_QUERY,
            {},
            headers={"Authorization": f"Bearer {self._api_token}"},
        )
        return list(data.get("myWorkspaces") or [])

    def _workspace_headers(self, workspace_id: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "X-Workspace-ID": workspace_id,
        }

    async def _execute(
        self,
        query: str,
        variables: Mapping[str, Any],
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> dict[str, Any]:
        try:
            response = await self._http.post(
                self._api_url,
                json={"query": query, "variables": dict(variables)},
                headers=dict(headers or {}),
            )
        except httpx.TimeoutException as exc:
            raise TaskTransportFailure(f"Catalog request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TaskTransportFailure(f"Catalog request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("errors"):
            error = body["errors"][0] or {}
            extensions = error.get("extensions") or {}
            raise TaskRemoteFailure(
                error.get("message") or "Catalog request failed",
                code=extensions.get("code"),
                extensions=extensions,
            )
        if response.status_code >= 400:
            raise TaskTransportFailure(
                f"Catalog responded with HTTP {response.status_code}"
            )
        if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
            raise TaskTransportFailure("Catalog returned an unexpected response")
        return body["data"]


__all__ = [
    "CatalogService",
    "CatalogClient",
    "PUBLISH_PACKAGE_MUTATION",
    "IMPORT_BLOCK_MUTATION",
    "MY_WORKSPACES_QUERY",
]
