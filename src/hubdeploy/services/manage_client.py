"""HTTP clients for the target's management API and REST application server."""

import logging
import mimetypes
from typing import Any, Dict, List, Optional

import aiofiles
import httpx

from hubdeploy.models.errors import (
    AssetUploadError,
    ManagementApiError,
    TargetUnreachableError,
)
from hubdeploy.models.ledger import AssetRecord
from hubdeploy.models.target import TargetDescriptor

DEFAULT_GROUP = "Default"

# Module document content types by extension, for files mimetypes does not know
MODULE_CONTENT_TYPES = {
    ".xqy": "application/xquery",
    ".xqe": "application/xquery",
    ".sjs": "application/vnd.marklogic-javascript",
    ".xsl": "application/xslt+xml",
    ".xslt": "application/xslt+xml",
    ".json": "application/json",
    ".xml": "application/xml",
}


def _auth(target: TargetDescriptor) -> httpx.DigestAuth:
    return httpx.DigestAuth(target.username, target.password.get_secret_value())


class ManageClient:
    """Async client for the management API on ``target.manage_port``.

    Use as an async context manager; one client per pipeline run.

    Example:
        >>> async with ManageClient(target) as client:
        ...     await client.get_server_version()
        '8.0-4'
    """

    def __init__(
        self,
        target: TargetDescriptor,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize management client.

        Args:
            target: Target connection parameters
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.logger = logging.getLogger("hubdeploy.manage_client")
        self.target = target
        self._client = httpx.AsyncClient(
            base_url=target.manage_url,
            auth=_auth(target),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "ManageClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        allow_missing: bool = False,
        **kwargs,
    ) -> Optional[httpx.Response]:
        """Send a request, mapping transport and status failures to hub errors.

        Returns:
            The response, or None for a 404 when ``allow_missing`` is set

        Raises:
            TargetUnreachableError: If the server cannot be reached
            ManagementApiError: If the server answers with an error status
        """
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TargetUnreachableError(
                f"{self.target.host}:{self.target.manage_port}: {e}"
            ) from e

        if allow_missing and response.status_code == 404:
            return None
        if response.is_error:
            raise ManagementApiError(method, url, response.status_code, response.text)
        return response

    async def get_server_version(self) -> str:
        """Return the server version string, e.g. ``"8.0-4"``."""
        response = await self._request("GET", "/manage/v2", params={"format": "json"})
        try:
            version = response.json()["local-cluster-default"]["version"]
        except (ValueError, KeyError, TypeError) as e:
            raise ManagementApiError(
                "GET", "/manage/v2", response.status_code, f"no version in response: {e}"
            ) from e
        self.logger.debug(f"Server version: {version}")
        return str(version)

    async def resource_exists(
        self, resource_type: str, name: str, params: Optional[Dict[str, str]] = None
    ) -> bool:
        """Check if ``/manage/v2/{resource_type}/{name}`` exists."""
        response = await self._request(
            "GET",
            f"/manage/v2/{resource_type}/{name}",
            allow_missing=True,
            params={"format": "json", **(params or {})},
        )
        return response is not None

    async def server_exists(self, name: str, group: str = DEFAULT_GROUP) -> bool:
        return await self.resource_exists("servers", name, params={"group-id": group})

    async def save_resource(
        self,
        resource_type: str,
        name: str,
        payload: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
    ) -> bool:
        """Create a resource, or update its properties if it already exists.

        Returns:
            True if created, False if updated
        """
        if await self.resource_exists(resource_type, name, params=params):
            await self.update_properties(resource_type, name, payload, params=params)
            return False

        await self._request("POST", f"/manage/v2/{resource_type}", params=params, json=payload)
        self.logger.info(f"Created {resource_type}/{name}")
        return True

    async def update_properties(
        self,
        resource_type: str,
        name: str,
        properties: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
    ) -> None:
        """Set properties on an existing resource; properties not given are untouched."""
        await self._request(
            "PUT",
            f"/manage/v2/{resource_type}/{name}/properties",
            params=params,
            json=properties,
        )
        self.logger.info(f"Updated {resource_type}/{name}")

    async def create_resource(
        self,
        resource_type: str,
        payload: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
    ) -> None:
        await self._request("POST", f"/manage/v2/{resource_type}", params=params, json=payload)
        self.logger.info(f"Created {resource_type} resource")

    async def delete_resource(
        self, resource_type: str, name: str, params: Optional[Dict[str, str]] = None
    ) -> bool:
        """Delete a resource; an already-absent resource is not an error.

        Returns:
            True if deleted, False if it did not exist
        """
        response = await self._request(
            "DELETE",
            f"/manage/v2/{resource_type}/{name}",
            allow_missing=True,
            params=params,
        )
        if response is None:
            self.logger.info(f"{resource_type}/{name} already absent")
            return False
        self.logger.info(f"Deleted {resource_type}/{name}")
        return True

    async def list_hosts(self) -> List[str]:
        """Return the names of all hosts in the cluster."""
        response = await self._request("GET", "/manage/v2/hosts", params={"format": "json"})
        body = response.json()
        items = body.get("host-default-list", {}).get("list-items", {}).get("list-item", [])
        return [item["nameref"] for item in items]

    async def create_rest_api(self, payload: Dict[str, Any]) -> None:
        await self._request("POST", "/v1/rest-apis", json=payload)
        self.logger.info(f"Created REST API instance {payload['rest-api']['name']}")

    async def delete_rest_api(self, name: str) -> bool:
        """Delete a REST API instance and its modules database."""
        response = await self._request(
            "DELETE",
            f"/v1/rest-apis/{name}",
            allow_missing=True,
            params={"include": "modules"},
        )
        if response is None:
            self.logger.info(f"REST API instance {name} already absent")
            return False
        self.logger.info(f"Deleted REST API instance {name}")
        return True


class RestAssetLoader:
    """Uploads module files into the application's modules database.

    Documents are written over the REST port, keyed by their root-relative
    URI (``root/ext/lib.xqy`` → ``/ext/lib.xqy``).
    """

    def __init__(
        self,
        target: TargetDescriptor,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.logger = logging.getLogger("hubdeploy.asset_loader")
        self.target = target
        self._client = httpx.AsyncClient(
            base_url=target.rest_url,
            auth=_auth(target),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "RestAssetLoader":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def load_asset(self, record: AssetRecord) -> None:
        """Upload a single asset.

        Raises:
            AssetUploadError: If the file cannot be read or the upload fails
        """
        uri = record.relative_uri
        try:
            async with aiofiles.open(record.path, "rb") as f:
                content = await f.read()
        except OSError as e:
            raise AssetUploadError(record.path, f"cannot read file: {e}") from e

        params = {
            "uri": uri,
            "database": self.target.modules_database,
            "perm:rest-reader": "read",
            "perm:rest-extension-user": "execute",
        }
        headers = {"Content-Type": _content_type(record.path.suffix)}

        try:
            response = await self._client.put(
                "/v1/documents", params=params, content=content, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AssetUploadError(record.path, str(e)) from e

        self.logger.debug(f"Loaded {record.path} as {uri}")


def _content_type(suffix: str) -> str:
    suffix = suffix.lower()
    if suffix in MODULE_CONTENT_TYPES:
        return MODULE_CONTENT_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(f"file{suffix}")
    return guessed or "application/octet-stream"
