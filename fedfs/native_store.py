"""
Native repository collaborator.

NativeStore is the narrow interface the connector consumes from the
repository that owns non-federated resources. RepositoryClient implements it
over the repository's JSON REST API:

  GET    /metadata{id}    -> {"id", "kind", "size", "relations", "children"}
  GET    /content{id}     -> raw bytes (streamed)
  PUT    /content{id}     <- raw bytes (streamed), -> {"id"}
  PUT    /containers{id}  -> {"id"}
  POST   /relations{id}   <- {"predicate", "object"}
  DELETE /resources{id}

Resource ids are repository paths ("/copy-1/ds1").
"""

import logging
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from .errors import DestinationConflict, FederationError, IOFailure, NotFound
from .models import EXTERNAL_CONTENT_PREDICATE, ByteSource, NativeMetadata

log = logging.getLogger(__name__)


class NativeStore(Protocol):
    """Operations consumed from the native repository."""

    async def native_stat(self, id: str) -> NativeMetadata:
        ...

    async def native_read(self, id: str) -> ByteSource:
        ...

    async def native_write(self, id: str, source: ByteSource) -> str:
        ...

    async def native_create_container(self, path: str) -> str:
        ...

    async def native_link_external_content(self, id: str, uri: str) -> None:
        ...

    async def native_delete(self, id: str) -> None:
        ...


def _quote_id(id: str) -> str:
    return quote("/" + id.lstrip("/"))


def metadata_from_json(data: dict) -> NativeMetadata:
    return NativeMetadata(
        id=data["id"],
        is_container=data.get("kind") == "container",
        size=int(data.get("size") or 0),
        relations=tuple((str(p), str(o)) for p, o in data.get("relations", [])),
        children=tuple(data.get("children", [])),
    )


class RepositoryClient:
    """Async HTTP client for the native repository's REST API."""

    def __init__(self, api_url: str, token: str = "", transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url.rstrip("/")
        self.token = token

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url, timeout=30.0, transport=self._transport,
            )
        return self._client

    def _headers(self) -> dict:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    @staticmethod
    def _raise_for_status(response: httpx.Response, id: str) -> None:
        code = response.status_code
        if code < 400:
            return
        if code == 404:
            raise NotFound(f"No such repository resource: {id}", path=id)
        if code == 409:
            raise DestinationConflict(f"Repository resource already exists: {id}", path=id)
        if code >= 500:
            raise IOFailure(f"Repository error {code} for {id}", path=id)
        error = FederationError(f"Repository rejected request for {id}: HTTP {code}", path=id)
        error.status = code
        raise error

    async def _request(self, method: str, url: str, id: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TransportError as e:
            raise IOFailure(f"Repository unreachable ({method} {id}): {e}", path=id) from e
        self._raise_for_status(response, id)
        return response

    async def native_stat(self, id: str) -> NativeMetadata:
        response = await self._request("GET", f"/metadata{_quote_id(id)}", id)
        return metadata_from_json(response.json())

    async def native_read(self, id: str) -> ByteSource:
        client = await self._get_client()
        request = client.build_request("GET", f"/content{_quote_id(id)}", headers=self._headers())
        try:
            response = await client.send(request, stream=True)
        except httpx.TransportError as e:
            raise IOFailure(f"Repository unreachable (GET {id}): {e}", path=id) from e
        if response.is_error:
            await response.aclose()
            self._raise_for_status(response, id)
        return self._iter_response(response, id)

    async def _iter_response(self, response: httpx.Response, id: str) -> ByteSource:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.TransportError as e:
            raise IOFailure(f"Repository read interrupted for {id}: {e}", path=id) from e
        finally:
            await response.aclose()

    async def native_write(self, id: str, source: ByteSource) -> str:
        response = await self._request("PUT", f"/content{_quote_id(id)}", id, content=source)
        log.debug(f"native_write: {id} -> HTTP {response.status_code}")
        return response.json().get("id", id)

    async def native_create_container(self, path: str) -> str:
        response = await self._request("PUT", f"/containers{_quote_id(path)}", path)
        return response.json().get("id", path)

    async def native_link_external_content(self, id: str, uri: str) -> None:
        await self._request(
            "POST", f"/relations{_quote_id(id)}", id,
            json={"predicate": EXTERNAL_CONTENT_PREDICATE, "object": uri},
        )
        log.info(f"Linked {id} to external content {uri}")

    async def native_delete(self, id: str) -> None:
        await self._request("DELETE", f"/resources{_quote_id(id)}", id)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
