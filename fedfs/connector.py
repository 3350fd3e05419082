"""
Federation connector: one configuration, one set of components, one dispatch.

A transport layer (HTTP front end, CLI) builds an operation value and hands it
to FederationConnector.handle(); the connector answers with a
ConnectorResponse or raises a FederationError whose .status the transport can
render directly.

  GetOperation(path)          -> 200, view (+ body for Binaries on request)
  HeadOperation(path)         -> 200, view without children
  ContentOperation(id)        -> 200, body (native or external content)
  CopyOperation(src, dst)     -> 201 created / 204 overwritten
  LinkOperation(id, uri)      -> 204
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Union

from .config import FederationConfig
from .copy import CrossStoreCopier
from .errors import InvalidPath
from .linker import ExternalContentLinker
from .metadata_cache import MetadataCache
from .models import ConnectorResponse, CopyRequest, CopyResult, ResourceKind, ResourceView
from .namespace import NamespaceMapper
from .native_store import NativeStore
from .projection import ProjectionEngine, http_date

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class GetOperation:
    path: str
    with_content: bool = False


@dataclass(frozen=True)
class HeadOperation:
    path: str


@dataclass(frozen=True)
class ContentOperation:
    resource_id: str


@dataclass(frozen=True)
class CopyOperation:
    source: str
    destination: str
    overwrite: bool = False


@dataclass(frozen=True)
class LinkOperation:
    resource_id: str
    uri: str


Operation = Union[GetOperation, HeadOperation, ContentOperation, CopyOperation, LinkOperation]


def _view_headers(view: ResourceView) -> dict[str, str]:
    headers = {"Last-Modified": http_date(view.last_modified_ns)}
    if view.kind is ResourceKind.BINARY:
        headers["Content-Length"] = str(view.size)
    return headers


class FederationConnector:
    """Composes mapper, cache, projection, linker and copier for one config."""

    def __init__(
        self,
        config: FederationConfig,
        store: NativeStore,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.store = store
        self.mapper = NamespaceMapper(config)
        self.cache = MetadataCache(self.mapper, config.cache, clock=clock)
        self.projection = ProjectionEngine(self.mapper, self.cache)
        self.linker = ExternalContentLinker(self.mapper, self.projection, store)
        self.copier = CrossStoreCopier(config, self.mapper, self.cache, self.projection, store)

        log.info(f"Federation connector ready: {len(config.mounts)} mount(s), ttl={config.cache.ttl}s")

    async def handle(self, operation: Operation) -> ConnectorResponse:
        if isinstance(operation, GetOperation):
            return await self._get(operation)
        if isinstance(operation, HeadOperation):
            return await self._head(operation)
        if isinstance(operation, ContentOperation):
            return await self._content(operation)
        if isinstance(operation, CopyOperation):
            return await self._copy(operation)
        if isinstance(operation, LinkOperation):
            return await self._link(operation)
        raise TypeError(f"Unknown operation: {operation!r}")

    async def _get(self, op: GetOperation) -> ConnectorResponse:
        path = self.mapper.to_filesystem_path(op.path)
        view = await self.projection.project(path)
        body = None
        if op.with_content and view.kind is ResourceKind.BINARY:
            body = await self.projection.open_binary(path)
        return ConnectorResponse(status=200, headers=_view_headers(view), view=view, body=body)

    async def _head(self, op: HeadOperation) -> ConnectorResponse:
        path = self.mapper.to_filesystem_path(op.path)
        view = await self.projection.describe(path)
        return ConnectorResponse(status=200, headers=_view_headers(view), view=view)

    async def _content(self, op: ContentOperation) -> ConnectorResponse:
        body = await self.linker.resolve_content(op.resource_id)
        return ConnectorResponse(status=200, body=body)

    async def copy(self, source: str, destination: str, overwrite: bool = False) -> CopyResult:
        direction = self.copier.infer_direction(source, destination)
        return await self.copier.copy(CopyRequest(
            source=source, destination=destination, direction=direction, overwrite=overwrite,
        ))

    async def _copy(self, op: CopyOperation) -> ConnectorResponse:
        result = await self.copy(op.source, op.destination, op.overwrite)
        return ConnectorResponse(
            status=201 if result.created else 204,
            headers={"Location": self.mapper.to_uri(result.destination)},
        )

    async def _link(self, op: LinkOperation) -> ConnectorResponse:
        repo_path = self.mapper.uri_to_repo_path(op.uri)
        target = self.mapper.to_filesystem_path(repo_path)
        view = await self.projection.describe(target)
        if view.kind is not ResourceKind.BINARY:
            raise InvalidPath(f"External content must be a Binary: {op.uri}", path=repo_path)
        await self.store.native_link_external_content(op.resource_id, op.uri)
        return ConnectorResponse(status=204)

    def status(self) -> list[dict]:
        """Per-mount cache state, for operator display."""
        result = []
        for mount in self.config.mounts:
            root = self.mapper.to_filesystem_path(mount.prefix)
            result.append({
                "prefix": mount.prefix,
                "root": mount.root,
                "writable": mount.write_protect.allow_federation_write,
                "cache": self.cache.hydration_state(root),
            })
        return result

    async def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()
