"""
External content resolution.

A native resource whose relations carry EXTERNAL_CONTENT_PREDICATE pointing
at a federation URI is read from that federated location instead of from the
native store. Resolution only redirects reads; it never imports bytes.
"""

import logging
from typing import Optional

from .errors import NotFound
from .models import EXTERNAL_CONTENT_PREDICATE, ByteSource, NativeMetadata
from .namespace import NamespaceMapper
from .native_store import NativeStore
from .projection import ProjectionEngine

log = logging.getLogger(__name__)


def external_reference_of(metadata: NativeMetadata) -> Optional[str]:
    """The referenced URI, if the resource carries the external-content predicate."""
    for predicate, obj in metadata.relations:
        if predicate == EXTERNAL_CONTENT_PREDICATE:
            return obj
    return None


class ExternalContentLinker:
    """Read-time indirection from native resources to federated bytes."""

    def __init__(self, mapper: NamespaceMapper, projection: ProjectionEngine, store: NativeStore):
        self._mapper = mapper
        self._projection = projection
        self._store = store

    async def external_reference(self, resource_id: str) -> Optional[str]:
        metadata = await self._store.native_stat(resource_id)
        return external_reference_of(metadata)

    async def resolve_content(self, resource_id: str) -> ByteSource:
        """Byte stream for resource_id, following an external reference if present."""
        metadata = await self._store.native_stat(resource_id)
        uri = external_reference_of(metadata)
        if uri is None:
            return await self._store.native_read(resource_id)

        repo_path = self._mapper.uri_to_repo_path(uri)
        target = self._mapper.to_filesystem_path(repo_path)
        log.debug(f"resolve_content: {resource_id} -> {target.repo_path}")
        try:
            return await self._projection.open_binary(target)
        except NotFound:
            log.warning(f"External content for {resource_id} is missing: {uri}")
            raise
