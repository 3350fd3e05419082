"""
Projection of federated paths into repository resources.

A directory projects to a Container whose children are exactly its
filesystem entries; a regular file projects to a Binary. Freshness is
entirely the MetadataCache's: nothing here is cached separately.

Hidden from every projection:
  - names matching the mount's exclude globs
  - the connector's own staging entries (STAGING_PREFIX), which exist only
    while a copy into the federation is in flight
"""

import fnmatch
import hashlib
import logging
from email.utils import formatdate
from typing import AsyncIterator, Optional

import trio

from .config import MountConfig
from .errors import InvalidPath, IOFailure, NotFound
from .metadata_cache import MetadataCache
from .models import ChildEntry, FederatedPath, ResourceKind, ResourceView
from .namespace import NamespaceMapper

log = logging.getLogger(__name__)

STAGING_PREFIX = ".fedfs-staging-"
READ_CHUNK_SIZE = 1024 * 1024


def http_date(last_modified_ns: int) -> str:
    """RFC 7231 HTTP-date at second precision (stable for one cached value)."""
    return formatdate(last_modified_ns // 1_000_000_000, usegmt=True)


class ProjectionEngine:
    """Builds ResourceViews for federated paths."""

    def __init__(self, mapper: NamespaceMapper, cache: MetadataCache):
        self._mapper = mapper
        self._cache = cache
        self._mounts: dict[str, MountConfig] = {m.prefix: m for m in mapper.mounts}

    def is_hidden(self, path: FederatedPath, name: str) -> bool:
        """True for names never exposed below this mount."""
        if name.startswith(STAGING_PREFIX):
            return True
        mount = self._mounts.get(path.mount_prefix)
        if mount is None:
            return False
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in mount.exclude)

    async def project(self, path: FederatedPath) -> ResourceView:
        """Project one path: a Container with classified children, or a Binary."""
        self._check_visible(path)
        st = await self._cache.stat(path)
        if not st.is_directory:
            return ResourceView(
                repo_path=path.repo_path,
                kind=ResourceKind.BINARY,
                last_modified_ns=st.last_modified_ns,
                size=st.size,
            )

        children: list[ChildEntry] = []
        for name in await self._cache.list_children(path):
            if self.is_hidden(path, name):
                continue
            child_path = self._mapper.child(path, name)
            try:
                child_st = await self._cache.stat(child_path)
            except NotFound:
                # Removed between listing and stat
                log.debug(f"project: child vanished during projection: {child_path.repo_path}")
                continue
            kind = ResourceKind.CONTAINER if child_st.is_directory else ResourceKind.BINARY
            children.append(ChildEntry(name=name, kind=kind))

        return ResourceView(
            repo_path=path.repo_path,
            kind=ResourceKind.CONTAINER,
            last_modified_ns=st.last_modified_ns,
            children=tuple(children),
        )

    async def describe(self, path: FederatedPath) -> ResourceView:
        """Like project() but without children (HEAD-style, one stat)."""
        self._check_visible(path)
        st = await self._cache.stat(path)
        return ResourceView(
            repo_path=path.repo_path,
            kind=ResourceKind.CONTAINER if st.is_directory else ResourceKind.BINARY,
            last_modified_ns=st.last_modified_ns,
            size=st.size,
        )

    async def lookup(self, parent: FederatedPath, name: str) -> Optional[ChildEntry]:
        """Find one child of a directory by name, or None."""
        if self.is_hidden(parent, name):
            return None
        if name not in await self._cache.list_children(parent):
            return None
        try:
            st = await self._cache.stat(self._mapper.child(parent, name))
        except NotFound:
            return None
        return ChildEntry(name=name, kind=ResourceKind.CONTAINER if st.is_directory else ResourceKind.BINARY)

    async def last_modified_header(self, path: FederatedPath) -> str:
        st = await self._cache.stat(path)
        return http_date(st.last_modified_ns)

    async def open_binary(
        self, path: FederatedPath, chunk_size: int = READ_CHUNK_SIZE
    ) -> AsyncIterator[bytes]:
        """Stream a federated Binary's bytes.

        Existence and kind are checked up front so callers see NotFound /
        InvalidPath before the first chunk is requested.
        """
        self._check_visible(path)
        st = await self._cache.stat(path)
        if st.is_directory:
            raise InvalidPath(f"{path.repo_path} is a Container, not a Binary", path=path.repo_path)
        return self._stream(path, chunk_size)

    async def _stream(self, path: FederatedPath, chunk_size: int) -> AsyncIterator[bytes]:
        try:
            async with await trio.open_file(path.fs_path, "rb") as f:
                while True:
                    chunk = await f.read(chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except FileNotFoundError as e:
            await self._cache.invalidate(path)
            raise NotFound(f"No such federated resource: {path.repo_path}", path=path.repo_path) from e
        except OSError as e:
            raise IOFailure(f"Cannot read {path.repo_path}: {e}", path=path.repo_path) from e

    async def checksum(self, path: FederatedPath) -> str:
        """SHA-1 of a Binary's content as "urn:sha1:<hex>"."""
        digest = hashlib.sha1()
        async for chunk in await self.open_binary(path):
            digest.update(chunk)
        return f"urn:sha1:{digest.hexdigest()}"

    def _check_visible(self, path: FederatedPath) -> None:
        current = path
        while not current.is_mount_root:
            parent = self._mapper.parent(current)
            if self.is_hidden(parent, current.name):
                raise NotFound(f"No such federated resource: {path.repo_path}", path=path.repo_path)
            current = parent
