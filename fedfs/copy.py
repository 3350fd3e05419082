"""
COPY across the federation boundary.

Directions:
  - federation → native: always allowed (federated content is read-only, so
    duplicating it is safe). Missing native ancestor containers are created.
  - native → federation: only when the destination mount enables
    write_protect.allow_federation_write. Refused up front otherwise, and
    federation-side parent directories are never created.

Atomicity:
  - Federation writes land in a staging entry next to the destination and are
    renamed into place only after the whole transfer succeeded.
  - Native overwrites delete the existing destination first. Native writes
    that fail or are cancelled are rolled back with native_delete, so the
    destination is either the full copy or absent.

The source is only ever read.
"""

import logging
import os
import shutil
import uuid
from dataclasses import dataclass

import trio

from .config import FederationConfig
from .errors import (
    DestinationConflict, FederationError, InvalidPath, IOFailure,
    NotFound, SourceNotFound, UnsupportedDirection,
)
from .metadata_cache import MetadataCache
from .models import (
    ByteSource, CopyDirection, CopyRequest, CopyResult,
    FederatedPath, NativeMetadata, ResourceKind,
)
from .namespace import NamespaceMapper
from .native_store import NativeStore
from .projection import STAGING_PREFIX, ProjectionEngine

log = logging.getLogger(__name__)


@dataclass
class _Progress:
    resources: int = 0
    bytes: int = 0


def _native_id(path: str) -> str:
    return "/" + path.strip("/")


def _native_child(parent_id: str, name: str) -> str:
    if not name or name in (".", "..") or "/" in name:
        raise InvalidPath(f"Invalid child name {name!r} under {parent_id}", path=parent_id)
    return parent_id.rstrip("/") + "/" + name


def _publish(staging: str, final: str, existed: bool) -> None:
    """Make a fully written staging entry visible at final."""
    if existed and os.path.isdir(final) and not os.path.islink(final):
        replaced = os.path.join(os.path.dirname(final), f"{STAGING_PREFIX}{uuid.uuid4().hex}-replaced")
        os.rename(final, replaced)
        try:
            os.rename(staging, final)
        except OSError:
            os.rename(replaced, final)
            raise
        shutil.rmtree(replaced)
    else:
        os.replace(staging, final)


def _remove_staging(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path, ignore_errors=True)
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class CrossStoreCopier:
    """Copies resources between the native store and federated mounts."""

    def __init__(
        self,
        config: FederationConfig,
        mapper: NamespaceMapper,
        cache: MetadataCache,
        projection: ProjectionEngine,
        store: NativeStore,
    ):
        self._config = config
        self._mapper = mapper
        self._cache = cache
        self._projection = projection
        self._store = store

    async def copy(self, request: CopyRequest) -> CopyResult:
        if request.direction is CopyDirection.FEDERATION_TO_NATIVE:
            return await self._to_native(request)
        return await self._to_federation(request)

    def infer_direction(self, source: str, destination: str) -> CopyDirection:
        """Direction from which side of the boundary each identity lives on."""
        source_federated = self._mapper.mount_for(source) is not None
        destination_federated = self._mapper.mount_for(destination) is not None
        if source_federated and not destination_federated:
            return CopyDirection.FEDERATION_TO_NATIVE
        if destination_federated and not source_federated:
            return CopyDirection.NATIVE_TO_FEDERATION
        if source_federated:
            raise UnsupportedDirection(
                f"Copies between federated locations are not supported: {source} -> {destination}",
                path=destination,
            )
        raise InvalidPath(
            f"Neither {source} nor {destination} is federated; native-only copies are not handled here",
            path=source,
        )

    # ── federation → native ──────────────────────────────────────────────

    async def _to_native(self, request: CopyRequest) -> CopyResult:
        source = self._mapper.to_filesystem_path(request.source)
        dest = _native_id(request.destination)
        if self._mapper.mount_for(dest) is not None:
            raise UnsupportedDirection(
                f"Destination {dest} is inside a federated mount", path=dest,
            )

        try:
            await self._projection.describe(source)
        except NotFound as e:
            raise SourceNotFound(f"Copy source not found: {source.repo_path}", path=source.repo_path) from e

        existed = await self._native_exists(dest)
        if existed and not request.overwrite:
            raise DestinationConflict(f"Copy destination already exists: {dest}", path=dest)

        await self._ensure_native_ancestors(dest)

        progress = _Progress()
        log.info(f"COPY {source.repo_path} -> {dest} (federation_to_native)")
        try:
            if existed:
                log.info(f"COPY: replacing existing native resource {dest}")
                await self._store.native_delete(dest)
            await self._copy_tree_to_native(source, dest, progress)
        except BaseException:
            with trio.CancelScope(shield=True):
                await self._rollback_native(dest)
            raise

        return CopyResult(
            destination=dest,
            created=not existed,
            bytes_copied=progress.bytes,
            resources_copied=progress.resources,
        )

    async def _copy_tree_to_native(self, source: FederatedPath, dest: str, progress: _Progress) -> None:
        view = await self._projection.project(source)
        if view.kind is ResourceKind.BINARY:
            stream = await self._projection.open_binary(source)
            await self._store.native_write(dest, self._counted(stream, progress))
            progress.resources += 1
            return

        await self._store.native_create_container(dest)
        progress.resources += 1
        for child in view.children:
            child_path = self._mapper.child(source, child.name)
            try:
                await self._copy_tree_to_native(child_path, _native_child(dest, child.name), progress)
            except NotFound:
                log.warning(f"COPY: {child_path.repo_path} vanished during copy, skipped")

    async def _native_exists(self, id: str) -> bool:
        try:
            await self._store.native_stat(id)
        except NotFound:
            return False
        return True

    async def _ensure_native_ancestors(self, dest: str) -> None:
        """Create missing native containers above dest, top-down."""
        parts = [p for p in dest.split("/") if p]
        for depth in range(1, len(parts)):
            ancestor = "/" + "/".join(parts[:depth])
            try:
                metadata = await self._store.native_stat(ancestor)
            except NotFound:
                log.info(f"COPY: creating native container {ancestor}")
                await self._store.native_create_container(ancestor)
                continue
            if not metadata.is_container:
                raise DestinationConflict(f"{ancestor} exists and is not a container", path=ancestor)

    async def _rollback_native(self, dest: str) -> None:
        try:
            await self._store.native_delete(dest)
            log.info(f"COPY: rolled back partial destination {dest}")
        except NotFound:
            pass
        except FederationError as e:
            log.error(f"COPY: could not roll back {dest}: {e}")

    @staticmethod
    async def _counted(source: ByteSource, progress: _Progress) -> ByteSource:
        async for chunk in source:
            progress.bytes += len(chunk)
            yield chunk

    # ── native → federation ──────────────────────────────────────────────

    async def _to_federation(self, request: CopyRequest) -> CopyResult:
        dest = self._mapper.to_filesystem_path(request.destination)
        mount = self._config.mount_for_prefix(dest.mount_prefix)
        if mount is None or not mount.write_protect.allow_federation_write:
            log.warning(f"COPY into {dest.repo_path} rejected: mount {dest.mount_prefix} is read-only")
            raise UnsupportedDirection(
                f"Writing into federated mount {dest.mount_prefix} is disabled", path=dest.repo_path,
            )
        if self._mapper.mount_for(request.source) is not None:
            raise UnsupportedDirection(
                f"Copies between federated locations are not supported: {request.source}",
                path=request.source,
            )
        if dest.is_mount_root:
            raise UnsupportedDirection(f"Cannot replace mount root {dest.repo_path}", path=dest.repo_path)

        parent = self._mapper.parent(dest)
        if self._projection.is_hidden(parent, dest.name):
            raise InvalidPath(f"Reserved or excluded name: {dest.name}", path=dest.repo_path)
        await self._require_federated_parent(parent, dest)

        existed = await trio.to_thread.run_sync(os.path.lexists, dest.fs_path)
        if existed and not request.overwrite:
            raise DestinationConflict(f"Copy destination already exists: {dest.repo_path}", path=dest.repo_path)

        source_id = _native_id(request.source)
        try:
            source_meta = await self._store.native_stat(source_id)
        except NotFound as e:
            raise SourceNotFound(f"Copy source not found: {source_id}", path=source_id) from e

        staging = os.path.join(parent.fs_path, f"{STAGING_PREFIX}{uuid.uuid4().hex}")
        progress = _Progress()
        log.info(f"COPY {source_id} -> {dest.repo_path} (native_to_federation)")
        try:
            await self._materialize(source_id, source_meta, staging, progress)
            await trio.to_thread.run_sync(_publish, staging, dest.fs_path, existed)
        except BaseException as e:
            with trio.CancelScope(shield=True):
                await trio.to_thread.run_sync(_remove_staging, staging)
            if isinstance(e, OSError):
                raise IOFailure(f"Write into {dest.repo_path} failed: {e}", path=dest.repo_path) from e
            raise

        await self._cache.invalidate(dest)
        return CopyResult(
            destination=dest.repo_path,
            created=not existed,
            bytes_copied=progress.bytes,
            resources_copied=progress.resources,
        )

    async def _require_federated_parent(self, parent: FederatedPath, dest: FederatedPath) -> None:
        try:
            st = await self._cache.stat(parent)
        except NotFound as e:
            raise UnsupportedDirection(
                f"Parent {parent.repo_path} does not exist; federated directories are not created implicitly",
                path=dest.repo_path,
            ) from e
        if not st.is_directory:
            raise UnsupportedDirection(f"Parent {parent.repo_path} is not a directory", path=dest.repo_path)

    async def _materialize(
        self, id: str, metadata: NativeMetadata, target: str, progress: _Progress,
    ) -> None:
        if metadata.is_container:
            await trio.to_thread.run_sync(os.mkdir, target)
            progress.resources += 1
            for name in metadata.children:
                child_id = _native_child(id, name)
                child_meta = await self._store.native_stat(child_id)
                await self._materialize(child_id, child_meta, os.path.join(target, name), progress)
            return

        stream = await self._store.native_read(id)
        async with await trio.open_file(target, "xb") as f:
            async for chunk in stream:
                await f.write(chunk)
                progress.bytes += len(chunk)
            await f.flush()
            await trio.to_thread.run_sync(os.fsync, f.fileno())
        progress.resources += 1
