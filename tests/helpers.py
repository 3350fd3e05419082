"""Test doubles: a controllable clock and an in-memory native repository."""

import os
from typing import Optional

from fedfs.config import CacheConfig, FederationConfig, MountConfig, WriteProtectConfig
from fedfs.errors import DestinationConflict, NotFound
from fedfs.models import EXTERNAL_CONTENT_PREDICATE, ByteSource, NativeMetadata

BASE_URI = "http://localhost:8080/rest"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(
    root,
    prefix: str = "/files",
    exclude: tuple = (),
    allow_write: bool = False,
    ttl: float = 1.0,
) -> FederationConfig:
    return FederationConfig(
        base_uri=BASE_URI,
        api_url="http://repo.test/api",
        cache=CacheConfig(ttl=ttl),
        mounts=(MountConfig(
            prefix=prefix,
            root=os.path.realpath(str(root)),
            exclude=tuple(exclude),
            write_protect=WriteProtectConfig(allow_federation_write=allow_write),
        ),),
    )


async def collect(source: ByteSource) -> bytes:
    data = b""
    async for chunk in source:
        data += chunk
    return data


async def _chunks(content: bytes, chunk_size: int, error: Optional[Exception]) -> ByteSource:
    for i in range(0, max(len(content), 1), chunk_size):
        yield content[i:i + chunk_size]
        if error is not None:
            raise error


class InMemoryStore:
    """NativeStore fake. Every call is recorded in .calls as (method, id)."""

    def __init__(self):
        self.containers: set[str] = set()
        self.binaries: dict[str, bytes] = {}
        self.relations: dict[str, list[tuple[str, str]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.write_error: Optional[Exception] = None
        self.read_error: Optional[Exception] = None

    # --- seeding ---

    def add_container(self, id: str) -> None:
        self.containers.add(id)

    def add_binary(self, id: str, content: bytes, relations=()) -> None:
        self.binaries[id] = content
        self.relations[id] = list(relations)

    def exists(self, id: str) -> bool:
        return id in self.containers or id in self.binaries

    def _children(self, id: str) -> tuple[str, ...]:
        prefix = id.rstrip("/") + "/"
        names = set()
        for other in list(self.containers) + list(self.binaries):
            if other.startswith(prefix) and "/" not in other[len(prefix):]:
                names.add(other[len(prefix):])
        return tuple(sorted(names))

    # --- NativeStore ---

    async def native_stat(self, id: str) -> NativeMetadata:
        self.calls.append(("native_stat", id))
        if id in self.containers:
            return NativeMetadata(id=id, is_container=True, children=self._children(id))
        if id in self.binaries:
            return NativeMetadata(
                id=id, is_container=False, size=len(self.binaries[id]),
                relations=tuple(self.relations.get(id, ())),
            )
        raise NotFound(f"No such resource {id}", path=id)

    async def native_read(self, id: str) -> ByteSource:
        self.calls.append(("native_read", id))
        if id not in self.binaries:
            raise NotFound(f"No such binary {id}", path=id)
        return _chunks(self.binaries[id], 4, self.read_error)

    async def native_write(self, id: str, source: ByteSource) -> str:
        self.calls.append(("native_write", id))
        if id in self.containers:
            raise DestinationConflict(f"{id} is a container", path=id)
        data = b""
        async for chunk in source:
            data += chunk
            if self.write_error is not None:
                raise self.write_error
        self.binaries[id] = data
        return id

    async def native_create_container(self, path: str) -> str:
        self.calls.append(("native_create_container", path))
        if path in self.binaries:
            raise DestinationConflict(f"{path} is a binary", path=path)
        self.containers.add(path)
        return path

    async def native_link_external_content(self, id: str, uri: str) -> None:
        self.calls.append(("native_link_external_content", id))
        if not self.exists(id):
            raise NotFound(f"No such resource {id}", path=id)
        self.relations.setdefault(id, []).append((EXTERNAL_CONTENT_PREDICATE, uri))

    async def native_delete(self, id: str) -> None:
        self.calls.append(("native_delete", id))
        if not self.exists(id):
            raise NotFound(f"No such resource {id}", path=id)
        prefix = id.rstrip("/") + "/"
        self.containers = {c for c in self.containers if c != id and not c.startswith(prefix)}
        self.binaries = {b: v for b, v in self.binaries.items() if b != id and not b.startswith(prefix)}

