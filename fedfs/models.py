"""Data models for the federation connector."""

from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Optional

# Streaming byte source handed between stores (async iterator of chunks)
ByteSource = AsyncIterator[bytes]

# Semantic types a projected resource may carry
CONTAINER_TYPE = "http://fedora.info/definitions/v4/repository#Container"
BINARY_TYPE = "http://fedora.info/definitions/v4/repository#Binary"

# The one predicate that activates external-content resolution
EXTERNAL_CONTENT_PREDICATE = "http://some-vocabulary#hasExternalContent"


class ResourceKind(str, Enum):
    """What a projected path is: a directory (Container) or a file (Binary)."""
    CONTAINER = "container"
    BINARY = "binary"

    @property
    def type_uri(self) -> str:
        return CONTAINER_TYPE if self is ResourceKind.CONTAINER else BINARY_TYPE


class CopyDirection(str, Enum):
    FEDERATION_TO_NATIVE = "federation_to_native"
    NATIVE_TO_FEDERATION = "native_to_federation"


@dataclass(frozen=True)
class FederatedPath:
    """A location seen both as a repository path and as a filesystem path.

    Derived from a mount; never stored on its own.
    """
    repo_path: str
    fs_path: str
    mount_prefix: str
    mount_root: str

    @property
    def is_mount_root(self) -> bool:
        return self.fs_path == self.mount_root

    @property
    def name(self) -> str:
        return self.repo_path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class StatResult:
    last_modified_ns: int
    is_directory: bool
    size: int = 0


@dataclass
class CacheEntry:
    """Cached stat + listing for one filesystem path.

    Mutated only by MetadataCache refresh. For directories, last_modified_ns
    is the aggregate over the directory itself and its cached children.
    """
    last_modified_ns: int
    is_directory: bool
    size: int
    children: tuple[str, ...]
    captured_at: float
    own_mtime_ns: int = 0

    def to_stat(self) -> StatResult:
        return StatResult(
            last_modified_ns=self.last_modified_ns,
            is_directory=self.is_directory,
            size=self.size,
        )


@dataclass(frozen=True)
class ChildEntry:
    name: str
    kind: ResourceKind


@dataclass(frozen=True)
class ResourceView:
    """Projection of one federated path."""
    repo_path: str
    kind: ResourceKind
    last_modified_ns: int
    size: int = 0
    children: tuple[ChildEntry, ...] = ()

    @property
    def types(self) -> tuple[str, ...]:
        return (self.kind.type_uri,)

    def child_paths(self) -> list[str]:
        base = self.repo_path.rstrip("/")
        return [f"{base}/{child.name}" for child in self.children]


@dataclass(frozen=True)
class NativeMetadata:
    """What the native repository reports about one of its resources."""
    id: str
    is_container: bool
    size: int = 0
    relations: tuple[tuple[str, str], ...] = ()
    children: tuple[str, ...] = ()


@dataclass(frozen=True)
class CopyRequest:
    source: str
    destination: str
    direction: CopyDirection
    overwrite: bool = False


@dataclass(frozen=True)
class CopyResult:
    destination: str
    created: bool
    bytes_copied: int = 0
    resources_copied: int = 1


@dataclass
class ConnectorResponse:
    """Outcome of one dispatched operation, for a transport layer to render."""
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    view: Optional[ResourceView] = None
    body: Optional[ByteSource] = None
