"""
Namespace mapping between repository paths and filesystem paths.

Pure translation, no I/O. Repository paths look like "/files/FileSystem1/ds1";
the mount with the longest matching prefix owns the path, and the remainder is
joined onto that mount's filesystem root.
"""

import logging
import os
import posixpath
from typing import Optional
from urllib.parse import quote, unquote

from .config import FederationConfig, MountConfig
from .errors import InvalidPath, NotFederated
from .models import FederatedPath

log = logging.getLogger(__name__)


def _segments(path: str) -> list[str]:
    return [seg for seg in path.split("/") if seg]


def _check_well_formed(path: str) -> None:
    if not isinstance(path, str) or not path:
        raise InvalidPath(f"Empty or non-string path: {path!r}", path=str(path))
    if "\x00" in path:
        raise InvalidPath("Path contains a NUL byte", path=path)


class NamespaceMapper:
    """Bidirectional repository-path <-> filesystem-path translation."""

    def __init__(self, config: FederationConfig):
        self._config = config
        # Longest prefix first so nested mounts win over their parents
        self._mounts: list[tuple[list[str], MountConfig]] = sorted(
            ((_segments(m.prefix), m) for m in config.mounts),
            key=lambda item: len(item[0]),
            reverse=True,
        )

    @property
    def mounts(self) -> tuple[MountConfig, ...]:
        return self._config.mounts

    def mount_for(self, repo_path: str) -> Optional[MountConfig]:
        """Return the mount owning repo_path, or None."""
        segs = _segments(repo_path)
        for prefix_segs, mount in self._mounts:
            if segs[:len(prefix_segs)] == prefix_segs:
                return mount
        return None

    def is_federated(self, repo_path: str) -> bool:
        try:
            self.to_filesystem_path(repo_path)
        except (NotFederated, InvalidPath):
            return False
        return True

    def to_filesystem_path(self, repo_path: str) -> FederatedPath:
        """Resolve a repository path to its FederatedPath.

        Raises NotFederated outside every mount and InvalidPath when a ".."
        segment would climb above the mount root.
        """
        _check_well_formed(repo_path)
        segs = _segments(repo_path)

        for prefix_segs, mount in self._mounts:
            if segs[:len(prefix_segs)] != prefix_segs:
                continue
            resolved: list[str] = []
            for seg in segs[len(prefix_segs):]:
                if seg == ".":
                    continue
                if seg == "..":
                    if not resolved:
                        log.warning(f"Rejected traversal outside mount {mount.prefix}: {repo_path}")
                        raise InvalidPath(
                            f"Path escapes mount root {mount.prefix}: {repo_path}",
                            path=repo_path,
                        )
                    resolved.pop()
                    continue
                resolved.append(seg)
            return self._build(mount, resolved)

        if ".." in segs:
            raise InvalidPath(f"Path contains traversal segments: {repo_path}", path=repo_path)
        raise NotFederated(f"Not under any federated mount: {repo_path}", path=repo_path)

    def to_repo_path(self, absolute_path: str, mount: MountConfig) -> str:
        """Inverse of to_filesystem_path for a path under mount.root."""
        normalized = os.path.normpath(absolute_path)
        if normalized == mount.root:
            return mount.prefix
        if not normalized.startswith(mount.root.rstrip(os.sep) + os.sep):
            raise InvalidPath(f"{absolute_path} is not under {mount.root}", path=absolute_path)
        relative = os.path.relpath(normalized, mount.root)
        return posixpath.join(mount.prefix, *relative.split(os.sep))

    def child(self, parent: FederatedPath, name: str) -> FederatedPath:
        """FederatedPath for a single entry directly below parent."""
        if not name or name in (".", "..") or "/" in name or "\x00" in name:
            raise InvalidPath(f"Invalid child name: {name!r}", path=parent.repo_path)
        return FederatedPath(
            repo_path=posixpath.join(parent.repo_path, name),
            fs_path=os.path.join(parent.fs_path, name),
            mount_prefix=parent.mount_prefix,
            mount_root=parent.mount_root,
        )

    def parent(self, path: FederatedPath) -> Optional[FederatedPath]:
        """Parent within the same mount, or None at the mount root."""
        if path.is_mount_root:
            return None
        return FederatedPath(
            repo_path=posixpath.dirname(path.repo_path),
            fs_path=os.path.dirname(path.fs_path),
            mount_prefix=path.mount_prefix,
            mount_root=path.mount_root,
        )

    def ancestors(self, path: FederatedPath) -> list[FederatedPath]:
        """Parent, grandparent, ... up to and including the mount root."""
        result = []
        current = self.parent(path)
        while current is not None:
            result.append(current)
            current = self.parent(current)
        return result

    # --- Federation URIs ---

    def uri_to_repo_path(self, uri: str) -> str:
        """Strip the repository base URI: "<base>/files/a" -> "/files/a"."""
        base = self._config.base_uri.rstrip("/")
        if uri == base:
            return "/"
        if not uri.startswith(base + "/"):
            raise NotFederated(f"URI is not under repository base {base}: {uri}", path=uri)
        rest = uri[len(base):].split("?", 1)[0].split("#", 1)[0]
        return unquote(rest) or "/"

    def to_uri(self, repo_path: str) -> str:
        return self._config.base_uri.rstrip("/") + quote(repo_path)

    def _build(self, mount: MountConfig, resolved: list[str]) -> FederatedPath:
        return FederatedPath(
            repo_path=posixpath.join(mount.prefix, *resolved) if resolved else mount.prefix,
            fs_path=os.path.join(mount.root, *resolved) if resolved else mount.root,
            mount_prefix=mount.prefix,
            mount_root=mount.root,
        )
