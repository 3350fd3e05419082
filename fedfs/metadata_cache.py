"""
TTL-gated metadata cache for federated paths.

Caches one stat result (and, for directories, a listing snapshot) per
filesystem path. Entries younger than the TTL are served as-is; older ones
are refreshed from the filesystem on the next request.

Cache contract:
  - Entry fresh (now - captured_at < ttl) → serve cached value
  - Entry stale or missing → stat under the key's lock, repopulate
  - Path vanished → evict, raise NotFound
  - Other OS error → evict, raise IOFailure

Ancestor propagation: when a refresh sees a path's mtime or listing change
(or the path vanish), every ancestor up to the mount root is evicted so the
next stat on a parent re-reads the filesystem. A first fill is not a change.
A directory reports the newest of its own mtime and its cached children's,
computed when the directory entry is captured, so child changes surface on
the parent within one TTL.

Locking: one trio.Lock per key, created lazily. The lock is held across one
worker-thread call (stat, plus listdir for directories) and the short
population step, never while acquiring another key's lock.
"""

import logging
import os
import stat
import time
from typing import Callable, Optional

import trio

from .config import CacheConfig
from .errors import IOFailure, NotFound
from .models import CacheEntry, FederatedPath, StatResult
from .namespace import NamespaceMapper

log = logging.getLogger(__name__)

# os.stat raises these when a path (or one of its parents) is gone
_VANISHED = (FileNotFoundError, NotADirectoryError)


def _list_dir(fs_path: str) -> list[str]:
    return sorted(os.listdir(fs_path))


class MetadataCache:
    """Per-path TTL cache with eager ancestor invalidation."""

    def __init__(
        self,
        mapper: NamespaceMapper,
        config: CacheConfig = None,
        clock: Callable[[], float] = time.monotonic,
        stat_fn: Callable[[str], os.stat_result] = os.stat,
        list_fn: Callable[[str], list[str]] = _list_dir,
    ):
        config = config or CacheConfig()

        self._mapper = mapper
        self._ttl: float = config.ttl
        self._clock = clock
        self._stat_fn = stat_fn
        self._list_fn = list_fn

        # fs_path -> entry / lock
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, trio.Lock] = {}

        self.hits = 0
        self.misses = 0

    @property
    def ttl(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    # ── Public API ───────────────────────────────────────────────────────

    async def stat(self, path: FederatedPath) -> StatResult:
        """Stat a federated path, serving the cached value while fresh."""
        entry = await self._get_entry(path)
        return entry.to_stat()

    async def list_children(self, path: FederatedPath) -> tuple[str, ...]:
        """Child names of a directory in listing order (empty for files)."""
        entry = await self._get_entry(path)
        return entry.children

    def peek(self, path: FederatedPath) -> Optional[CacheEntry]:
        """Cached entry regardless of freshness, without touching the filesystem."""
        return self._entries.get(path.fs_path)

    def hydration_state(self, path: FederatedPath) -> str:
        """Freshness of a path for status reporting: fresh, stale or pending."""
        entry = self._entries.get(path.fs_path)
        if entry is None:
            return "pending"
        return "fresh" if self._is_fresh(entry, self._clock()) else "stale"

    async def invalidate(self, path: FederatedPath) -> None:
        """Evict a path and all of its ancestors (after a write into the mount)."""
        async with self._lock_for(path.fs_path):
            self._entries.pop(path.fs_path, None)
        await self._invalidate_ancestors(path)

    def clear(self) -> None:
        """Drop every entry (locks are kept; they may be held by in-flight tasks)."""
        self._entries.clear()

    # ── Internals ────────────────────────────────────────────────────────

    def _lock_for(self, key: str) -> trio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = trio.Lock()
        return lock

    def _capture(self, fs_path: str) -> tuple[os.stat_result, tuple[str, ...]]:
        """stat plus, for directories, the listing. Runs in one worker thread."""
        st = self._stat_fn(fs_path)
        children: tuple[str, ...] = ()
        if stat.S_ISDIR(st.st_mode):
            children = tuple(self._list_fn(fs_path))
        return st, children

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.captured_at < self._ttl

    async def _get_entry(self, path: FederatedPath) -> CacheEntry:
        entry = self._entries.get(path.fs_path)
        if entry is not None and self._is_fresh(entry, self._clock()):
            self.hits += 1
            return entry
        return await self._refresh(path)

    async def _refresh(self, path: FederatedPath) -> CacheEntry:
        key = path.fs_path
        propagate = False
        vanished: Optional[BaseException] = None
        entry: Optional[CacheEntry] = None

        async with self._lock_for(key):
            previous = self._entries.get(key)
            if previous is not None and self._is_fresh(previous, self._clock()):
                # Another task refreshed while we waited for the lock
                self.hits += 1
                return previous

            self.misses += 1
            try:
                st, children = await trio.to_thread.run_sync(self._capture, key)
            except _VANISHED as e:
                self._entries.pop(key, None)
                vanished = e
                propagate = previous is not None
            except OSError as e:
                self._entries.pop(key, None)
                log.warning(f"Metadata refresh failed for {path.repo_path}: {e}")
                raise IOFailure(f"Cannot stat {path.repo_path}: {e}", path=path.repo_path) from e
            else:
                now = self._clock()
                captured_at = max(now, previous.captured_at) if previous else now
                own_mtime = st.st_mtime_ns
                is_dir = stat.S_ISDIR(st.st_mode)
                entry = CacheEntry(
                    last_modified_ns=self._aggregate_mtime(path, own_mtime, children),
                    is_directory=is_dir,
                    size=0 if is_dir else st.st_size,
                    children=children,
                    captured_at=captured_at,
                    own_mtime_ns=own_mtime,
                )
                self._entries[key] = entry
                propagate = self._changed(previous, entry)

        if propagate:
            await self._invalidate_ancestors(path)

        if vanished is not None:
            log.debug(f"Metadata cache: {path.repo_path} vanished, evicted")
            raise NotFound(f"No such federated resource: {path.repo_path}", path=path.repo_path) from vanished

        log.debug(f"Metadata cache: refreshed {path.repo_path} (propagate={propagate})")
        return entry

    def _aggregate_mtime(self, path: FederatedPath, own_mtime: int, children: tuple[str, ...]) -> int:
        newest = own_mtime
        for name in children:
            child = self._entries.get(os.path.join(path.fs_path, name))
            if child is not None and child.last_modified_ns > newest:
                newest = child.last_modified_ns
        return newest

    @staticmethod
    def _changed(previous: Optional[CacheEntry], entry: CacheEntry) -> bool:
        if previous is None:
            return False
        return (
            previous.own_mtime_ns != entry.own_mtime_ns
            or previous.last_modified_ns != entry.last_modified_ns
            or previous.children != entry.children
        )

    async def _invalidate_ancestors(self, path: FederatedPath) -> None:
        for ancestor in self._mapper.ancestors(path):
            async with self._lock_for(ancestor.fs_path):
                if self._entries.pop(ancestor.fs_path, None) is not None:
                    log.debug(f"Metadata cache: invalidated ancestor {ancestor.repo_path}")
