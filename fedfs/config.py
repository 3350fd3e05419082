"""
Configuration management for fedfs.

Single config file, owned by fedfs:
  ~/.config/fedfs/federation.json  (repository URIs, cache TTL, mounts)

Layout:
  {
    "base_uri": "http://localhost:8080/rest",
    "api_url": "http://localhost:8080/api",
    "token": "",
    "cache": {"ttl": 1.0},
    "mounts": {
      "/files": {
        "root": "/srv/objects",
        "exclude": ["*.tmp"],
        "write_protect": {"allow_federation_write": false}
      }
    }
  }

The loaded FederationConfig is immutable: it is read once at startup and
passed into each component at construction.
"""

import fcntl
import json
import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

DEFAULT_BASE_URI = "http://localhost:8080/rest"
DEFAULT_API_URL = "http://localhost:8080/api"
DEFAULT_TTL = 1.0


# --- Data classes ---

@dataclass(frozen=True)
class CacheConfig:
    """Metadata cache settings. TTL is fixed for the life of the process."""
    ttl: float = DEFAULT_TTL


@dataclass(frozen=True)
class WriteProtectConfig:
    """Write protection for the federated filesystem.

    Defaults to False (blocked). Copying native content into a mount must be
    enabled explicitly per mount in federation.json.
    """
    allow_federation_write: bool = False


@dataclass(frozen=True)
class MountConfig:
    """A repository path prefix projected from a filesystem root."""
    prefix: str
    root: str
    exclude: tuple[str, ...] = ()
    write_protect: WriteProtectConfig = field(default_factory=WriteProtectConfig)


@dataclass(frozen=True)
class FederationConfig:
    """Full fedfs configuration."""
    base_uri: str = DEFAULT_BASE_URI
    api_url: str = DEFAULT_API_URL
    token: str = ""
    cache: CacheConfig = field(default_factory=CacheConfig)
    mounts: tuple[MountConfig, ...] = ()

    def mount_for_prefix(self, prefix: str) -> Optional[MountConfig]:
        prefix = normalize_prefix(prefix)
        for mount in self.mounts:
            if mount.prefix == prefix:
                return mount
        return None


# --- Path helpers ---

def get_config_dir() -> Path:
    """Get fedfs config directory (~/.config/fedfs/)."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(xdg_config) / "fedfs"


def get_config_path() -> Path:
    """Get path to federation.json (FEDFS_CONFIG overrides)."""
    override = os.environ.get("FEDFS_CONFIG")
    if override:
        return Path(override)
    return get_config_dir() / "federation.json"


def normalize_prefix(prefix: str) -> str:
    """'/files/' and 'files' both become '/files'."""
    value = "/" + prefix.strip().strip("/")
    return value if value != "/" else "/"


# --- Read/write federation.json ---

def read_config_file(path: Optional[Path] = None) -> Optional[dict]:
    """Read federation.json. Returns None if not found or unreadable."""
    path = path or get_config_path()
    if not path.exists():
        return None
    try:
        with open(path, "r") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                return json.load(f)
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
    except (json.JSONDecodeError, OSError) as e:
        log.warning(f"Could not read fedfs config at {path}: {e}")
        return None


def write_config_file(data: dict, path: Optional[Path] = None) -> None:
    """Atomic write to federation.json with file locking.

    Writes to a temp file, validates the roundtrip, then renames atomically
    while still holding the exclusive lock. Enforces 600 permissions.
    """
    path = path or get_config_path()
    tmp_path = path.with_suffix(".tmp")

    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(data, indent=2) + "\n"
    roundtrip = json.loads(content)
    if roundtrip != data:
        raise ValueError("JSON roundtrip validation failed, refusing to write")

    with open(tmp_path, "w") as f:
        fcntl.flock(f, fcntl.LOCK_EX)
        try:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
            os.rename(tmp_path, path)
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)  # 600
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)


# --- High-level config loading ---

def _mount_from_dict(prefix: str, data: dict) -> MountConfig:
    wp_data = data.get("write_protect", {})
    return MountConfig(
        prefix=normalize_prefix(prefix),
        root=os.path.realpath(os.path.expanduser(data["root"])),
        exclude=tuple(data.get("exclude", ())),
        write_protect=WriteProtectConfig(
            allow_federation_write=bool(wp_data.get("allow_federation_write", False)),
        ),
    )


def config_from_dict(data: dict) -> FederationConfig:
    """Build an immutable FederationConfig from parsed JSON.

    Mounts without a "root" are skipped with a warning.
    """
    cache_data = data.get("cache", {})
    mounts = []
    for prefix, mount_data in data.get("mounts", {}).items():
        if "root" not in mount_data:
            log.warning(f"Mount {prefix} has no root, skipping")
            continue
        mounts.append(_mount_from_dict(prefix, mount_data))

    return FederationConfig(
        base_uri=data.get("base_uri", DEFAULT_BASE_URI).rstrip("/"),
        api_url=data.get("api_url", DEFAULT_API_URL).rstrip("/"),
        token=data.get("token", ""),
        cache=CacheConfig(ttl=float(cache_data.get("ttl", DEFAULT_TTL))),
        mounts=tuple(mounts),
    )


def load_config(path: Optional[Path] = None, cli_api_url: Optional[str] = None) -> FederationConfig:
    """Load federation.json into a FederationConfig (defaults when absent).

    Priority for api_url: CLI flag > federation.json > default.
    """
    data = read_config_file(path) or {}
    config = config_from_dict(data)
    if cli_api_url:
        config = FederationConfig(
            base_uri=config.base_uri,
            api_url=cli_api_url.rstrip("/"),
            token=config.token,
            cache=config.cache,
            mounts=config.mounts,
        )
    return config


def _mount_config_to_dict(mc: MountConfig) -> dict:
    """Serialize a MountConfig to a JSON-safe dict. Single source of truth."""
    return {
        "root": mc.root,
        "exclude": list(mc.exclude),
        "write_protect": {
            "allow_federation_write": mc.write_protect.allow_federation_write,
        },
    }


def validate_mount(mount: MountConfig) -> Optional[str]:
    """Validate a mount definition. Returns error message or None if OK."""
    if mount.prefix == "/":
        return "Refusing to mount at the repository root; choose a prefix such as /files."
    if not os.path.isabs(mount.root):
        return f"Mount root must be an absolute path, got {mount.root}"
    if not os.path.isdir(mount.root):
        return f"Mount root {mount.root} does not exist or is not a directory."
    if not os.access(mount.root, os.R_OK | os.X_OK):
        return f"Cannot read {mount.root}: permission denied."
    return None


def add_mount_to_config(mount: MountConfig, path: Optional[Path] = None) -> None:
    """Add (or replace) a mount in federation.json. Creates the file if needed."""
    data = read_config_file(path) or {}
    data.setdefault("mounts", {})
    data["mounts"][mount.prefix] = _mount_config_to_dict(mount)
    write_config_file(data, path)
    log.info(f"Added mount {mount.prefix} -> {mount.root}")


def remove_mount_from_config(prefix: str, path: Optional[Path] = None) -> bool:
    """Remove a mount from federation.json. Returns True if found and removed."""
    prefix = normalize_prefix(prefix)
    data = read_config_file(path)
    if not data or prefix not in data.get("mounts", {}):
        return False

    del data["mounts"][prefix]
    write_config_file(data, path)
    return True
