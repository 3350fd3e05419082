"""
Subcommand implementations for the fedfs CLI.

Commands: status, config, mount add, mount remove, ls, stat, cat, copy, link.

Each cmd_* takes the parsed Namespace and returns a process exit code:
0 on success, 1 on a FederationError, 2 when a copy direction is refused.
"""

import json
import logging
import os
import sys
from argparse import Namespace
from pathlib import Path
from typing import Awaitable, Callable, Optional

import httpx
import trio

from .config import (
    MountConfig, WriteProtectConfig,
    add_mount_to_config, get_config_path, load_config, normalize_prefix,
    read_config_file, remove_mount_from_config, validate_mount,
)
from .connector import (
    ContentOperation, CopyOperation, FederationConnector,
    GetOperation, HeadOperation, LinkOperation,
)
from .errors import FederationError, InvalidPath, UnsupportedDirection
from .models import ResourceKind
from .native_store import RepositoryClient

log = logging.getLogger(__name__)


# --- ANSI formatting helpers ---

def _use_color() -> bool:
    """Check if terminal supports ANSI colors."""
    if os.environ.get("NO_COLOR"):
        return False
    if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
        return False
    return True

def _bold(text: str) -> str:
    return f"\033[1m{text}\033[0m" if _use_color() else text

def _green(text: str) -> str:
    return f"\033[32m{text}\033[0m" if _use_color() else text

def _yellow(text: str) -> str:
    return f"\033[33m{text}\033[0m" if _use_color() else text

def _red(text: str) -> str:
    return f"\033[31m{text}\033[0m" if _use_color() else text

def _dim(text: str) -> str:
    return f"\033[2m{text}\033[0m" if _use_color() else text


def _get_version() -> str:
    """Get package version."""
    from importlib.metadata import version, PackageNotFoundError
    try:
        return version("fedfs")
    except PackageNotFoundError:
        return "dev"


def _mask_secret(secret: str) -> str:
    """Mask a secret, showing only last 4 chars."""
    if len(secret) <= 4:
        return "****"
    return f"****{secret[-4:]}"


def _test_api(api_url: str) -> tuple[bool, str]:
    """Test repository API connectivity. Returns (reachable, detail)."""
    try:
        resp = httpx.get(f"{api_url}/health", timeout=5)
        if resp.status_code == 200:
            return True, "ok"
        return False, f"HTTP {resp.status_code}"
    except httpx.ConnectError:
        return False, "connection refused"
    except httpx.HTTPError as e:
        return False, str(e)


def _config_path(args: Namespace) -> Optional[Path]:
    value = getattr(args, "config", None)
    return Path(value) if value else None


def _open_connector(args: Namespace) -> FederationConnector:
    config = load_config(_config_path(args), cli_api_url=getattr(args, "api_url", None))
    store = RepositoryClient(config.api_url, config.token)
    return FederationConnector(config, store)


def _run(args: Namespace, action: Callable[[FederationConnector], Awaitable[None]]) -> int:
    """Run an async action against a fresh connector, mapping errors to exit codes."""
    async def runner() -> None:
        connector = _open_connector(args)
        try:
            await action(connector)
        finally:
            await connector.close()

    try:
        trio.run(runner)
    except UnsupportedDirection as e:
        print(_red(f"Refused: {e}"), file=sys.stderr)
        return 2
    except FederationError as e:
        print(_red(f"Error: {e}"), file=sys.stderr)
        return 1
    return 0


# --- Configuration commands ---

def cmd_status(args: Namespace) -> int:
    """Show configured mounts and repository reachability."""
    path = _config_path(args) or get_config_path()
    config = load_config(_config_path(args), cli_api_url=getattr(args, "api_url", None))

    print(f"\n{_bold(f'fedfs {_get_version()}')}\n")

    if not path.exists():
        print("No configuration found. Add a mount with:")
        print(f"  {_bold('fedfs mount add /files /srv/objects')}\n")
        return 0

    if config.mounts:
        print(f"{_bold('Mounts:')}")
        for mount in config.mounts:
            if not os.path.isdir(mount.root):
                state = _red("root missing")
            elif mount.write_protect.allow_federation_write:
                state = _yellow("read-write")
            else:
                state = _green("read-only")
            print(f"  {mount.prefix:<20s} {mount.root:<40s} {state}")
    else:
        print(f"{_bold('Mounts:')} {_dim('(none configured)')}")

    print(f"\n{_bold('Cache TTL:')} {config.cache.ttl}s")

    reachable, detail = _test_api(config.api_url)
    api_state = _green("reachable") if reachable else _red(f"unreachable ({detail})")
    print(f"{_bold('Repository:')} {config.api_url} {api_state}\n")
    return 0


def cmd_config(args: Namespace) -> int:
    """Show the config file with the token masked."""
    path = _config_path(args) or get_config_path()
    exists = _green("(exists)") if path.exists() else _red("(NOT FOUND)")
    print(f"\n{_bold('config:')} {path} {exists}")

    data = read_config_file(path)
    if data:
        if data.get("token"):
            data = dict(data, token=_mask_secret(data["token"]))
        print(json.dumps(data, indent=2))
    print()
    return 0


def cmd_mount_add(args: Namespace) -> int:
    """Add (or replace) a mount in federation.json."""
    mount = MountConfig(
        prefix=normalize_prefix(args.prefix),
        root=os.path.realpath(os.path.expanduser(args.root)),
        exclude=tuple(args.exclude or ()),
        write_protect=WriteProtectConfig(allow_federation_write=args.allow_write),
    )
    error = validate_mount(mount)
    if error:
        print(_red(f"Error: {error}"), file=sys.stderr)
        return 1

    add_mount_to_config(mount, _config_path(args))
    mode = _yellow("read-write") if args.allow_write else _green("read-only")
    print(f"Mounted {_bold(mount.prefix)} -> {mount.root} ({mode})")
    return 0


def cmd_mount_remove(args: Namespace) -> int:
    """Remove a mount from federation.json."""
    prefix = normalize_prefix(args.prefix)
    if not remove_mount_from_config(prefix, _config_path(args)):
        print(_red(f"Error: no mount at {prefix}"), file=sys.stderr)
        return 1
    print(f"Removed mount {_bold(prefix)}")
    return 0


# --- Resource commands ---

def cmd_ls(args: Namespace) -> int:
    """List the children of a federated Container."""
    async def action(connector: FederationConnector) -> None:
        response = await connector.handle(GetOperation(args.path))
        view = response.view
        if view.kind is ResourceKind.BINARY:
            print(view.repo_path)
            return
        for child in view.children:
            name = f"{child.name}/" if child.kind is ResourceKind.CONTAINER else child.name
            print(_bold(name) if child.kind is ResourceKind.CONTAINER else name)

    return _run(args, action)


def cmd_stat(args: Namespace) -> int:
    """Show one federated resource's projected metadata."""
    async def action(connector: FederationConnector) -> None:
        response = await connector.handle(HeadOperation(args.path))
        view = response.view
        print(f"{_bold('path:')}          {view.repo_path}")
        print(f"{_bold('uri:')}           {connector.mapper.to_uri(view.repo_path)}")
        print(f"{_bold('kind:')}          {view.kind.value}")
        print(f"{_bold('types:')}         {', '.join(view.types)}")
        if view.kind is ResourceKind.BINARY:
            print(f"{_bold('size:')}          {view.size}")
        print(f"{_bold('last-modified:')} {response.headers['Last-Modified']}")

    return _run(args, action)


def cmd_cat(args: Namespace) -> int:
    """Write a resource's bytes to stdout (federated, native, or external content)."""
    async def action(connector: FederationConnector) -> None:
        if connector.mapper.mount_for(args.path) is not None:
            response = await connector.handle(GetOperation(args.path, with_content=True))
            if response.body is None:
                raise InvalidPath(f"{args.path} is a Container; use ls", path=args.path)
        else:
            response = await connector.handle(ContentOperation(args.path))
        out = sys.stdout.buffer
        async for chunk in response.body:
            out.write(chunk)
        out.flush()

    return _run(args, action)


def cmd_copy(args: Namespace) -> int:
    """Copy across the federation boundary; direction is inferred."""
    async def action(connector: FederationConnector) -> None:
        response = await connector.handle(
            CopyOperation(args.source, args.destination, overwrite=args.overwrite)
        )
        verb = "Created" if response.status == 201 else "Replaced"
        print(f"{verb} {_bold(response.headers['Location'])}")

    return _run(args, action)


def cmd_link(args: Namespace) -> int:
    """Point a native resource's content at a federated Binary."""
    async def action(connector: FederationConnector) -> None:
        await connector.handle(LinkOperation(args.resource_id, args.uri))
        print(f"Linked {_bold(args.resource_id)} -> {args.uri}")

    return _run(args, action)
