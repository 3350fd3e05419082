#!/usr/bin/env python3
"""
fedfs: filesystem federation connector

Projects directories into a repository namespace and copies resources across
the federation boundary.

Usage:
    fedfs mount add /files /srv/objects --exclude '*.tmp'
    fedfs ls /files/FileSystem1
    fedfs copy /files/FileSystem1/ds1 /copy-1/ds1
"""

import argparse
import logging
import sys
from typing import Optional

from . import cli

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fedfs",
        description="Filesystem federation connector",
    )
    parser.add_argument(
        "--config",
        help="Path to federation.json (default: $FEDFS_CONFIG or ~/.config/fedfs/federation.json)",
    )
    parser.add_argument(
        "--api-url",
        help="Native repository API URL (overrides federation.json)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show mounts and repository reachability")
    subparsers.add_parser("config", help="Show configuration (token masked)")

    mount_parser = subparsers.add_parser("mount", help="Manage federated mounts")
    mount_sub = mount_parser.add_subparsers(dest="mount_command")
    add_parser = mount_sub.add_parser("add", help="Add or replace a mount")
    add_parser.add_argument("prefix", help="Repository path prefix, e.g. /files")
    add_parser.add_argument("root", help="Filesystem directory to project")
    add_parser.add_argument(
        "--exclude", action="append", metavar="GLOB",
        help="Hide entries whose names match GLOB (repeatable)",
    )
    add_parser.add_argument(
        "--allow-write", action="store_true",
        help="Allow copying native resources into this mount",
    )
    remove_parser = mount_sub.add_parser("remove", help="Remove a mount")
    remove_parser.add_argument("prefix", help="Repository path prefix")

    ls_parser = subparsers.add_parser("ls", help="List a federated Container")
    ls_parser.add_argument("path", help="Repository path")

    stat_parser = subparsers.add_parser("stat", help="Show a federated resource")
    stat_parser.add_argument("path", help="Repository path")

    cat_parser = subparsers.add_parser("cat", help="Write resource content to stdout")
    cat_parser.add_argument("path", help="Federated path or native resource id")

    copy_parser = subparsers.add_parser("copy", help="Copy across the federation boundary")
    copy_parser.add_argument("source", help="Source repository path")
    copy_parser.add_argument("destination", help="Destination repository path")
    copy_parser.add_argument(
        "--overwrite", action="store_true",
        help="Replace an existing destination",
    )

    link_parser = subparsers.add_parser("link", help="Link native content to a federated Binary")
    link_parser.add_argument("resource_id", help="Native resource id")
    link_parser.add_argument("uri", help="Federation URI of the Binary")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "mount":
        mount_commands = {
            "add": cli.cmd_mount_add,
            "remove": cli.cmd_mount_remove,
        }
        if args.mount_command not in mount_commands:
            parser.error("mount requires a subcommand: add or remove")
        return mount_commands[args.mount_command](args)

    commands = {
        "status": cli.cmd_status,
        "config": cli.cmd_config,
        "ls": cli.cmd_ls,
        "stat": cli.cmd_stat,
        "cat": cli.cmd_cat,
        "copy": cli.cmd_copy,
        "link": cli.cmd_link,
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        log.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
