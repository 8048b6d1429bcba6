"""
DocSpace CLI — database bootstrap and operator commands.

Commands:
- docspace init                          — Create the workspace tables
- docspace cleanup-invitations           — Delete expired, unaccepted invitations
- docspace check-access DOC_ID USER_ID   — Print a user's effective level on a document
- docspace tree USER_ID                  — Print the document tree visible to a user
"""

from __future__ import annotations

import argparse
import logging
import uuid
from typing import List, Optional

from docspace.engine.config import DocSpaceConfig, load_config
from docspace.engine.errors import ConfigError, DocSpaceError
from docspace.engine.logging import ensure_logging, shutdown_logging

logger = logging.getLogger("docspace.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="docspace",
        description="DocSpace — document workspace core",
    )
    parser.add_argument(
        "--config", default=None, help="Path to docspace.yaml (default: auto-discover)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # docspace init
    subparsers.add_parser("init", help="Create the workspace tables")

    # docspace cleanup-invitations
    subparsers.add_parser("cleanup-invitations", help="Delete expired invitations")

    # docspace check-access
    access_parser = subparsers.add_parser("check-access", help="Effective permission of a user on a document")
    access_parser.add_argument("document_id", help="Document UUID")
    access_parser.add_argument("user_id", help="User UUID")

    # docspace tree
    tree_parser = subparsers.add_parser("tree", help="Document tree visible to a user")
    tree_parser.add_argument("user_id", help="User UUID")

    args = parser.parse_args(argv)

    try:
        if args.command == "init":
            return cmd_init(args)
        elif args.command == "cleanup-invitations":
            return cmd_cleanup_invitations(args)
        elif args.command == "check-access":
            return cmd_check_access(args)
        elif args.command == "tree":
            return cmd_tree(args)
        else:
            parser.print_help()
            return 0
    finally:
        shutdown_logging()


def _load(args: argparse.Namespace) -> Optional[DocSpaceConfig]:
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[ERROR] Failed to load config: {e.message}")
        return None
    ensure_logging(config.logging)
    return config


def _workspace(config: DocSpaceConfig, create_tables: bool = False):
    from docspace.workspace import Workspace
    return Workspace.from_config(config, create_tables=create_tables)


def _parse_uuid(value: str, label: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except ValueError:
        print(f"[ERROR] Invalid {label}: {value}")
        return None


def cmd_init(args: argparse.Namespace) -> int:
    """Create all workspace tables in the configured database."""
    config = _load(args)
    if config is None:
        return 1
    try:
        _workspace(config, create_tables=True)
    except Exception as e:
        logger.exception("init failed")
        print(f"[ERROR] Failed to create tables: {e}")
        return 1
    print(f"[OK] Workspace tables created ({config.environment})")
    return 0


def cmd_cleanup_invitations(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1
    from docspace.tasks import run_invitation_cleanup
    try:
        result = run_invitation_cleanup(_workspace(config))
    except DocSpaceError as e:
        print(f"[ERROR] {e.message}")
        return 1
    print(f"[OK] Deleted {result['deleted']} expired invitations")
    return 0


def cmd_check_access(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1
    document_id = _parse_uuid(args.document_id, "document id")
    user_id = _parse_uuid(args.user_id, "user id")
    if document_id is None or user_id is None:
        return 1
    try:
        level = _workspace(config).check_access(document_id, user_id)
    except DocSpaceError as e:
        print(f"[ERROR] {e.message}")
        return 1
    print(level.value if level is not None else "NONE")
    return 0


def cmd_tree(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1
    user_id = _parse_uuid(args.user_id, "user id")
    if user_id is None:
        return 1
    try:
        roots = _workspace(config).document_tree(user_id)
    except DocSpaceError as e:
        print(f"[ERROR] {e.message}")
        return 1

    if not roots:
        print("(no documents)")
        return 0
    for line in _render_tree(roots):
        print(line)
    return 0


def _render_tree(roots) -> List[str]:
    lines: List[str] = []
    stack = [(node, 0) for node in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        lines.append(f"{'  ' * depth}- {node.title} [{node.level.value}] {node.id}")
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return lines
