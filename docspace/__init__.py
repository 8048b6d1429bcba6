"""
DocSpace — multi-tenant document workspace core.

Documents form per-user trees; access is granted per document and
inherited down the tree (strongest grant on the path to the root wins,
the owner always holds EDITOR). Sharing works through direct grants for
registered users and single-use invitation tokens for everyone else.

Entry point for callers is ``docspace.workspace.Workspace``.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "permissions", "hierarchy", "sharing", "workspace"]
