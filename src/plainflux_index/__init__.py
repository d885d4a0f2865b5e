"""
Plainflux Index - incremental indexing engine for a markdown knowledge base.
Notes live as plain files on disk; this package maintains a derived SQLite
index of links, tags, todos, heading blocks and full-text content so that
backlink, tag, task and search queries do not need to rescan the filesystem.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("plainflux-index")
except PackageNotFoundError:
    __version__ = "0.6.0"
