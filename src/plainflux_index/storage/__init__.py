"""Storage layer for the Plainflux index."""
from plainflux_index.storage.index_store import IndexStore
from plainflux_index.storage.link_resolver import LinkResolver, iter_note_files

__all__ = ["IndexStore", "LinkResolver", "iter_note_files"]
