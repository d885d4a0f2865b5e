"""Data models for the Plainflux index."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Priority(str, Enum):
    """Todo priority levels."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Numeric shorthand used by ``p:1`` / ``p:2`` / ``p:3`` tokens
NUMERIC_PRIORITIES = {
    "1": Priority.HIGH,
    "2": Priority.MEDIUM,
    "3": Priority.LOW,
}


class Link(BaseModel):
    """A resolved wikilink edge between two notes."""
    from_note: str = Field(..., description="Path of the note containing the link")
    to_note: str = Field(..., description="Path of the note being linked to")

    model_config = {"frozen": True}


class ParsedTodo(BaseModel):
    """A checkbox item as found in note text."""
    line_number: int = Field(..., ge=1, description="1-based physical line")
    content: str
    is_completed: bool = False
    due_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    priority: Optional[Priority] = None
    indent_level: int = Field(default=0, ge=0)
    parent_line: Optional[int] = None
    recurrence_pattern: Optional[str] = None


class Todo(ParsedTodo):
    """A todo as stored in the index."""
    id: Optional[int] = None
    note_path: str


class Block(BaseModel):
    """A heading addressable by its slug."""
    block_id: str
    line_number: int = Field(..., ge=1)
    content: str = Field(..., description="Heading text without the '#' markers")


class ParsedNote(BaseModel):
    """Everything the extractor finds in one note's text."""
    links: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    todos: List[ParsedTodo] = Field(default_factory=list)
    blocks: List[Block] = Field(default_factory=list)


class GraphNode(BaseModel):
    """A note in a link graph."""
    id: str
    label: str
    title: str


class GraphEdge(BaseModel):
    """A directed link in a link graph."""
    source: str = Field(..., alias="from")
    target: str = Field(..., alias="to")

    model_config = {"populate_by_name": True}


class GraphData(BaseModel):
    """Nodes and edges for graph views."""
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class IndexStats(BaseModel):
    """Row counts per index table."""
    links: int = 0
    tags: int = 0
    todos: int = 0
    blocks: int = 0
    documents: int = 0
    tracked_files: int = 0


@dataclass
class SyncReport:
    """Outcome of one sync pass.

    ``relinked`` lists unchanged notes that were indexed again because a
    note they link to by name appeared or disappeared; they stay listed
    in ``unchanged`` as well. ``files_touched`` counts the files that were
    re-indexed or removed, so a pass over an unchanged tree reports zero.
    """
    created: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    relinked: List[str] = field(default_factory=list)
    forced: bool = False

    @property
    def files_touched(self) -> int:
        return (
            len(self.created) + len(self.modified) + len(self.deleted) + len(self.relinked)
        )

    def summary(self) -> str:
        return (
            f"{len(self.created)} created, {len(self.modified)} modified, "
            f"{len(self.deleted)} deleted, {len(self.unchanged)} unchanged, "
            f"{len(self.relinked)} relinked, {len(self.failed)} failed"
        )
