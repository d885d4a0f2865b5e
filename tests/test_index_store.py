"""Tests for the index store."""

from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from plainflux_index.exceptions import ErrorCode, StorageError, TodoNotFoundError
from plainflux_index.models.schema import Link, Priority


class TestReindexNote:
    """Tests for replacing a note's derived rows."""

    def test_indexes_every_category(self, store, write_note, index_note):
        target = write_note("Target.md", "# Target\n")
        source = write_note("Source.md", "")
        content = (
            "# Heading One\n"
            "Link to [[Target]] and [[Nowhere]] #alpha #beta #alpha\n"
            "- [ ] first task @due(2025-02-01) p:2\n"
            "  - [x] nested done\n"
        )
        index_note(source, content)

        assert store.get_outgoing_links(source) == [str(target)]
        assert store.get_backlinks(target) == [str(source)]
        assert store.get_tags_for_note(source) == ["alpha", "beta"]

        todos = store.get_todos_for_note(source)
        assert [(t.line_number, t.is_completed, t.parent_line) for t in todos] == [
            (3, False, None),
            (4, True, 3),
        ]
        assert todos[0].due_date == "2025-02-01"
        assert todos[0].priority == Priority.MEDIUM

        blocks = store.get_blocks_for_note(source)
        assert [(b.block_id, b.line_number) for b in blocks] == [("heading-one", 1)]

    def test_reindex_is_idempotent(self, store, write_note, index_note):
        write_note("B.md", "")
        a = write_note("A.md", "")
        content = "[[B]] [[B]] #t #t\n- [ ] x\n# H\n"
        index_note(a, content)
        first = store.stats()
        index_note(a, content)
        assert store.stats() == first
        assert first.links == 1
        assert first.tags == 1
        assert first.todos == 1
        assert first.blocks == 1
        assert first.documents == 1

    def test_reindex_replaces_previous_version(self, store, write_note, index_note):
        write_note("B.md", "")
        c = write_note("C.md", "")
        a = write_note("A.md", "")
        index_note(a, "[[B]] #old\n- [ ] old task\n# Old\n")
        index_note(a, "[[C]] #new\n# New\n")

        assert store.get_outgoing_links(a) == [str(c)]
        assert store.get_tags_for_note(a) == ["new"]
        assert store.get_todos_for_note(a) == []
        assert [b.block_id for b in store.get_blocks_for_note(a)] == ["new"]
        assert store.get_notes_by_tag("old") == []

    def test_duplicate_heading_slugs_keep_first(self, store, index_note, notes_root):
        path = notes_root / "Dups.md"
        index_note(path, "# Same\ntext\n## same\n")
        blocks = store.get_blocks_for_note(path)
        assert [(b.block_id, b.line_number) for b in blocks] == [("same", 1)]

    def test_failed_reindex_keeps_previous_state(self, store, notes_root, index_note):
        path = notes_root / "Note.md"
        index_note(path, "#before\n- [ ] keep me\n")

        with patch.object(
            store.fts, "replace", side_effect=OperationalError("INSERT", {}, Exception("boom"))
        ):
            with pytest.raises(StorageError) as exc_info:
                index_note(path, "#after\n")

        assert exc_info.value.code == ErrorCode.STORAGE_WRITE_FAILED
        assert store.get_tags_for_note(path) == ["before"]
        assert [t.content for t in store.get_todos_for_note(path)] == ["keep me"]
        assert store.search("before") == [str(path)]
        assert store.search("after") == []


class TestRemoveNote:
    """Tests for removing a note from the index."""

    def test_remove_clears_all_rows(self, store, write_note, index_note):
        b = write_note("B.md", "")
        a = write_note("A.md", "")
        index_note(b, "[[A]] body words\n")
        index_note(a, "[[B]] #tag\n- [ ] todo\n# Block\nsearchable words\n")

        store.remove_note(a)

        assert store.get_outgoing_links(a) == []
        assert store.get_backlinks(a) == []
        assert store.get_tags_for_note(a) == []
        assert store.get_todos_for_note(a) == []
        assert store.get_blocks_for_note(a) == []
        assert str(a) not in store.search("searchable")
        assert all(
            str(a) not in (link.from_note, link.to_note) for link in store.get_all_links()
        )


class TestTodos:
    """Tests for todo queries and toggling."""

    def test_toggle_flips_only_completion(self, store, notes_root, index_note):
        path = notes_root / "T.md"
        index_note(path, "- [ ] task !high @due(2025-05-05)\n")

        assert store.toggle_todo(path, 1) is True
        todo = store.get_todo(path, 1)
        assert todo.is_completed is True
        assert todo.priority == Priority.HIGH
        assert todo.due_date == "2025-05-05"
        assert todo.content == "task !high @due(2025-05-05)"

        assert store.toggle_todo(path, 1) is False
        assert store.get_todo(path, 1).is_completed is False

    def test_toggle_missing_todo_raises(self, store, notes_root, index_note):
        path = notes_root / "T.md"
        index_note(path, "just text\n")
        with pytest.raises(TodoNotFoundError) as exc_info:
            store.toggle_todo(path, 1)
        assert exc_info.value.code == ErrorCode.TODO_NOT_FOUND
        assert not store.poisoned

    def test_todo_ordering(self, store, notes_root, index_note):
        b = notes_root / "b.md"
        a = notes_root / "a.md"
        index_note(b, "- [x] b1\n- [ ] b2\n")
        index_note(a, "- [ ] a1\n- [x] a2\n- [ ] a3\n")

        all_todos = [(t.note_path, t.line_number) for t in store.get_all_todos()]
        assert all_todos == [
            (str(a), 1),
            (str(a), 3),
            (str(a), 2),
            (str(b), 2),
            (str(b), 1),
        ]

        incomplete = [(t.note_path, t.line_number) for t in store.get_incomplete_todos()]
        assert incomplete == [(str(a), 1), (str(a), 3), (str(b), 2)]


class TestTagsAndLinks:
    """Tests for tag and link queries."""

    def test_tags_are_distinct_and_sorted(self, store, notes_root, index_note):
        index_note(notes_root / "one.md", "#zeta #Alpha #beta")
        index_note(notes_root / "two.md", "#beta #alpha")
        assert store.get_all_tags() == ["Alpha", "alpha", "beta", "zeta"]
        assert store.get_notes_by_tag("beta") == [
            str(notes_root / "one.md"),
            str(notes_root / "two.md"),
        ]
        assert store.get_notes_by_tag("#beta") == store.get_notes_by_tag("beta")
        assert store.get_tags_with_counts()["beta"] == 2

    def test_links_for_note_in_both_directions(self, store, write_note, index_note):
        a = write_note("A.md", "")
        b = write_note("B.md", "")
        c = write_note("C.md", "")
        index_note(a, "[[B]]")
        index_note(c, "[[A]]")
        index_note(b, "nothing")

        links = store.get_links_for_note(a)
        assert Link(from_note=str(a), to_note=str(b)) in links
        assert Link(from_note=str(c), to_note=str(a)) in links
        assert len(links) == 2
        assert len(store.get_all_links()) == 2


class TestSearch:
    """Tests for full-text search."""

    def test_search_ranks_and_stems(self, store, notes_root, index_note):
        index_note(notes_root / "Gardening.md", "Notes on gardening and planting tomatoes")
        index_note(notes_root / "Cooking.md", "Cooking tomatoes")
        results = store.search("tomato")
        assert set(results) == {
            str(notes_root / "Gardening.md"),
            str(notes_root / "Cooking.md"),
        }
        assert store.search("garden") == [str(notes_root / "Gardening.md")]

    def test_search_matches_title(self, store, notes_root, index_note):
        index_note(notes_root / "Quarterly Review.md", "numbers")
        assert store.search("quarterly") == [str(notes_root / "Quarterly Review.md")]

    def test_search_is_case_insensitive_and_unicode_aware(self, store, notes_root, index_note):
        index_note(notes_root / "Cafe.md", "Meeting at the CAFÉ downtown")
        assert store.search("café") == [str(notes_root / "Cafe.md")]

    def test_search_respects_limit(self, store, notes_root, index_note):
        for i in range(5):
            index_note(notes_root / f"n{i}.md", "common word")
        assert len(store.search("common", limit=3)) == 3

    def test_blank_query_returns_nothing(self, store, notes_root, index_note):
        index_note(notes_root / "n.md", "text")
        assert store.search("   ") == []

    def test_fts_syntax_passes_through(self, store, notes_root, index_note):
        index_note(notes_root / "a.md", "apples and pears")
        index_note(notes_root / "b.md", "apples only")
        assert store.search("apples AND pears") == [str(notes_root / "a.md")]
        assert set(store.search("pear*")) == {str(notes_root / "a.md")}

    def test_malformed_query_falls_back_to_like(self, store, notes_root, index_note):
        index_note(notes_root / "a.md", "use AND wisely")
        # A dangling operator is an FTS5 syntax error
        assert store.search("use AND") == [str(notes_root / "a.md")]

    def test_like_fallback_ranks_title_hits_first(self, store, notes_root, index_note):
        index_note(notes_root / "Body.md", "mentions widget here")
        index_note(notes_root / "Widget.md", "unrelated")
        store.fts.available = False
        assert store.search("widget") == [
            str(notes_root / "Widget.md"),
            str(notes_root / "Body.md"),
        ]


class TestBlocks:
    """Tests for block lookups."""

    def test_get_block(self, store, notes_root, index_note):
        path = notes_root / "Doc.md"
        index_note(path, "intro\n## Hello, World!\n")
        block = store.get_block(path, "hello-world")
        assert block.line_number == 2
        assert block.content == "Hello, World!"
        assert store.get_block(path, "missing") is None


class TestMetadata:
    """Tests for sync metadata operations."""

    def test_mtime_round_trip(self, store):
        assert store.get_cached_mtime("/n/a.md") is None
        store.set_cached_mtime("/n/a.md", 100, 5)
        assert store.get_cached_mtime("/n/a.md") == (100, 5)
        store.set_cached_mtime("/n/a.md", 101, 0)
        assert store.get_cached_mtime("/n/a.md") == (101, 0)

    def test_paths_clear_and_remove(self, store):
        store.set_cached_mtime("/n/a.md", 1, 0)
        store.set_cached_mtime("/n/b.md", 2, 0)
        assert store.get_all_cached_paths() == {"/n/a.md", "/n/b.md"}
        store.remove_cached_mtime("/n/a.md")
        assert store.get_all_cached_paths() == {"/n/b.md"}
        assert store.clear_all_metadata() == 1
        assert store.get_all_cached_paths() == set()


class TestPersistence:
    """Tests for reopening a file-backed index."""

    def test_index_survives_reopen(self, store, test_config, notes_root, index_note):
        from plainflux_index.storage.index_store import IndexStore

        index_note(notes_root / "Keep.md", "#kept persisted words")
        store.set_cached_mtime(notes_root / "Keep.md", 7, 8)
        store.close()

        reopened = IndexStore(db_url=test_config.get_db_url())
        try:
            assert reopened.get_all_tags() == ["kept"]
            assert reopened.search("persisted") == [str(notes_root / "Keep.md")]
            assert reopened.get_cached_mtime(notes_root / "Keep.md") == (7, 8)
        finally:
            reopened.close()

    def test_in_memory_store(self, memory_store, notes_root):
        memory_store.reindex_note(str(notes_root / "m.md"), "m", "#mem", notes_root)
        assert memory_store.get_all_tags() == ["mem"]


class TestLockPoisoning:
    """Tests for recovery after a failure while holding the lock."""

    def test_failure_poisons_and_next_call_recovers(self, store, notes_root, index_note, caplog):
        path = notes_root / "P.md"
        index_note(path, "#stable")

        with patch.object(
            store.tags, "get_all_tags", side_effect=OperationalError("SELECT", {}, Exception("x"))
        ):
            with pytest.raises(StorageError):
                store.get_all_tags()
        assert store.poisoned

        with caplog.at_level("WARNING", logger="plainflux_index"):
            assert store.get_all_tags() == ["stable"]
        assert not store.poisoned
        assert "LOCK_POISONED" in caplog.text


class TestMaintenance:
    """Tests for index maintenance operations."""

    def test_rebuild_fts_index_keeps_documents(self, store, notes_root, index_note):
        index_note(notes_root / "a.md", "alpha words")
        index_note(notes_root / "b.md", "beta words")
        assert store.rebuild_fts_index() == 2
        assert store.search("alpha") == [str(notes_root / "a.md")]

    def test_reset_fts_availability_restores_fts_queries(self, store, notes_root, index_note):
        index_note(notes_root / "a.md", "apples and pears")
        store.fts.available = False
        # The LIKE scan takes the wildcard literally
        assert store.search("pear*") == []

        assert store.reset_fts_availability() is True

        assert store.fts.available is True
        assert store.search("pear*") == [str(notes_root / "a.md")]

    def test_reset_fts_availability_fails_without_the_table(self, store):
        with store.engine.begin() as conn:
            conn.execute(text("DROP TABLE note_content"))

        assert store.reset_fts_availability() is False
        assert store.fts.available is False


class TestFindNotesLinkingTo:
    """Tests for finding notes by the link names they contain."""

    def test_matches_links_the_way_they_resolve(self, store, notes_root, index_note):
        index_note(notes_root / "plain.md", "see [[Target]]")
        index_note(notes_root / "suffix.md", "see [[target.md]]")
        index_note(notes_root / "block.md", "see [[TARGET#Intro]]")
        index_note(notes_root / "other.md", "see [[Targets]] and [[Else]]")
        index_note(notes_root / "none.md", "Target without brackets")

        assert store.find_notes_linking_to(["Target"]) == [
            str(notes_root / "block.md"),
            str(notes_root / "plain.md"),
            str(notes_root / "suffix.md"),
        ]

    def test_finds_links_that_resolve_nowhere(self, store, notes_root, index_note):
        index_note(notes_root / "a.md", "[[Missing]]")
        assert store.get_outgoing_links(notes_root / "a.md") == []
        assert store.find_notes_linking_to(["missing", "Else"]) == [str(notes_root / "a.md")]

    def test_no_names(self, store, notes_root, index_note):
        index_note(notes_root / "a.md", "[[A]]")
        assert store.find_notes_linking_to([]) == []
        assert store.find_notes_linking_to(["#frag"]) == []
