"""Tests for incremental sync of the index with the notes tree."""

from unittest.mock import patch

import pytest

from plainflux_index.exceptions import IndexIOError, ValidationError
from plainflux_index.utils import file_mtime, read_note_file


class TestSyncPass:
    """Tests for a full sync pass."""

    def test_first_pass_creates_everything(self, sync_service, store, write_note):
        a = write_note("A.md", "[[B]] #one\n- [ ] task\n")
        b = write_note("sub/B.md", "# Bee\n")

        report = sync_service.sync()

        assert sorted(report.created) == sorted([str(a), str(b)])
        assert report.modified == [] and report.deleted == []
        assert report.files_touched == 2
        assert store.get_backlinks(b) == [str(a)]
        assert store.get_cached_mtime(a) == file_mtime(a)

    def test_second_pass_touches_nothing(self, sync_service, write_note):
        write_note("A.md", "#x")
        write_note("B.md", "[[A]]")
        sync_service.sync()

        with patch.object(
            sync_service.store, "reindex_note", wraps=sync_service.store.reindex_note
        ) as reindex:
            report = sync_service.sync()

        assert report.files_touched == 0
        assert len(report.unchanged) == 2
        reindex.assert_not_called()
        assert sync_service.files_touched == 2

    def test_modified_file_is_reindexed(self, sync_service, store, write_note, bump_mtime):
        path = write_note("A.md", "#before")
        sync_service.sync()

        path.write_text("#after", encoding="utf-8")
        bump_mtime(path)
        report = sync_service.sync()

        assert report.modified == [str(path)]
        assert report.files_touched == 1
        assert store.get_tags_for_note(path) == ["after"]
        assert store.get_cached_mtime(path) == file_mtime(path)

    def test_deleted_file_is_reconciled(self, sync_service, store, write_note):
        other = write_note("Other.md", "[[Gone]]")
        gone = write_note("Gone.md", "#bye [[Other]]\n- [ ] t\n# H\nunique words here")
        sync_service.sync()

        gone.unlink()
        report = sync_service.sync()

        assert report.deleted == [str(gone)]
        assert str(gone) not in store.get_all_cached_paths()
        assert store.get_tags_for_note(gone) == []
        assert store.get_todos_for_note(gone) == []
        assert store.get_blocks_for_note(gone) == []
        assert store.get_outgoing_links(gone) == []
        assert store.search("unique") == []
        assert store.get_all_tags() == []
        assert store.get_backlinks(other) == []

    def test_reserved_folders_are_not_indexed(self, sync_service, store, write_note):
        write_note("note.md", "#visible")
        write_note(".plainflux/config.md", "#hidden")
        write_note("images/caption.md", "#hidden")
        report = sync_service.sync()
        assert len(report.created) == 1
        assert store.get_all_tags() == ["visible"]

    def test_move_is_delete_plus_create(self, sync_service, store, write_note, notes_root):
        old = write_note("Inbox/Idea.md", "#idea spaceship design")
        linker = write_note("Index.md", "[[Idea]]")
        sync_service.sync()

        new = notes_root / "Archive" / "Idea.md"
        new.parent.mkdir()
        old.rename(new)
        report = sync_service.sync()

        assert report.deleted == [str(old)]
        assert report.created == [str(new)]
        assert store.search("spaceship") == [str(new)]
        assert store.get_notes_by_tag("idea") == [str(new)]
        assert str(old) not in store.get_all_cached_paths()
        assert report.relinked == [str(linker)]
        assert store.get_backlinks(old) == []
        assert store.get_outgoing_links(linker) == [str(new)]


class TestRelinking:
    """Tests for re-indexing unchanged notes whose link targets come and go."""

    def test_restored_file_regains_its_backlinks(self, sync_service, store, write_note):
        linker = write_note("A.md", "see [[B]]")
        target = write_note("B.md", "# Bee\n")
        sync_service.sync()

        target.unlink()
        report = sync_service.sync()
        assert report.deleted == [str(target)]
        assert store.get_backlinks(target) == []

        target.write_text("# Bee\n", encoding="utf-8")
        report = sync_service.sync()

        assert report.created == [str(target)]
        assert report.unchanged == [str(linker)]
        assert report.relinked == [str(linker)]
        assert report.files_touched == 2
        assert store.get_backlinks(target) == [str(linker)]
        assert store.get_cached_mtime(linker) == file_mtime(linker)

    def test_new_file_resolves_dangling_links(self, sync_service, store, write_note):
        linker = write_note("Index.md", "write [[Later]] and [[later#Plan]]")
        unrelated = write_note("Other.md", "[[Elsewhere]]")
        sync_service.sync()
        assert store.get_outgoing_links(linker) == []

        later = write_note("Ideas/Later.md", "# Plan\n")
        report = sync_service.sync()

        assert report.relinked == [str(linker)]
        assert str(unrelated) in report.unchanged
        assert store.get_outgoing_links(linker) == [str(later)]

    def test_deleting_one_of_two_same_named_notes(self, sync_service, store, write_note):
        first = write_note("Topic.md", "")
        second = write_note("zz/Topic.md", "")
        linker = write_note("Index.md", "[[Topic]]")
        sync_service.sync()
        assert store.get_outgoing_links(linker) == [str(first)]

        first.unlink()
        report = sync_service.sync()

        assert report.relinked == [str(linker)]
        assert store.get_outgoing_links(linker) == [str(second)]

    def test_relink_failure_is_reported(self, sync_service, store, write_note):
        linker = write_note("A.md", "[[B]]")
        sync_service.sync()
        target = write_note("B.md", "")

        def flaky_read(path):
            if str(path) == str(linker):
                raise IndexIOError("cannot read", path=str(path))
            return read_note_file(path)

        with patch("plainflux_index.services.sync_service.read_note_file", side_effect=flaky_read):
            report = sync_service.sync()

        assert report.created == [str(target)]
        assert report.relinked == []
        assert report.failed == [str(linker)]
        assert store.get_outgoing_links(linker) == []

    def test_sync_file_relinks_on_create_and_delete(self, sync_service, store, write_note):
        linker = write_note("A.md", "[[B]]")
        sync_service.sync()
        target = write_note("B.md", "")

        assert sync_service.sync_file(target) == "created"
        assert store.get_outgoing_links(linker) == [str(target)]

        target.unlink()
        assert sync_service.sync_file(target) == "deleted"
        assert store.get_outgoing_links(linker) == []

        target.write_text("", encoding="utf-8")
        assert sync_service.sync_file(target) == "created"
        assert store.get_backlinks(target) == [str(linker)]
        assert sync_service.files_touched == 7


class TestForceRebuild:
    """Tests for forced re-indexing."""

    def test_force_reindexes_every_file(self, sync_service, write_note):
        write_note("A.md", "a")
        write_note("B.md", "b")
        sync_service.sync()

        report = sync_service.rebuild()

        assert report.forced is True
        assert len(report.modified) == 2
        assert report.unchanged == []
        assert report.files_touched == 2

    def test_force_still_reconciles_deletions(self, sync_service, store, write_note):
        keep = write_note("Keep.md", "#keep")
        gone = write_note("Gone.md", "#gone")
        sync_service.sync()
        gone.unlink()

        report = sync_service.sync(force=True)

        assert report.deleted == [str(gone)]
        assert store.get_all_tags() == ["keep"]
        assert store.get_all_cached_paths() == {str(keep)}


class TestFailures:
    """Tests for per-file failure handling."""

    def test_unreadable_file_is_skipped_and_retried(self, sync_service, store, write_note):
        good = write_note("Good.md", "#good")
        bad = write_note("Bad.md", "#bad")

        def flaky_read(path):
            if str(path) == str(bad):
                raise IndexIOError("cannot read", path=str(path))
            return read_note_file(path)

        with patch("plainflux_index.services.sync_service.read_note_file", side_effect=flaky_read):
            report = sync_service.sync()

        assert report.failed == [str(bad)]
        assert report.created == [str(good)]
        assert store.get_cached_mtime(bad) is None

        # Metadata was left unset, so the next pass tries again
        report = sync_service.sync()
        assert report.created == [str(bad)]
        assert store.get_all_tags() == ["bad", "good"]

    def test_non_utf8_file_is_indexed(self, sync_service, store, notes_root):
        path = notes_root / "Legacy.md"
        path.write_bytes("caf\xe9 #legacy".encode("cp1252"))
        report = sync_service.sync()
        assert report.created == [str(path)]
        assert store.get_all_tags() == ["legacy"]


class TestSyncFile:
    """Tests for single-file sync."""

    def test_sync_file_states(self, sync_service, store, write_note, bump_mtime):
        path = write_note("One.md", "#first")
        assert sync_service.sync_file(path) == "created"
        assert sync_service.sync_file(path) == "unchanged"

        path.write_text("#second", encoding="utf-8")
        bump_mtime(path)
        assert sync_service.sync_file(path) == "modified"
        assert store.get_tags_for_note(path) == ["second"]

        path.unlink()
        assert sync_service.sync_file(path) == "deleted"
        assert store.get_all_tags() == []
        assert sync_service.sync_file(path) == "unchanged"

    def test_sync_file_rejects_paths_outside_root(self, sync_service, tmp_path):
        outside = tmp_path / "elsewhere.md"
        outside.write_text("x", encoding="utf-8")
        with pytest.raises(ValidationError):
            sync_service.sync_file(outside)

    def test_list_note_files(self, sync_service, write_note):
        write_note("a.md", "")
        write_note("images/b.md", "")
        assert [p.name for p in sync_service.list_note_files()] == ["a.md"]
