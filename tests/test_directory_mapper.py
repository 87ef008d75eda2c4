"""Tests for the directory mapper: paths, scanning and file operations."""
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from jotnotes.exceptions import ErrorCode, StorageError
from jotnotes.models.schema import TRASH_FOLDER


class TestLocations:
    """Tests for note location resolution."""

    def test_unfiled(self, mapper, notes_root, note_factory):
        note = note_factory(id="a")
        assert mapper.path_for(note) == notes_root / "a.md"

    def test_folder(self, mapper, notes_root, note_factory):
        note = note_factory(id="a", folder="Work")
        assert mapper.path_for(note) == notes_root / "Work" / "a.md"

    def test_trash(self, mapper, notes_root, note_factory):
        note = note_factory(id="a", folder=TRASH_FOLDER, original_folder="Work")
        assert mapper.path_for(note) == notes_root / ".trash" / "a.md"


class TestScan:
    """Tests for scan_all."""

    def test_missing_root_scans_empty(self, tmp_path):
        from jotnotes.storage.directory_mapper import DirectoryMapper

        result = DirectoryMapper(tmp_path / "nope").scan_all()
        assert result.notes == []
        assert result.folders == []

    def test_file_without_front_matter(self, mapper, notes_root):
        """A bare markdown file becomes an unfiled, untitled note."""
        (notes_root / "note1.md").write_text("Hello", encoding="utf-8")
        result = mapper.scan_all()
        assert len(result.notes) == 1
        note = result.notes[0]
        assert note.id == "note1"
        assert note.title == "Untitled"
        assert note.folder == ""
        assert note.content == "Hello"

    def test_folder_defaults_to_directory(self, mapper, notes_root):
        (notes_root / "Work").mkdir()
        (notes_root / "Work" / "a.md").write_text("no metadata", encoding="utf-8")
        result = mapper.scan_all()
        assert result.folders == ["Work"]
        assert result.notes[0].folder == "Work"

    def test_empty_directories_are_folders(self, mapper, notes_root):
        (notes_root / "Empty").mkdir()
        (notes_root / "Also").mkdir()
        assert mapper.scan_all().folders == ["Also", "Empty"]
        assert mapper.load_folders() == ["Also", "Empty"]

    def test_trash_forces_sentinel(self, mapper, notes_root):
        """Files in .trash are trashed whatever their metadata says."""
        trash = notes_root / ".trash"
        trash.mkdir()
        (trash / "t.md").write_text(
            "---\nid: t\nfolder: Work\noriginalFolder: Work\n---\n\nbody", encoding="utf-8"
        )
        result = mapper.scan_all()
        assert result.folders == []
        note = result.notes[0]
        assert note.folder == TRASH_FOLDER
        assert note.original_folder == "Work"

    def test_hidden_directories_skipped(self, mapper, notes_root):
        hidden = notes_root / ".git"
        hidden.mkdir()
        (hidden / "x.md").write_text("x", encoding="utf-8")
        result = mapper.scan_all()
        assert result.notes == []
        assert result.folders == []

    def test_nested_directories_invisible(self, mapper, notes_root):
        nested = notes_root / "Work" / "deeper"
        nested.mkdir(parents=True)
        (nested / "x.md").write_text("x", encoding="utf-8")
        assert mapper.scan_all().notes == []

    def test_non_markdown_ignored(self, mapper, notes_root):
        (notes_root / "image.png").write_bytes(b"\x89PNG")
        (notes_root / "readme.txt").write_text("x", encoding="utf-8")
        assert mapper.scan_all().notes == []

    def test_unreadable_file_skipped(self, mapper, notes_root):
        """Undecodable files are skipped, the rest still load."""
        (notes_root / "bad.md").write_bytes(b"\xff\xfe\xfa")
        (notes_root / "good.md").write_text("fine", encoding="utf-8")
        result = mapper.scan_all()
        assert [n.id for n in result.notes] == ["good"]

    def test_scan_is_sorted(self, mapper, notes_root):
        for name in ("c", "a", "b"):
            (notes_root / f"{name}.md").write_text(name, encoding="utf-8")
        assert [n.id for n in mapper.scan_all().notes] == ["a", "b", "c"]

    def test_written_notes_scan_back(self, mapper, note_factory):
        notes = [
            note_factory(content="one", title="one"),
            note_factory(content="two", title="two", folder="Work"),
            note_factory(content="three", folder=TRASH_FOLDER, original_folder="Work"),
        ]
        for note in notes:
            mapper.write_note(note)
        scanned = {n.id: n for n in mapper.scan_all().notes}
        assert scanned == {n.id: n for n in notes}


class TestFileOperations:
    """Tests for writing and deleting note files."""

    def test_write_creates_directory(self, mapper, notes_root, note_factory):
        path = mapper.write_note(note_factory(id="a", folder="New"))
        assert path == notes_root / "New" / "a.md"
        assert path.read_text(encoding="utf-8").startswith("---\n")

    def test_write_leaves_no_temp_file(self, mapper, notes_root, note_factory):
        mapper.write_note(note_factory(id="a"))
        assert sorted(os.listdir(notes_root)) == ["a.md"]

    def test_write_failure_raises_storage_error(self, mapper, note_factory):
        with patch("jotnotes.storage.directory_mapper.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError) as exc_info:
                mapper.write_note(note_factory(id="a"))
        assert exc_info.value.code == ErrorCode.STORAGE_WRITE_FAILED

    def test_unencodable_content_raises_storage_error(self, mapper, notes_root, note_factory):
        note = note_factory(id="a").model_copy(update={"content": "abc \udcff"})
        with pytest.raises(StorageError) as exc_info:
            mapper.write_note(note)
        assert exc_info.value.code == ErrorCode.STORAGE_WRITE_FAILED
        assert os.listdir(notes_root) == []

    def test_failed_replace_removes_temp_file(self, mapper, notes_root, note_factory):
        with patch("jotnotes.storage.directory_mapper.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError):
                mapper.write_note(note_factory(id="a"))
        assert os.listdir(notes_root) == []

    def test_delete_missing_is_not_error(self, mapper, note_factory):
        assert mapper.delete_note_file(note_factory(id="ghost")) is False

    def test_delete_existing(self, mapper, note_factory):
        note = note_factory(id="a")
        path = mapper.write_note(note)
        assert mapper.delete_note_file(note) is True
        assert not path.exists()


class TestFolderDirectories:
    """Tests for folder directory management."""

    def test_create_is_idempotent(self, mapper, notes_root):
        mapper.create_folder_dir("Work")
        mapper.create_folder_dir("Work")
        assert (notes_root / "Work").is_dir()

    def test_remove_empty(self, mapper, notes_root):
        (notes_root / "Work").mkdir()
        assert mapper.remove_folder_dir("Work") is True
        assert not (notes_root / "Work").exists()

    def test_remove_clears_temp_leftovers(self, mapper, notes_root):
        (notes_root / "Work").mkdir()
        (notes_root / "Work" / ".abc.md.tmp").write_text("partial", encoding="utf-8")
        assert mapper.remove_folder_dir("Work") is True
        assert not (notes_root / "Work").exists()

    def test_remove_keeps_directory_with_leftovers(self, mapper, notes_root):
        """Notes, attachments and nested directories are never deleted with the folder."""
        work = notes_root / "Work"
        (work / "nested").mkdir(parents=True)
        (work / "keep.md").write_text("x", encoding="utf-8")
        (work / "sketch.png").write_bytes(b"\x89PNG")
        with pytest.raises(StorageError) as exc_info:
            mapper.remove_folder_dir("Work")
        assert exc_info.value.code == ErrorCode.STORAGE_DIR_NOT_EMPTY
        assert "keep.md, nested, sketch.png" in exc_info.value.message
        assert (work / "keep.md").exists()
        assert (work / "sketch.png").exists()
        assert (work / "nested").is_dir()

    def test_remove_missing(self, mapper):
        assert mapper.remove_folder_dir("Nope") is False

    def test_remove_failure_raises(self, mapper, notes_root):
        (notes_root / "Work").mkdir()
        with patch.object(Path, "rmdir", side_effect=PermissionError("denied")):
            with pytest.raises(StorageError) as exc_info:
                mapper.remove_folder_dir("Work")
        assert exc_info.value.code == ErrorCode.STORAGE_DELETE_FAILED

    def test_ensure_dirs_creates_root(self, tmp_path):
        from jotnotes.storage.directory_mapper import DirectoryMapper

        mapper = DirectoryMapper(tmp_path / "a" / "b")
        mapper.ensure_dirs()
        assert (tmp_path / "a" / "b").is_dir()
