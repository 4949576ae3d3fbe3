"""Unit tests for LocalFileStorage."""

from pathlib import Path

import pytest

from cv_pipeline.storage.local import LocalFileStorage


@pytest.mark.unit
class TestLocalFileStorage:
    @pytest.fixture
    def storage(self, tmp_path: Path) -> LocalFileStorage:
        """Create a LocalFileStorage instance rooted in a temp directory."""
        return LocalFileStorage(str(tmp_path / "storage"))

    async def test_save_creates_file(self, storage: LocalFileStorage) -> None:
        """Saving bytes should create the file on disk."""
        content = b"%PDF-1.4 resume bytes"
        relative_path = await storage.save(content, "abc_1_cv.pdf")

        assert relative_path == "abc_1_cv.pdf"
        saved_file = storage.base_dir / "abc_1_cv.pdf"
        assert saved_file.read_bytes() == content

    async def test_save_with_candidate_subdir(self, storage: LocalFileStorage) -> None:
        """Saving with a subdirectory should auto-create the subdirectory."""
        relative_path = await storage.save(b"nested", "cv.pdf", subdir="candidate-123")

        assert relative_path == str(Path("candidate-123") / "cv.pdf")
        assert (storage.base_dir / "candidate-123" / "cv.pdf").read_bytes() == b"nested"

    async def test_retrieve_returns_absolute_path(self, storage: LocalFileStorage) -> None:
        relative_path = await storage.save(b"data", "findme.pdf")

        abs_path = await storage.retrieve(relative_path)
        assert abs_path.is_absolute()
        assert abs_path == storage.base_dir / "findme.pdf"

    async def test_read_returns_stored_bytes(self, storage: LocalFileStorage) -> None:
        relative_path = await storage.save(b"exact bytes", "cv.pdf", subdir="c1")
        assert await storage.read(relative_path) == b"exact bytes"

    async def test_delete_removes_file(self, storage: LocalFileStorage) -> None:
        relative_path = await storage.save(b"Delete me", "deleteme.pdf")
        assert (storage.base_dir / "deleteme.pdf").exists()

        await storage.delete(relative_path)

        assert not (storage.base_dir / "deleteme.pdf").exists()

    async def test_delete_missing_file_is_noop(self, storage: LocalFileStorage) -> None:
        await storage.delete("never_saved.pdf")

    async def test_retrieve_nonexistent_raises(self, storage: LocalFileStorage) -> None:
        """Retrieving a file that does not exist should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="File not found"):
            await storage.retrieve("no_such_file.pdf")

    async def test_paths_outside_root_are_refused(self, storage: LocalFileStorage) -> None:
        with pytest.raises(ValueError, match="escapes storage root"):
            await storage.save(b"x", "../outside.pdf")
        with pytest.raises(ValueError, match="escapes storage root"):
            await storage.retrieve("../../etc/passwd")
