"""
Tests for WorkspaceStore persistence.
"""

import pytest

from toolhost_resilience.models import FileReference
from toolhost_resilience.storage import WorkspaceStore, new_uuid


@pytest.fixture
def store(tmp_path) -> WorkspaceStore:
    return WorkspaceStore(tmp_path)


class TestWorkspaceStore:

    def test_new_uuid_length(self) -> None:
        assert len(new_uuid()) == 8

    def test_create_and_reload(self, tmp_path, store) -> None:
        """Test that workspaces survive a new store instance."""
        workspace = store.create_workspace("Poster", type="creative", tools=["photopea"])
        assert (tmp_path / "workspaces" / f"{workspace.id}.json").exists()

        reloaded = WorkspaceStore(tmp_path)
        assert reloaded.get(workspace.id) == workspace

    def test_add_file_stamps_last_modified(self, store) -> None:
        workspace = store.create_workspace("Poster")
        updated = store.add_file(workspace.id, FileReference(id="f-1", name="a.png", type="image/png"))
        assert [f.id for f in updated.files] == ["f-1"]
        assert updated.last_modified >= workspace.last_modified
        assert store.get(workspace.id).files[0].name == "a.png"

    def test_add_file_missing_workspace(self, store) -> None:
        with pytest.raises(KeyError):
            store.add_file("nope", FileReference(id="f", name="a", type="text/plain"))

    @pytest.mark.anyio
    async def test_async_accessor(self, store) -> None:
        workspace = store.create_workspace("Poster")
        assert await store.get_workspace(workspace.id) == workspace
        assert await store.get_workspace("nope") is None

    def test_delete(self, tmp_path, store) -> None:
        workspace = store.create_workspace("Poster")
        assert store.delete_workspace(workspace.id) is True
        assert store.delete_workspace(workspace.id) is False
        assert store.list_workspaces() == []
        assert not (tmp_path / "workspaces" / f"{workspace.id}.json").exists()

    def test_invalid_files_skipped(self, tmp_path) -> None:
        (tmp_path / "workspaces").mkdir()
        (tmp_path / "workspaces" / "bad.json").write_text("{broken")
        (tmp_path / "workspaces" / "partial.json").write_text('{"name": "no id"}')
        assert WorkspaceStore(tmp_path).list_workspaces() == []
