"""
Tests for checkpoint creation, restore, eviction and persistence.
"""

from unittest.mock import AsyncMock

import pytest

from toolhost_resilience.exceptions import (
    CheckpointError,
    CheckpointNotFoundError,
    DataIntegrityError,
)
from toolhost_resilience.integrity import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointStore,
    DataIntegrityManager,
    compute_checksum,
)
from toolhost_resilience.models import Workspace


def make_manager(workspaces: dict, clock, store: CheckpointStore | None = None) -> DataIntegrityManager:
    return DataIntegrityManager(get_workspace=workspaces.get, store=store, clock=clock)


class TestChecksum:

    def test_key_order_does_not_matter(self) -> None:
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})

    def test_content_changes_checksum(self) -> None:
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestCreateCheckpoint:

    @pytest.mark.anyio
    async def test_create_and_restore_round_trip(self, workspace_data, ticking_clock) -> None:
        """Test that a restored snapshot equals the workspace at checkpoint time."""
        manager = make_manager({"ws-1": workspace_data}, ticking_clock)
        checkpoint = await manager.create_checkpoint("ws-1", "Before export")

        assert checkpoint.id.startswith("checkpoint_")
        assert checkpoint.workspace_id == "ws-1"
        assert checkpoint.metadata.description == "Before export"
        assert checkpoint.metadata.file_count == 2
        assert checkpoint.metadata.data_size > 0

        restored = await manager.restore_checkpoint(checkpoint.id)
        assert restored == workspace_data

    @pytest.mark.anyio
    async def test_snapshot_is_independent_of_live_workspace(self, workspace_data, ticking_clock) -> None:
        manager = make_manager({"ws-1": workspace_data}, ticking_clock)
        checkpoint = await manager.create_checkpoint("ws-1")

        workspace_data["name"] = "Renamed"
        workspace_data["files"][0]["size"] = 1

        restored = await manager.restore_checkpoint(checkpoint.id)
        assert restored["name"] == "Poster design"
        assert restored["files"][0]["size"] == 2048

    @pytest.mark.anyio
    async def test_restored_copy_is_independent_of_store(self, workspace_data, ticking_clock) -> None:
        manager = make_manager({"ws-1": workspace_data}, ticking_clock)
        checkpoint = await manager.create_checkpoint("ws-1")

        first = await manager.restore_checkpoint(checkpoint.id)
        first["files"].clear()

        second = await manager.restore_checkpoint(checkpoint.id)
        assert len(second["files"]) == 2

    @pytest.mark.anyio
    async def test_pydantic_workspace_and_async_fetcher(self, workspace_data, ticking_clock) -> None:
        workspace = Workspace.model_validate(workspace_data)
        manager = DataIntegrityManager(get_workspace=AsyncMock(return_value=workspace), clock=ticking_clock)

        checkpoint = await manager.create_checkpoint("ws-1")
        restored = await manager.restore_checkpoint(checkpoint.id)

        assert Workspace.model_validate(restored) == workspace

    @pytest.mark.anyio
    async def test_missing_workspace(self, ticking_clock) -> None:
        manager = make_manager({}, ticking_clock)
        with pytest.raises(CheckpointError, match="Workspace ws-9 not found"):
            await manager.create_checkpoint("ws-9")

    @pytest.mark.anyio
    async def test_invalid_workspace(self, workspace_data, ticking_clock) -> None:
        workspace_data["name"] = ""
        manager = make_manager({"ws-1": workspace_data}, ticking_clock)
        with pytest.raises(CheckpointError) as exc_info:
            await manager.create_checkpoint("ws-1")
        assert exc_info.value.details["errors"] == ["MISSING_NAME"]

    @pytest.mark.anyio
    async def test_malformed_files_are_refused(self, workspace_data, ticking_clock) -> None:
        """Test that a workspace with non-object or list-id files is refused with a CheckpointError."""
        entry = {"id": ["x"], "name": "a.txt", "type": "text/plain"}
        workspace_data["files"] = [None, entry, dict(entry)]
        manager = make_manager({"ws-1": workspace_data}, ticking_clock)
        with pytest.raises(CheckpointError) as exc_info:
            await manager.create_checkpoint("ws-1")
        assert exc_info.value.details["errors"] == [
            "INVALID_FILE_REFERENCE", "INVALID_FILE_ID", "INVALID_FILE_ID", "DUPLICATE_FILE_ID",
        ]
        assert manager.get_checkpoints("ws-1") == []

    @pytest.mark.anyio
    async def test_retention_keeps_newest_ten(self, workspace_data, ticking_clock) -> None:
        """Test that only the ten most recent checkpoints survive."""
        manager = make_manager({"ws-1": workspace_data}, ticking_clock)
        created = [await manager.create_checkpoint("ws-1", f"cp {i}") for i in range(12)]

        kept = manager.get_checkpoints("ws-1")
        assert [c.id for c in kept] == [c.id for c in created[2:]]
        assert manager.get_latest_checkpoint("ws-1").id == created[-1].id
        with pytest.raises(CheckpointNotFoundError):
            await manager.restore_checkpoint(created[0].id)


class TestRestoreCheckpoint:

    @pytest.mark.anyio
    async def test_unknown_checkpoint(self) -> None:
        with pytest.raises(CheckpointNotFoundError, match="Checkpoint nope not found"):
            await DataIntegrityManager().restore_checkpoint("nope")

    @pytest.mark.anyio
    async def test_corrupted_checkpoint_is_refused(self, workspace_data, ticking_clock) -> None:
        """Test that a checkpoint whose data no longer matches its checksum is not restored."""
        manager = make_manager({"ws-1": workspace_data}, ticking_clock)
        checkpoint = await manager.create_checkpoint("ws-1")
        checkpoint.data["name"] = "tampered"

        with pytest.raises(DataIntegrityError) as exc_info:
            await manager.restore_checkpoint(checkpoint.id)

        assert exc_info.value.message == "Checkpoint data integrity check failed"
        assert exc_info.value.expected_checksum == checkpoint.metadata.checksum
        assert exc_info.value.actual_checksum != checkpoint.metadata.checksum
        assert manager.store.get(checkpoint.id) is checkpoint

    @pytest.mark.anyio
    async def test_delete_checkpoint(self, workspace_data, ticking_clock) -> None:
        manager = make_manager({"ws-1": workspace_data}, ticking_clock)
        checkpoint = await manager.create_checkpoint("ws-1")
        assert manager.delete_checkpoint(checkpoint.id) is True
        assert manager.delete_checkpoint(checkpoint.id) is False
        assert manager.get_latest_checkpoint("ws-1") is None


class TestCheckpointPersistence:

    @pytest.mark.anyio
    async def test_checkpoints_survive_reload(self, tmp_path, workspace_data, ticking_clock) -> None:
        store = CheckpointStore(tmp_path)
        manager = make_manager({"ws-1": workspace_data}, ticking_clock, store=store)
        checkpoint = await manager.create_checkpoint("ws-1")

        path = tmp_path / "checkpoints" / "ws-1" / f"{checkpoint.id}.json"
        assert path.exists()

        reloaded = make_manager({}, ticking_clock, store=CheckpointStore(tmp_path))
        assert [c.id for c in reloaded.get_checkpoints("ws-1")] == [checkpoint.id]
        assert await reloaded.restore_checkpoint(checkpoint.id) == workspace_data

    @pytest.mark.anyio
    async def test_eviction_removes_files(self, tmp_path, workspace_data, ticking_clock) -> None:
        manager = make_manager({"ws-1": workspace_data}, ticking_clock, store=CheckpointStore(tmp_path))
        for _ in range(11):
            await manager.create_checkpoint("ws-1")
        assert len(list((tmp_path / "checkpoints" / "ws-1").glob("*.json"))) == 10

    def test_unreadable_files_are_skipped(self, tmp_path) -> None:
        folder = tmp_path / "checkpoints" / "ws-1"
        folder.mkdir(parents=True)
        (folder / "broken.json").write_text("{not json")
        (folder / "partial.json").write_text('{"id": "x"}')
        assert len(CheckpointStore(tmp_path)) == 0

    def test_empty_store_is_kept(self) -> None:
        store = CheckpointStore()
        assert DataIntegrityManager(store=store).store is store

    @pytest.mark.anyio
    async def test_same_millisecond_checkpoints_keep_creation_order(self, tmp_path, workspace_data, clock) -> None:
        """Test that checkpoints sharing a timestamp reload in creation order."""
        manager = make_manager({"ws-1": workspace_data}, clock, store=CheckpointStore(tmp_path))
        created = [await manager.create_checkpoint("ws-1", f"cp {i}") for i in range(4)]
        assert [c.sequence for c in created] == [1, 2, 3, 4]

        reloaded = make_manager({}, clock, store=CheckpointStore(tmp_path))
        assert [c.id for c in reloaded.get_checkpoints("ws-1")] == [c.id for c in created]
        assert reloaded.get_latest_checkpoint("ws-1").id == created[-1].id

    def test_sequence_breaks_ties_over_file_names(self, tmp_path) -> None:
        store = CheckpointStore(tmp_path)
        for checkpoint_id, sequence in (("checkpoint_b", 1), ("checkpoint_a", 2)):
            store.save(Checkpoint(
                id=checkpoint_id,
                workspace_id="ws-1",
                timestamp=1_700_000_000_000,
                sequence=sequence,
                data={"id": "ws-1"},
                metadata=CheckpointMetadata(checksum=compute_checksum({"id": "ws-1"})),
            ))

        reloaded = CheckpointStore(tmp_path)
        assert [c.id for c in reloaded.list_for_workspace("ws-1")] == ["checkpoint_b", "checkpoint_a"]
