"""
Tests for the OperationQueue FIFO and its JSONL persistence.
"""

import json

import pytest

from toolhost_resilience.offline import OperationQueue, OperationStatus, OperationType


@pytest.fixture
def queue(tmp_path, ticking_clock) -> OperationQueue:
    return OperationQueue(tmp_path, clock=ticking_clock)


class TestPushPop:
    """Test basic FIFO behaviour."""

    def test_fifo_order(self, queue) -> None:
        first = queue.push(OperationType.WORKSPACE_SAVE, {"id": "ws-1"})
        second = queue.push("file-upload", {"name": "a.png"})

        assert first.id.startswith("op_")
        assert second.type == OperationType.FILE_UPLOAD
        assert [op.id for op in queue.get_pending()] == [first.id, second.id]

        popped = queue.pop()
        assert popped.id == first.id
        assert popped.status == OperationStatus.PROCESSING
        assert queue.get_pending_count() == 1

    def test_pop_empty(self, queue) -> None:
        assert queue.pop() is None

    def test_unknown_type_rejected(self, queue) -> None:
        with pytest.raises(ValueError):
            queue.push("teleport", {})

    def test_returned_copies_are_detached(self, queue) -> None:
        operation = queue.push(OperationType.TOOL_OPERATION, {"cmd": "crop"})
        operation.retry_count = 99
        assert queue.get(operation.id).retry_count == 0

    def test_complete(self, queue) -> None:
        operation = queue.push(OperationType.WORKSPACE_SAVE, {})
        queue.pop()
        queue.complete(operation.id)
        assert queue.get(operation.id).status == OperationStatus.COMPLETED
        with pytest.raises(KeyError):
            queue.complete("op_missing")


class TestFailures:

    def test_requeue_front_preserves_order(self, queue) -> None:
        """Test that a failed replay goes back ahead of later operations."""
        first = queue.push(OperationType.WORKSPACE_SAVE, {"n": 1})
        second = queue.push(OperationType.WORKSPACE_SAVE, {"n": 2})

        queue.pop()
        updated = queue.requeue_front(first.id)

        assert updated.retry_count == 1
        assert updated.status == OperationStatus.PENDING
        assert [op.id for op in queue.get_pending()] == [first.id, second.id]

    def test_failed_after_max_retries(self, queue) -> None:
        operation = queue.push(OperationType.FILE_PROCESS, {}, max_retries=2)

        queue.pop()
        queue.requeue_front(operation.id)
        queue.pop()
        updated = queue.requeue_front(operation.id)

        assert updated.status == OperationStatus.FAILED
        assert queue.get_pending() == []
        assert queue.pop() is None

    def test_reset_failed(self, queue) -> None:
        operation = queue.push(OperationType.FILE_PROCESS, {}, max_retries=1)
        queue.pop()
        queue.requeue_front(operation.id)

        reset = queue.reset_failed()

        assert [op.id for op in reset] == [operation.id]
        assert reset[0].retry_count == 0
        assert queue.get_pending_count() == 1

    def test_release_does_not_count_failure(self, queue) -> None:
        operation = queue.push(OperationType.WORKSPACE_SAVE, {})
        queue.pop()
        queue.release(operation.id)
        restored = queue.get(operation.id)
        assert restored.status == OperationStatus.PENDING
        assert restored.retry_count == 0
        assert queue.get_pending_count() == 1


class TestPersistence:

    def test_restore_latest_state(self, tmp_path, ticking_clock) -> None:
        """Test that a new queue picks up pending work from the JSONL file."""
        queue = OperationQueue(tmp_path, clock=ticking_clock)
        done = queue.push(OperationType.WORKSPACE_SAVE, {"n": 1})
        in_flight = queue.push(OperationType.WORKSPACE_SAVE, {"n": 2})
        waiting = queue.push(OperationType.WORKSPACE_SAVE, {"n": 3})
        queue.pop()
        queue.complete(done.id)
        queue.pop()

        restored = OperationQueue(tmp_path, clock=ticking_clock)

        assert [op.id for op in restored.get_pending()] == [in_flight.id, waiting.id]
        assert restored.get(done.id).status == OperationStatus.COMPLETED
        assert restored.get(in_flight.id).status == OperationStatus.PENDING
        assert restored.get(waiting.id).payload == {"n": 3}

    def test_jsonl_is_append_only(self, tmp_path, ticking_clock) -> None:
        queue = OperationQueue(tmp_path, clock=ticking_clock)
        operation = queue.push(OperationType.WORKSPACE_SAVE, {})
        queue.pop()
        queue.complete(operation.id)

        lines = (tmp_path / "offline" / "operations.jsonl").read_text().splitlines()
        assert [json.loads(line)["status"] for line in lines] == ["pending", "processing", "completed"]

    def test_clear_completed_compacts_file(self, tmp_path, ticking_clock) -> None:
        queue = OperationQueue(tmp_path, clock=ticking_clock)
        done = queue.push(OperationType.WORKSPACE_SAVE, {})
        queue.push(OperationType.WORKSPACE_SAVE, {})
        queue.pop()
        queue.complete(done.id)

        assert queue.clear_completed() == 1
        lines = (tmp_path / "offline" / "operations.jsonl").read_text().splitlines()
        assert len(lines) == 1
        assert len(queue) == 1

    def test_in_memory_queue(self, ticking_clock) -> None:
        queue = OperationQueue(clock=ticking_clock)
        queue.push(OperationType.WORKSPACE_SAVE, {})
        assert queue.get_pending_count() == 1
