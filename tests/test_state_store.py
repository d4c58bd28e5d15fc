import json
import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

import pytest

from tekton_agent.core.exceptions import StateStoreLockedError
from tekton_agent.core.types import Action, Decision, ExecutionResult, MemoryRecord
from tekton_agent.memory.state_store import LOCK_FILE_NAME, STATE_FILE_NAME, StateStore


def _record(task_id="t1", success=True, timestamp="2024-01-01T00:00:00+00:00", note="ok"):
    return MemoryRecord(
        timestamp=timestamp,
        decision=Decision(Action.RULES_ONLY, "because", 0.5, False, {"rules_changed": ["r"]}),
        result=ExecutionResult(success=success, artifact="doc" if success else None,
                               notes=[note], error=None if success else "boom"),
        success=success,
        task_id=task_id,
    )


class TestStateStore(unittest.TestCase):

    def setUp(self):
        self.tmp = TemporaryDirectory()
        self.state_dir = Path(self.tmp.name) / "state"
        self.store = StateStore(self.state_dir, max_memories=3)

    def tearDown(self):
        self.store.release()
        self.tmp.cleanup()

    def test_load_missing_file_starts_fresh(self):
        with patch("tekton_agent.memory.state_store.log_json") as mock_log_json:
            self.store.load()
        self.assertEqual(self.store.state.memories, [])
        self.assertEqual(self.store.state.stats.total_tasks, 0)
        mock_log_json.assert_called_with("INFO", "state_file_not_found", details=unittest.mock.ANY)

    def test_corrupted_state_file_loads_empty(self):
        self.state_dir.mkdir(parents=True)
        (self.state_dir / STATE_FILE_NAME).write_text("{not json", encoding="utf-8")
        with patch("tekton_agent.memory.state_store.log_json") as mock_log_json:
            self.store.load()
        self.assertEqual(self.store.state.memories, [])
        self.assertEqual(mock_log_json.call_args[0][:2], ("ERROR", "state_load_failed"))

    def test_memory_is_capped_fifo(self):
        for i in range(5):
            self.store.add_memory(_record(note=f"n{i}"))
        notes = [m.result.notes[0] for m in self.store.state.memories]
        self.assertEqual(notes, ["n2", "n3", "n4"])

    def test_task_history_counts_each_record_once(self):
        self.store.add_task_history("a", _record("a", success=False))
        self.store.add_task_history("a", _record("a", success=True, timestamp="2024-01-02T00:00:00+00:00"))
        self.store.add_task_history("b", _record("b", success=False))
        stats = self.store.state.stats
        self.assertEqual(stats.total_tasks, 2)
        self.assertEqual(stats.successful_tasks, 1)
        self.assertEqual(stats.failed_tasks, 2)
        self.assertEqual(stats.last_run_timestamp, "2024-01-01T00:00:00+00:00")
        self.assertTrue(self.store.is_task_complete("a"))
        self.assertFalse(self.store.is_task_complete("b"))
        self.assertFalse(self.store.is_task_complete("missing"))

    def test_save_then_load_round_trips(self):
        record = _record("a")
        self.store.add_memory(record)
        self.store.add_task_history("a", record)
        self.assertTrue(self.store.save())
        self.assertFalse(self.store.dirty)

        on_disk = json.loads((self.state_dir / STATE_FILE_NAME).read_text(encoding="utf-8"))
        self.assertEqual(on_disk["version"], 1)
        self.assertIn("task_history", on_disk)

        reloaded = StateStore(self.state_dir, max_memories=3)
        reloaded.load()
        self.assertEqual(reloaded.state.memories, self.store.state.memories)
        self.assertEqual(reloaded.state.task_history, self.store.state.task_history)
        self.assertEqual(reloaded.state.stats, self.store.state.stats)

    def test_save_failure_keeps_store_dirty(self):
        self.store.add_memory(_record())
        with patch("tekton_agent.memory.state_store.os.replace", side_effect=OSError("disk full")):
            self.assertFalse(self.store.save())
        self.assertTrue(self.store.dirty)
        self.assertEqual(len(self.store.state.memories), 1)
        leftovers = [p for p in self.state_dir.iterdir() if p.name.endswith(".tmp")]
        self.assertEqual(leftovers, [])

        self.assertTrue(self.store.save())
        self.assertFalse(self.store.dirty)

    def test_snapshot_is_detached(self):
        self.store.add_memory(_record())
        snapshot = self.store.snapshot()
        snapshot.memories.clear()
        snapshot.stats.total_tasks = 99
        self.assertEqual(len(self.store.state.memories), 1)
        self.assertEqual(self.store.state.stats.total_tasks, 0)

    def test_history_copies_do_not_leak(self):
        self.store.add_task_history("a", _record("a"))
        history = self.store.get_task_history("a")
        history.append(_record("a"))
        self.assertEqual(len(self.store.get_task_history("a")), 1)

    def test_recent_memories_window(self):
        for i in range(3):
            self.store.add_memory(_record(note=f"n{i}"))
        self.assertEqual([m.result.notes[0] for m in self.store.get_recent_memories(2)], ["n1", "n2"])
        self.assertEqual(self.store.get_recent_memories(0), [])


def test_claim_rejects_directory_held_by_live_process(tmp_path):
    tmp_path.joinpath(LOCK_FILE_NAME).write_text(str(os.getpid() + 1), encoding="utf-8")
    store = StateStore(tmp_path)
    with patch("tekton_agent.memory.state_store._pid_alive", return_value=True):
        with pytest.raises(StateStoreLockedError):
            store.claim()


def test_claim_takes_over_stale_lock_and_release_removes_it(tmp_path):
    lock = tmp_path / LOCK_FILE_NAME
    lock.write_text("424242", encoding="utf-8")
    store = StateStore(tmp_path)
    with patch("tekton_agent.memory.state_store._pid_alive", return_value=False):
        store.claim()
    assert lock.read_text(encoding="utf-8") == str(os.getpid())
    store.release()
    assert not lock.exists()


def test_clear_resets_state(tmp_path):
    store = StateStore(tmp_path)
    store.add_task_history("a", _record("a"))
    store.clear()
    assert store.state.stats.total_tasks == 0
    assert store.get_task_history("a") == []
    assert store.dirty


@pytest.mark.parametrize("content", [
    "[]",
    '"x"',
    '{"stats": 5}',
    '{"task_history": [["a", []]]}',
    '{"memories": [5]}',
    b"\xff\xfe not utf-8",
])
def test_wrongly_shaped_state_file_loads_empty(tmp_path, content):
    state_file = tmp_path / STATE_FILE_NAME
    if isinstance(content, bytes):
        state_file.write_bytes(content)
    else:
        state_file.write_text(content, encoding="utf-8")
    store = StateStore(tmp_path)

    with patch("tekton_agent.memory.state_store.log_json") as mock_log_json:
        store.load()

    assert store.state.memories == []
    assert store.state.stats.total_tasks == 0
    assert len(store.state.task_history) == 0
    assert mock_log_json.call_args[0][:2] == ("ERROR", "state_load_failed")
