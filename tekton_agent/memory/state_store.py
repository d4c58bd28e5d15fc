import copy
import json
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from tekton_agent.core.exceptions import StateStoreLockedError
from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.types import AgentState, MemoryRecord

STATE_FILE_NAME = "state.json"
LOCK_FILE_NAME = "state.lock"
STATE_FORMAT_VERSION = 1
DEFAULT_MAX_MEMORIES = 100


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class StateStore:
    """
    Durable memory of past decisions and per-task outcome histories.

    The whole AgentState is kept in memory and flushed to
    ``<state_dir>/state.json`` after each mutation. One StateStore per process
    owns a state directory; ``claim()`` refuses a directory another live
    process holds.
    """

    def __init__(self, state_dir=".agent-state", max_memories: int = DEFAULT_MAX_MEMORIES):
        """
        Args:
            state_dir: Directory holding ``state.json``; created on first save.
            max_memories: Cap on the rolling memory; oldest records are evicted first.
        """
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / STATE_FILE_NAME
        self.lock_file = self.state_dir / LOCK_FILE_NAME
        self.max_memories = max(1, int(max_memories))
        self.state = AgentState()
        self.dirty = False
        self._owns_lock = False

    # ── Ownership ────────────────────────────────────────────────────────────

    def claim(self) -> None:
        """Take ownership of the state directory for this process.

        Raises:
            StateStoreLockedError: another live process already owns it.
        """
        pid = os.getpid()
        if self.lock_file.exists():
            try:
                holder = int(self.lock_file.read_text(encoding="utf-8").strip() or 0)
            except (OSError, ValueError):
                holder = 0
            if holder and holder != pid and _pid_alive(holder):
                log_json("ERROR", "state_dir_locked", details={"path": str(self.state_dir), "holder_pid": holder})
                raise StateStoreLockedError(
                    f"State directory {self.state_dir} is in use by process {holder}; "
                    "concurrent processes sharing one state directory are not supported."
                )
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.lock_file.write_text(str(pid), encoding="utf-8")
        self._owns_lock = True
        log_json("INFO", "state_dir_claimed", details={"path": str(self.state_dir), "pid": pid})

    def release(self) -> None:
        if not self._owns_lock:
            return
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            log_json("WARN", "state_lock_release_failed", details={"path": str(self.lock_file), "error": str(e)})
        self._owns_lock = False

    # ── Persistence ──────────────────────────────────────────────────────────

    def load(self) -> None:
        """
        Loads state from ``state.json`` if present. Any read or parse failure
        is logged and leaves an empty state; this method never raises.
        """
        if not self.state_file.exists():
            log_json("INFO", "state_file_not_found", details={"path": str(self.state_file), "message": "Starting fresh."})
            self.state = AgentState()
            return
        try:
            raw = json.loads(self.state_file.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise TypeError(f"state file must hold a JSON object, got {type(raw).__name__}")
            self.state = AgentState.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            log_json("ERROR", "state_load_failed", details={"path": str(self.state_file), "error": str(e)})
            self.state = AgentState()
            return
        log_json("INFO", "state_loaded", details={
            "path": str(self.state_file),
            "memories": len(self.state.memories),
            "tasks": len(self.state.task_history),
        })

    def save(self) -> bool:
        """
        Atomically persists the full state: writes a temp file next to
        ``state.json`` and swaps it in with ``os.replace``.

        Returns:
            bool: True when the state reached disk. On failure the store stays
            dirty and the next mutation's save retries.
        """
        payload = {"version": STATE_FORMAT_VERSION, **self.state.to_dict()}
        tmp_name = None
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(mode="w", delete=False, dir=self.state_dir,
                                             prefix=".state-", suffix=".tmp", encoding="utf-8") as tmp_file:
                tmp_name = tmp_file.name
                json.dump(payload, tmp_file, indent=2)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(tmp_name, self.state_file)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name and os.path.exists(tmp_name):
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            self.dirty = True
            log_json("ERROR", "state_save_failed", details={"path": str(self.state_file), "error": str(e)})
            return False
        self.dirty = False
        log_json("DEBUG", "state_saved", details={"path": str(self.state_file), "memories": len(self.state.memories)})
        return True

    # ── Mutation ─────────────────────────────────────────────────────────────

    def add_memory(self, record: MemoryRecord) -> None:
        """Appends to the rolling memory, evicting the oldest beyond ``max_memories``."""
        self.state.memories.append(record)
        overflow = len(self.state.memories) - self.max_memories
        if overflow > 0:
            del self.state.memories[:overflow]
        self.dirty = True

    def add_task_history(self, task_id: str, record: MemoryRecord) -> None:
        """Appends *record* to the task's history and counts it exactly once in stats."""
        self.state.task_history.append(task_id, record)
        stats = self.state.stats
        stats.total_tasks = len(self.state.task_history)
        if record.success:
            stats.successful_tasks += 1
        else:
            stats.failed_tasks += 1
        stats.last_run_timestamp = record.timestamp
        self.dirty = True

    def clear(self) -> None:
        self.state = AgentState()
        self.dirty = True

    # ── Queries ──────────────────────────────────────────────────────────────

    def get_recent_memories(self, count: int = 10) -> List[MemoryRecord]:
        if count <= 0:
            return []
        return list(self.state.memories[-count:])

    def get_task_history(self, task_id: str) -> List[MemoryRecord]:
        return self.state.task_history.get(task_id)

    def last_record(self, task_id: str) -> Optional[MemoryRecord]:
        history = self.state.task_history.get(task_id)
        return history[-1] if history else None

    def is_task_complete(self, task_id: str) -> bool:
        return any(record.success for record in self.state.task_history.get(task_id))

    def snapshot(self) -> AgentState:
        """Deep copy of the current state; mutating it does not touch the store."""
        return copy.deepcopy(self.state)

    def get_summary(self) -> str:
        stats = self.state.stats
        return (f"{len(self.state.memories)} memories, {stats.total_tasks} tasks "
                f"({stats.successful_tasks} successful, {stats.failed_tasks} failed)")
