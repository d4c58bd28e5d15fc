"""Shared data types for the decision core.

Everything that crosses a component boundary lives here: tasks and their
kind-specific payloads, change descriptors, decisions, execution results and
the memory records the State Store persists. Records that are written to disk
carry ``to_dict``/``from_dict`` pairs so a save/load round-trip reproduces an
equal object.
"""
from __future__ import annotations

import datetime
import uuid
from dataclasses import FrozenInstanceError, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union


def utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def new_task_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class TaskKind(str, Enum):
    UPDATE_TASK = "update-task"
    MONITOR_CHANGES = "monitor-changes"
    ANALYZE_IMPACT = "analyze-impact"
    BATCH_UPDATE = "batch-update"


class Action:
    """Action tags a Decision can carry."""
    GENERATIVE_PROPOSAL = "generative-proposal"
    RULES_ONLY = "rules-only"
    FLAG_FOR_REVIEW = "flag-for-review"
    AUTO_APPLY = "auto-apply"
    CHECK_CHANGES = "check-changes"
    SKIP = "skip"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChangeDescriptor:
    """One upstream capability change, as described by the change feed."""
    id: str
    title: str
    description: Optional[str] = None
    impact_areas: Tuple[str, ...] = ()
    suggested_fields: Dict[str, Any] = field(default_factory=dict)
    capability: Optional[str] = None

    @property
    def text(self) -> str:
        return " ".join(part for part in (self.title, self.description) if part)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "impact_areas": list(self.impact_areas),
            "suggested_fields": dict(self.suggested_fields),
            "capability": self.capability,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChangeDescriptor":
        areas = data.get("impact_areas", data.get("impactAreas")) or []
        suggested = (data.get("suggested_fields")
                     or data.get("suggestedFields")
                     or data.get("suggestedParams")
                     or {})
        # impact areas form a set; keep first-seen order for stable output
        unique_areas = tuple(dict.fromkeys(str(a) for a in areas))
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=data.get("description"),
            impact_areas=unique_areas,
            suggested_fields=dict(suggested),
            capability=data.get("capability"),
        )


@dataclass(frozen=True)
class UpdatePayload:
    document: Optional[str]
    changes: Tuple[ChangeDescriptor, ...] = ()


@dataclass(frozen=True)
class AnalyzePayload:
    document: Optional[str]
    changes: Tuple[ChangeDescriptor, ...] = ()


@dataclass(frozen=True)
class MonitorPayload:
    change_source: Optional[str] = None


@dataclass(frozen=True)
class BatchPayload:
    documents: Mapping[str, str]
    changes: Tuple[ChangeDescriptor, ...] = ()


TaskPayload = Union[UpdatePayload, AnalyzePayload, MonitorPayload, BatchPayload]

_TASK_MUTABLE_FIELDS = frozenset({"retry_count"})

_PAYLOAD_TYPES = {
    TaskKind.UPDATE_TASK: UpdatePayload,
    TaskKind.ANALYZE_IMPACT: AnalyzePayload,
    TaskKind.MONITOR_CHANGES: MonitorPayload,
    TaskKind.BATCH_UPDATE: BatchPayload,
}


@dataclass
class Task:
    """A unit of work for the Decision Engine.

    Only ``retry_count`` changes after construction; the orchestrator bumps it
    when re-enqueueing a failed task.
    """
    id: str
    kind: TaskKind
    payload: TaskPayload
    priority: int = 0
    retry_count: int = 0
    created_at: str = field(default_factory=utc_now)

    def __post_init__(self):
        expected = _PAYLOAD_TYPES.get(self.kind)
        if expected is not None and not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} task expects {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )
        object.__setattr__(self, "_sealed", True)

    def __setattr__(self, name, value):
        if getattr(self, "_sealed", False) and name not in _TASK_MUTABLE_FIELDS:
            raise FrozenInstanceError(f"cannot assign to field {name!r}")
        super().__setattr__(name, value)

    @classmethod
    def update(cls, document: Optional[str], changes: Iterable[ChangeDescriptor],
               task_id: Optional[str] = None, priority: int = 0) -> "Task":
        return cls(task_id or new_task_id("update"), TaskKind.UPDATE_TASK,
                   UpdatePayload(document, tuple(changes or ())), priority=priority)

    @classmethod
    def analyze(cls, document: Optional[str], changes: Iterable[ChangeDescriptor],
                task_id: Optional[str] = None, priority: int = 0) -> "Task":
        return cls(task_id or new_task_id("analyze"), TaskKind.ANALYZE_IMPACT,
                   AnalyzePayload(document, tuple(changes or ())), priority=priority)

    @classmethod
    def monitor(cls, change_source: Optional[str] = None,
                task_id: Optional[str] = None, priority: int = 0) -> "Task":
        return cls(task_id or new_task_id("monitor"), TaskKind.MONITOR_CHANGES,
                   MonitorPayload(change_source), priority=priority)

    @classmethod
    def batch(cls, documents: Mapping[str, str], changes: Iterable[ChangeDescriptor],
              task_id: Optional[str] = None, priority: int = 0) -> "Task":
        return cls(task_id or new_task_id("batch"), TaskKind.BATCH_UPDATE,
                   BatchPayload(dict(documents), tuple(changes or ())), priority=priority)


# ---------------------------------------------------------------------------
# Collaborator outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RuleResult:
    rule_name: str
    changed: bool
    notes: Tuple[str, ...] = ()
    produced_text: Optional[str] = None


@dataclass(frozen=True)
class Proposal:
    notes: Tuple[str, ...]
    proposed_text: str


# ---------------------------------------------------------------------------
# Loop records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Decision:
    action: str
    reasoning: str
    confidence: float
    is_final: bool
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "is_final": self.is_final,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Decision":
        return cls(
            action=data["action"],
            reasoning=data.get("reasoning", ""),
            confidence=float(data.get("confidence", 0.0)),
            is_final=bool(data.get("is_final", False)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    artifact: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: str, **details) -> "ExecutionResult":
        return cls(success=False, error=error, details=details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "artifact": self.artifact,
            "notes": list(self.notes),
            "error": self.error,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionResult":
        return cls(
            success=bool(data.get("success", False)),
            artifact=data.get("artifact"),
            notes=list(data.get("notes") or []),
            error=data.get("error"),
            details=dict(data.get("details") or {}),
        )


@dataclass(frozen=True)
class MemoryRecord:
    timestamp: str
    decision: Decision
    result: ExecutionResult
    success: bool
    task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "task_id": self.task_id,
            "decision": self.decision.to_dict(),
            "result": self.result.to_dict(),
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MemoryRecord":
        return cls(
            timestamp=data["timestamp"],
            decision=Decision.from_dict(data["decision"]),
            result=ExecutionResult.from_dict(data["result"]),
            success=bool(data["success"]),
            task_id=data.get("task_id"),
        )


@dataclass(frozen=True)
class Observation:
    task: Task
    recent_memories: List[MemoryRecord]
    previous_attempts: List[MemoryRecord]
    timestamp: str = field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Persistent state
# ---------------------------------------------------------------------------

class TaskHistory:
    """Insertion-ordered map of task id -> list of MemoryRecord."""

    def __init__(self, entries: Optional[Mapping[str, List[MemoryRecord]]] = None):
        self._entries: Dict[str, List[MemoryRecord]] = {}
        for task_id, records in (entries or {}).items():
            self._entries[task_id] = list(records)

    def append(self, task_id: str, record: MemoryRecord) -> None:
        self._entries.setdefault(task_id, []).append(record)

    def get(self, task_id: str) -> List[MemoryRecord]:
        return list(self._entries.get(task_id, ()))

    def task_ids(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TaskHistory):
            return NotImplemented
        return list(self._entries.items()) == list(other._entries.items())

    def __repr__(self) -> str:
        return f"TaskHistory({len(self._entries)} tasks)"

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {task_id: [r.to_dict() for r in records] for task_id, records in self._entries.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskHistory":
        history = cls()
        for task_id, records in (data or {}).items():
            history._entries[str(task_id)] = [MemoryRecord.from_dict(r) for r in records]
        return history


@dataclass
class AgentStats:
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    last_run_timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "successful_tasks": self.successful_tasks,
            "failed_tasks": self.failed_tasks,
            "last_run_timestamp": self.last_run_timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentStats":
        return cls(
            total_tasks=int(data.get("total_tasks", 0)),
            successful_tasks=int(data.get("successful_tasks", 0)),
            failed_tasks=int(data.get("failed_tasks", 0)),
            last_run_timestamp=data.get("last_run_timestamp"),
        )


@dataclass
class AgentState:
    memories: List[MemoryRecord] = field(default_factory=list)
    task_history: TaskHistory = field(default_factory=TaskHistory)
    stats: AgentStats = field(default_factory=AgentStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memories": [m.to_dict() for m in self.memories],
            "task_history": self.task_history.to_dict(),
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentState":
        return cls(
            memories=[MemoryRecord.from_dict(m) for m in data.get("memories") or []],
            task_history=TaskHistory.from_dict(data.get("task_history") or {}),
            stats=AgentStats.from_dict(data.get("stats") or {}),
        )
