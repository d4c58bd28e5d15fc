"""Orchestrator: named workflows, the task queue and retry around one Decision Engine.

:class:`Orchestrator` is the sole owner of a :class:`DecisionEngine` and its
:class:`StateStore`. It is constructed explicitly (no module-level instance),
so several orchestrators with different state directories can live in one
process.

Workflows (one-shot, bypass the queue):

* :meth:`Orchestrator.propose_update`: one UpdateTask, returns the new document.
* :meth:`Orchestrator.analyze_impact`: one AnalyzeImpact task, returns the verdict.
* :meth:`Orchestrator.batch_update`: sequential UpdateTasks over many documents.
* :meth:`Orchestrator.auto_update`: analyze first, apply only below the threshold.

Run-loop mode: :meth:`add_task` / :meth:`drain` / :meth:`start` / :meth:`stop`.
A task whose execution raises is re-enqueued at the tail up to ``max_retries``
times, with no backoff, then dropped.

Typical usage::

    orchestrator = Orchestrator(AgentConfig(state_dir=".agent-state"))
    orchestrator.initialize()
    verdict = orchestrator.auto_update(task_yaml, changes)
"""
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from tekton_agent.core.config_manager import AgentConfig
from tekton_agent.core.engine import DecisionEngine
from tekton_agent.core.exceptions import WorkflowError
from tekton_agent.core.interfaces import ChangeLoader, DocumentValidator, GenerativeProposer, RuleApplier
from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.task_queue import TaskQueue
from tekton_agent.core.types import (
    AgentState,
    ChangeDescriptor,
    MemoryRecord,
    Task,
    TaskKind,
    new_task_id,
)
from tekton_agent.memory.state_store import StateStore

ChangesInput = Iterable[Union[ChangeDescriptor, Mapping[str, Any]]]


def _coerce_changes(changes: Optional[ChangesInput]) -> List[ChangeDescriptor]:
    return [c if isinstance(c, ChangeDescriptor) else ChangeDescriptor.from_dict(c) for c in (changes or [])]


class Orchestrator:
    """Sequences Decision Engine runs into workflows and drives the task queue.

    Attributes:
        config: The :class:`AgentConfig` snapshot in force.
        state: The owned :class:`StateStore`.
        engine: The owned :class:`DecisionEngine`.
        queue: Priority :class:`TaskQueue` used only by the run-loop.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        state_store: Optional[StateStore] = None,
        rules: Optional[RuleApplier] = None,
        proposer: Optional[GenerativeProposer] = None,
        validator: Optional[DocumentValidator] = None,
        change_loader: Optional[ChangeLoader] = None,
    ):
        """
        Args:
            config: Settings; defaults to :class:`AgentConfig` defaults.
            state_store: Injected store; otherwise one is built on ``config.state_dir``.
            rules, proposer, validator, change_loader: Collaborators; each
                defaults to the bundled Tekton/OpenAI/JSON implementation.
        """
        self.config = config or AgentConfig()
        self.state = state_store or StateStore(self.config.state_dir, max_memories=self.config.max_memories)
        if rules is None:
            from tekton_agent.tekton.rules import TektonRuleApplier
            rules = TektonRuleApplier()
        if validator is None:
            from tekton_agent.tekton.validator import TektonTaskValidator
            validator = TektonTaskValidator()
        if proposer is None:
            from tekton_agent.llm.proposer import OpenAIProposer
            proposer = OpenAIProposer.from_config(self.config)
        if change_loader is None:
            from tekton_agent.jumpstarter.loader import JsonChangeLoader
            change_loader = JsonChangeLoader()
        self.change_loader = change_loader

        self.engine = DecisionEngine(
            self.state,
            rules=rules,
            proposer=proposer,
            validator=validator,
            change_loader=change_loader,
            change_source=self.config.change_source,
            recent_window=self.config.recent_memory_window,
            retry_ceiling=self.config.retry_ceiling,
            review_threshold=self.config.review_threshold,
        )
        self.queue = TaskQueue()
        self.running = False

    def initialize(self, claim: bool = True):
        """Claims the state directory (unless *claim* is False) and loads prior state."""
        if claim:
            self.state.claim()
        self.state.load()
        log_json("INFO", "orchestrator_initialized", details={
            "config": self.config.summary(),
            "memory": self.state.get_summary(),
        })

    def close(self):
        self.stop()
        if self.state.dirty:
            self.state.save()
        self.state.release()

    # ── Workflow plumbing ────────────────────────────────────────────────────

    def _run_task(self, task: Task) -> MemoryRecord:
        record = self.engine.run(task)
        if record is None:
            raise WorkflowError(f"Task {task.id} produced no record")
        return record

    @staticmethod
    def _failure_message(record: MemoryRecord) -> str:
        return record.result.error or record.decision.reasoning

    # ── Workflows ────────────────────────────────────────────────────────────

    def propose_update(self, document: str, changes: ChangesInput) -> str:
        """Runs one UpdateTask and returns the updated document.

        Raises:
            WorkflowError: the last record did not succeed; carries its error
                (or the skip reasoning).
        """
        log_json("INFO", "workflow_started", details={"workflow": "propose_update"})
        task = Task.update(document, _coerce_changes(changes), task_id=new_task_id("workflow-propose"))
        record = self._run_task(task)
        if not record.success:
            raise WorkflowError(f"Failed to propose update: {self._failure_message(record)}")
        return record.result.artifact

    def analyze_impact(self, document: str, changes: ChangesInput) -> Dict[str, Any]:
        log_json("INFO", "workflow_started", details={"workflow": "analyze_impact"})
        task = Task.analyze(document, _coerce_changes(changes), task_id=new_task_id("workflow-analyze"))
        record = self._run_task(task)
        return {
            "impact_score": record.decision.metadata.get("impact_score", 0.0),
            "requires_review": bool(record.result.details.get("requires_review", False)),
            "reasoning": record.decision.reasoning,
            "recommendation": record.decision.action,
        }

    def batch_update(self, documents: Mapping[str, str], changes: ChangesInput) -> Dict[str, Any]:
        """Runs an independent UpdateTask per document, strictly in sequence.

        One document failing (including an engine exception) never aborts the
        batch; it is reported in that document's entry.
        """
        log_json("INFO", "workflow_started", details={"workflow": "batch_update", "documents": len(documents)})
        change_list = _coerce_changes(changes)
        results = []
        for name, document in documents.items():
            task = Task.update(document, change_list, task_id=new_task_id(f"batch-{name}"))
            try:
                record = self._run_task(task)
            except Exception as e:
                log_json("ERROR", "batch_document_failed", task=task.id, details={"name": name, "error": str(e)})
                results.append({"name": name, "success": False, "error": str(e), "notes": []})
                continue
            if record.success and record.result.artifact:
                results.append({
                    "name": name,
                    "success": True,
                    "document": record.result.artifact,
                    "notes": list(record.result.notes),
                })
            else:
                results.append({
                    "name": name,
                    "success": False,
                    "error": self._failure_message(record) or "Unknown error",
                    "notes": list(record.result.notes),
                })

        successful = sum(1 for r in results if r["success"])
        log_json("INFO", "batch_update_complete", details={"successful": successful, "total": len(results)})
        return {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "results": results,
            "reasoning": f"{successful}/{len(results)} documents updated successfully",
        }

    def auto_update(self, document: str, changes: ChangesInput, threshold: Optional[float] = None) -> Dict[str, Any]:
        """Applies the update only when the impact analysis says it is safe.

        The update runs only if ``requires_review`` is false and
        ``impact_score <= threshold``; otherwise the analysis is returned for
        the caller to act on.
        """
        threshold = self.config.auto_apply_threshold if threshold is None else threshold
        change_list = _coerce_changes(changes)
        impact = self.analyze_impact(document, change_list)
        log_json("INFO", "auto_update_impact", details={
            "impact_score": impact["impact_score"],
            "requires_review": impact["requires_review"],
            "threshold": threshold,
        })

        if impact["requires_review"] or impact["impact_score"] > threshold:
            return {
                "applied": False,
                "reasoning": (f"Changes require manual review (impact {impact['impact_score']:.2f}, "
                              f"threshold {threshold:.2f})"),
                "impact": impact,
            }

        updated = self.propose_update(document, change_list)
        return {
            "applied": True,
            "reasoning": f"Impact {impact['impact_score']:.2f} is within threshold {threshold:.2f}; update applied",
            "impact": impact,
            "document": updated,
        }

    # ── File-based workflows ─────────────────────────────────────────────────

    def _read_inputs(self, task_path, changes_path):
        document = Path(task_path).read_text(encoding="utf-8")
        changes = self.change_loader.load(str(changes_path))
        return document, changes

    @staticmethod
    def _write_output(output_path, content: str) -> Path:
        path = Path(output_path).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        log_json("INFO", "output_written", details={"path": str(path)})
        return path

    def propose_update_file(self, task_path, changes_path, output_path=None) -> str:
        document, changes = self._read_inputs(task_path, changes_path)
        updated = self.propose_update(document, changes)
        if output_path:
            self._write_output(output_path, updated)
        return updated

    def analyze_impact_file(self, task_path, changes_path) -> Dict[str, Any]:
        document, changes = self._read_inputs(task_path, changes_path)
        return self.analyze_impact(document, changes)

    def auto_update_file(self, task_path, changes_path, output_path, threshold: Optional[float] = None) -> Dict[str, Any]:
        document, changes = self._read_inputs(task_path, changes_path)
        outcome = self.auto_update(document, changes, threshold)
        if outcome["applied"]:
            outcome["output_path"] = str(self._write_output(output_path, outcome["document"]))
        return outcome

    def batch_update_dir(self, tasks_dir, changes_path, out_dir) -> Dict[str, Any]:
        """Batch-updates every ``*.yaml``/``*.yml`` file in *tasks_dir* into *out_dir*."""
        tasks_dir = Path(tasks_dir)
        task_files = sorted(p for p in tasks_dir.iterdir() if p.is_file() and p.suffix in (".yaml", ".yml"))
        if not task_files:
            raise WorkflowError(f"No YAML files found in {tasks_dir}")

        changes = self.change_loader.load(str(changes_path))
        documents = {p.name: p.read_text(encoding="utf-8") for p in task_files}
        outcome = self.batch_update(documents, changes)
        for entry in outcome["results"]:
            if entry["success"]:
                entry["output_file"] = str(self._write_output(Path(out_dir) / entry["name"], entry["document"]))
        return outcome

    # ── Run-loop ─────────────────────────────────────────────────────────────

    def add_task(self, task: Task):
        self.queue.add_task(task)

    def get_queue_status(self) -> Dict[str, Any]:
        return self.queue.status()

    def execute_task(self, task: Task) -> Optional[Any]:
        """Runs one queued task; on an uncaught error, re-enqueues or drops it."""
        log_json("INFO", "task_executing", task=task.id,
                 details={"kind": task.kind.value, "retry_count": task.retry_count})
        try:
            if task.kind == TaskKind.BATCH_UPDATE:
                outcome = self.batch_update(task.payload.documents, task.payload.changes)
            else:
                outcome = self.engine.run(task)
        except Exception as e:
            task.retry_count += 1
            if task.retry_count <= self.config.max_retries:
                log_json("WARN", "task_retry_scheduled", task=task.id,
                         details={"attempt": task.retry_count, "max_retries": self.config.max_retries, "error": str(e)})
                self.queue.requeue(task)
            else:
                log_json("ERROR", "task_dropped", task=task.id,
                         details={"retries": task.retry_count - 1, "error": str(e)})
            return None
        log_json("INFO", "task_completed", task=task.id)
        return outcome

    def drain(self) -> int:
        """Processes queued tasks until the queue is empty; returns how many ran."""
        processed = 0
        while self.queue.has_tasks():
            self.execute_task(self.queue.get_next_task())
            processed += 1
        return processed

    def start(self):
        """Polls the queue until :meth:`stop`; idles ``idle_poll_seconds`` when empty."""
        self.running = True
        log_json("INFO", "orchestrator_loop_started")
        while self.running:
            task = self.queue.get_next_task()
            if task is not None:
                self.execute_task(task)
            else:
                time.sleep(self.config.idle_poll_seconds)
        log_json("INFO", "orchestrator_loop_stopped")

    def stop(self):
        self.running = False
        self.engine.stop()

    def get_state(self) -> AgentState:
        """Read-only snapshot of the agent's memory and stats."""
        return self.state.snapshot()

    def recent_decisions(self, count: int = 10) -> List[Dict[str, Any]]:
        return [
            {
                "timestamp": m.timestamp,
                "task_id": m.task_id,
                "action": m.decision.action,
                "reasoning": m.decision.reasoning,
                "success": m.success,
                "error": m.result.error,
            }
            for m in self.state.get_recent_memories(count)
        ]
