"""Decision Engine: the observe → reason → execute → update loop for one task.

:class:`DecisionEngine` drives a single :class:`~tekton_agent.core.types.Task`
to a terminal state. Each iteration

1. **Observe**: gathers the task, the most recent memory records and the
   task's own history (no side effects).
2. **Reason**: dispatches on the task kind and returns a
   :class:`~tekton_agent.core.types.Decision`.
3. **Execute**: maps the decision's action onto exactly one collaborator
   path. Collaborator exceptions become failed
   :class:`~tekton_agent.core.types.ExecutionResult` objects and never escape.
4. **Update**: records the outcome in the State Store and persists it.

The loop stops once the decision is final, the result carries an error, or
the task's history holds a successful record. The retry ceiling checked in
*Reason* bounds repeated runs of a task that keeps failing.

Typical usage::

    store = StateStore(".agent-state")
    store.load()
    engine = DecisionEngine(store, rules=TektonRuleApplier(),
                            proposer=OpenAIProposer(), validator=TektonTaskValidator())
    record = engine.run(Task.update(task_yaml, changes))
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from tekton_agent.core import impact
from tekton_agent.core.interfaces import ChangeLoader, DocumentValidator, GenerativeProposer, RuleApplier
from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.types import (
    Action,
    ChangeDescriptor,
    Decision,
    ExecutionResult,
    MemoryRecord,
    Observation,
    RuleResult,
    Task,
    TaskKind,
    utc_now,
)
from tekton_agent.memory.state_store import StateStore

DEFAULT_RECENT_WINDOW = 5
DEFAULT_RETRY_CEILING = 3
DEFAULT_REVIEW_THRESHOLD = 0.7
# Descriptions longer than this are treated as needing generative reasoning.
COMPLEX_DESCRIPTION_CHARS = 100


class LoopPhase(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    REASONING = "reasoning"
    EXECUTING = "executing"
    UPDATING = "updating"
    TERMINAL = "terminal"


def latest_document(rules: Sequence[RuleResult], original: str) -> str:
    """Last rule-produced document, falling back to *original* when nothing changed."""
    for result in reversed(rules):
        if result.produced_text:
            return result.produced_text
    return original


def merge_documents(preferred: Optional[str], fallback: str) -> str:
    """Prefer the proposed document; fall back to the rule output when it is empty."""
    return preferred if preferred and preferred.strip() else fallback


def _collect_notes(rules: Sequence[RuleResult]) -> List[str]:
    return [note for result in rules for note in result.notes]


class DecisionEngine:
    """Runs one task's decision loop to completion against a State Store.

    Attributes:
        state: The :class:`StateStore` read during *Observe* and written during *Update*.
        rules: Deterministic :class:`RuleApplier`.
        proposer: :class:`GenerativeProposer`; may be a passthrough.
        validator: :class:`DocumentValidator` run after every mutation path.
        change_loader: Optional :class:`ChangeLoader` used by ``check-changes``.
        phase: Current :class:`LoopPhase`, exposed for status reporting.
    """

    def __init__(
        self,
        state: StateStore,
        rules: RuleApplier,
        proposer: GenerativeProposer,
        validator: DocumentValidator,
        change_loader: Optional[ChangeLoader] = None,
        change_source: Optional[str] = None,
        recent_window: int = DEFAULT_RECENT_WINDOW,
        retry_ceiling: int = DEFAULT_RETRY_CEILING,
        review_threshold: float = DEFAULT_REVIEW_THRESHOLD,
    ):
        self.state = state
        self.rules = rules
        self.proposer = proposer
        self.validator = validator
        self.change_loader = change_loader
        self.change_source = change_source
        self.recent_window = recent_window
        self.retry_ceiling = retry_ceiling
        self.review_threshold = review_threshold
        self.phase = LoopPhase.IDLE
        self.running = False

    # ── Loop ─────────────────────────────────────────────────────────────────

    def run(self, task: Task) -> Optional[MemoryRecord]:
        """Drive *task* until it is final, errored, complete, or stopped.

        Returns:
            The last record written for the task, or the task's most recent
            existing record when it was already complete.
        """
        self.running = True
        last: Optional[MemoryRecord] = None
        log_json("INFO", "task_started", task=task.id, details={"kind": task.kind.value})

        try:
            while self.running and not self.is_task_complete(task.id):
                self.phase = LoopPhase.OBSERVING
                observation = self.observe(task)

                self.phase = LoopPhase.REASONING
                decision = self.reason(observation)

                self.phase = LoopPhase.EXECUTING
                result = self.execute(decision, task)

                self.phase = LoopPhase.UPDATING
                last = self.update(task, decision, result)

                if decision.is_final or result.error:
                    break
        finally:
            self.running = False
            self.phase = LoopPhase.TERMINAL

        if last is None:
            last = self.state.last_record(task.id)
        log_json("INFO", "task_finished", task=task.id, details={
            "success": bool(last and last.success),
            "action": last.decision.action if last else None,
        })
        return last

    def stop(self) -> None:
        self.running = False
        log_json("INFO", "engine_stop_requested")

    def is_task_complete(self, task_id: str) -> bool:
        return self.state.is_task_complete(task_id)

    def get_state(self):
        return self.state.snapshot()

    # ── Observe ──────────────────────────────────────────────────────────────

    def observe(self, task: Task) -> Observation:
        return Observation(
            task=task,
            recent_memories=self.state.get_recent_memories(self.recent_window),
            previous_attempts=self.state.get_task_history(task.id),
        )

    # ── Reason ───────────────────────────────────────────────────────────────

    def reason(self, observation: Observation) -> Decision:
        task = observation.task
        if task.kind == TaskKind.UPDATE_TASK:
            decision = self._reason_update(observation)
        elif task.kind == TaskKind.ANALYZE_IMPACT:
            decision = self._reason_analyze(observation)
        elif task.kind == TaskKind.MONITOR_CHANGES:
            decision = self._reason_monitor(observation)
        else:
            decision = Decision(
                action=Action.SKIP,
                reasoning=f"Unknown task type: {task.kind.value}",
                confidence=0.0,
                is_final=True,
            )
        log_json("INFO", "decision_made", task=task.id, details={
            "action": decision.action,
            "confidence": decision.confidence,
            "final": decision.is_final,
            "reasoning": decision.reasoning,
        })
        return decision

    def _reason_update(self, observation: Observation) -> Decision:
        payload = observation.task.payload
        if not payload.document or not payload.changes:
            return Decision(
                action=Action.SKIP,
                reasoning="Missing required data (task document or changes)",
                confidence=1.0,
                is_final=True,
            )

        attempts = len(observation.previous_attempts)
        if attempts > self.retry_ceiling:
            return Decision(
                action=Action.SKIP,
                reasoning="Too many failed attempts, needs human intervention",
                confidence=1.0,
                is_final=True,
                metadata={"attempts": attempts},
            )

        changed_rules = self._preview_rules(observation.task.id, payload.document, payload.changes)
        complex_changes = [
            c.id for c in payload.changes
            if c.description and len(c.description) > COMPLEX_DESCRIPTION_CHARS
        ]
        needs_generation = not changed_rules or bool(complex_changes)

        if needs_generation:
            reasoning = ("Changes are complex, using generative proposal for deeper analysis"
                         if complex_changes else
                         "No deterministic rule covers these changes, using generative proposal")
            return Decision(
                action=Action.GENERATIVE_PROPOSAL,
                reasoning=reasoning,
                confidence=0.8,
                is_final=False,
                metadata={"rules_changed": changed_rules, "complex_changes": complex_changes},
            )
        return Decision(
            action=Action.RULES_ONLY,
            reasoning="Simple changes detected, applying deterministic rules",
            confidence=0.5,
            is_final=False,
            metadata={"rules_changed": changed_rules, "complex_changes": []},
        )

    def _preview_rules(self, task_id: str, document: str, changes: Sequence[ChangeDescriptor]) -> List[str]:
        """Names of rules that would change *document*; [] when the rules cannot run."""
        try:
            return [r.rule_name for r in self.rules.apply_rules(document, changes) if r.changed]
        except Exception as e:  # the execute step surfaces the same failure as a result
            log_json("WARN", "rules_preview_failed", task=task_id, details={"error": str(e)})
            return []

    def _reason_analyze(self, observation: Observation) -> Decision:
        payload = observation.task.payload
        score = impact.score(payload.changes, payload.document or "")
        high = score > self.review_threshold
        if high:
            action = Action.FLAG_FOR_REVIEW
            verdict = "High impact detected, requesting review"
        else:
            action = Action.AUTO_APPLY
            verdict = "Low impact, safe to auto-apply"
        return Decision(
            action=action,
            reasoning=f"Impact score: {score:.2f}. {verdict}",
            confidence=0.9,
            is_final=False,
            metadata={"impact_score": score},
        )

    def _reason_monitor(self, observation: Observation) -> Decision:
        source = observation.task.payload.change_source or self.change_source
        return Decision(
            action=Action.CHECK_CHANGES,
            reasoning="Monitoring for new Jumpstarter changes",
            confidence=1.0,
            is_final=False,
            metadata={"source": source},
        )

    # ── Execute ──────────────────────────────────────────────────────────────

    def execute(self, decision: Decision, task: Task) -> ExecutionResult:
        """Perform *decision*; every collaborator failure becomes a failed result."""
        handlers = {
            Action.GENERATIVE_PROPOSAL: self._execute_generative,
            Action.RULES_ONLY: self._execute_rules,
            Action.FLAG_FOR_REVIEW: self._execute_flag_for_review,
            # auto-apply runs the generative patch path
            Action.AUTO_APPLY: self._execute_generative,
            Action.CHECK_CHANGES: self._execute_check_changes,
            Action.SKIP: self._execute_skip,
        }
        handler = handlers.get(decision.action)
        if handler is None:
            result = ExecutionResult.failure(f"Unknown action: {decision.action}")
        else:
            try:
                result = handler(decision, task)
            except Exception as e:  # collaborator errors are recorded, not raised
                log_json("ERROR", "action_failed", task=task.id,
                         details={"action": decision.action, "error": str(e), "type": type(e).__name__})
                result = ExecutionResult.failure(str(e) or type(e).__name__, error_type=type(e).__name__)

        log_json("INFO", "action_executed", task=task.id, details={
            "action": decision.action,
            "success": result.success,
            "error": result.error,
        })
        return result

    def _inputs(self, task: Task):
        payload = task.payload
        document = getattr(payload, "document", None)
        changes = tuple(getattr(payload, "changes", ()) or ())
        if not document or not changes:
            raise ValueError("Missing task document or changes")
        return document, changes

    def _execute_generative(self, decision: Decision, task: Task) -> ExecutionResult:
        document, changes = self._inputs(task)
        rules = self.rules.apply_rules(document, changes)
        latest = latest_document(rules, document)

        proposal = self.proposer.propose(latest, changes)
        merged = merge_documents(proposal.proposed_text, latest)
        self.validator.validate(merged)

        return ExecutionResult(
            success=True,
            artifact=merged,
            notes=_collect_notes(rules) + list(proposal.notes),
            details={"path": decision.action, "rules_changed": [r.rule_name for r in rules if r.changed]},
        )

    def _execute_rules(self, decision: Decision, task: Task) -> ExecutionResult:
        document, changes = self._inputs(task)
        rules = self.rules.apply_rules(document, changes)
        updated = latest_document(rules, document)
        self.validator.validate(updated)

        return ExecutionResult(
            success=True,
            artifact=updated,
            notes=_collect_notes(rules),
            details={"path": decision.action, "rules_changed": [r.rule_name for r in rules if r.changed]},
        )

    def _execute_flag_for_review(self, decision: Decision, task: Task) -> ExecutionResult:
        changes = getattr(task.payload, "changes", ()) or ()
        return ExecutionResult(
            success=True,
            notes=["High impact changes require human review"],
            details={
                "requires_review": True,
                "impact_score": decision.metadata.get("impact_score"),
                "changes": [c.to_dict() for c in changes],
            },
        )

    def _execute_check_changes(self, decision: Decision, task: Task) -> ExecutionResult:
        source = decision.metadata.get("source")
        if self.change_loader is None or not source:
            return ExecutionResult(
                success=True,
                notes=["No new changes detected"],
                details={"changes_found": [], "source": source},
            )
        found = self.change_loader.load(source)
        return ExecutionResult(
            success=True,
            notes=[f"{len(found)} change(s) found"],
            details={"changes_found": [c.to_dict() for c in found], "source": source},
        )

    def _execute_skip(self, decision: Decision, task: Task) -> ExecutionResult:
        details: Dict[str, Any] = {"skipped": True, "reason": decision.reasoning}
        return ExecutionResult(success=False, notes=[decision.reasoning], details=details)

    # ── Update ───────────────────────────────────────────────────────────────

    def update(self, task: Task, decision: Decision, result: ExecutionResult) -> MemoryRecord:
        record = MemoryRecord(
            timestamp=utc_now(),
            decision=decision,
            result=result,
            success=result.success,
            task_id=task.id,
        )
        self.state.add_memory(record)
        self.state.add_task_history(task.id, record)
        self.state.save()
        return record
