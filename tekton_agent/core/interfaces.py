"""
Interfaces for the collaborators the Decision Engine consumes.

The engine never imports a concrete validator, rule set, proposer or change
loader; the orchestrator injects them. Default implementations live in
``tekton_agent.tekton``, ``tekton_agent.llm`` and ``tekton_agent.jumpstarter``.
"""
from __future__ import annotations

from typing import IO, Any, List, Protocol, Sequence, Union

from tekton_agent.core.types import ChangeDescriptor, Proposal, RuleResult


class DocumentValidator(Protocol):
    """Parses and validates a task document; raises SchemaError on failure."""
    def validate(self, text: str) -> Any: ...


class RuleApplier(Protocol):
    """Applies deterministic pattern-match-and-insert rules."""
    def apply_rules(self, text: str, changes: Sequence[ChangeDescriptor]) -> List[RuleResult]: ...


class GenerativeProposer(Protocol):
    """Produces a full proposed document; may return the input unchanged."""
    def propose(self, text: str, changes: Sequence[ChangeDescriptor]) -> Proposal: ...


class ChangeLoader(Protocol):
    """Reads change descriptors from a path or an open handle."""
    def load(self, source: Union[str, IO[str]]) -> List[ChangeDescriptor]: ...
