"""Deterministic rules that generalize frequent Jumpstarter updates.

Each rule matches change text against a pattern and, when it fires, makes sure
a specific param or result exists in the Task spec. Rules run in order against
one parsed document, so every produced text carries the earlier rules' edits.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import yaml

from tekton_agent.core.exceptions import SchemaError
from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.types import ChangeDescriptor, RuleResult


@dataclass(frozen=True)
class FieldRule:
    name: str
    pattern: "re.Pattern[str]"
    section: str  # "params" | "results"
    entry: Dict[str, Any]
    label: str

    def matches(self, changes: Sequence[ChangeDescriptor]) -> bool:
        return any(self.pattern.search(change.text) for change in changes)


DEFAULT_RULES = (
    FieldRule(
        name="ensure-secondary-network-param",
        pattern=re.compile(r"secondary\s+network|multus|\bnad\b", re.IGNORECASE),
        section="params",
        entry={
            "name": "secondaryNetworkNAD",
            "type": "string",
            "description": "NetworkAttachmentDefinition name for secondary network (Multus).",
        },
        label="param",
    ),
    FieldRule(
        name="ensure-results-for-artifacts",
        pattern=re.compile(r"artifact|result|export", re.IGNORECASE),
        section="results",
        entry={"name": "artifactDigest", "description": "Digest of produced artifact/image"},
        label="result",
    ),
    FieldRule(
        name="ensure-quay-url-param",
        pattern=re.compile(r"quay", re.IGNORECASE),
        section="params",
        entry={
            "name": "quayUrl",
            "type": "string",
            "description": "Target Quay repository (e.g., quay.io/org/repo)",
        },
        label="param",
    ),
)


def dump_yaml(document: Any) -> str:
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)


class TektonRuleApplier:
    """Applies :data:`DEFAULT_RULES` (or a custom rule tuple) to a Task document."""

    def __init__(self, rules: Sequence[FieldRule] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def apply_rules(self, text: str, changes: Sequence[ChangeDescriptor]) -> List[RuleResult]:
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SchemaError(f"Tekton Task YAML could not be parsed: {e}") from e
        if not isinstance(document, dict):
            raise SchemaError("Tekton Task document must be a mapping")
        spec = document.setdefault("spec", {})
        if not isinstance(spec, dict):
            raise SchemaError("Tekton Task 'spec' must be a mapping")

        results = []
        for rule in self.rules:
            if not rule.matches(changes):
                continue
            entries = spec.get(rule.section) or []
            spec[rule.section] = entries
            field_name = rule.entry["name"]
            if any(isinstance(e, dict) and e.get("name") == field_name for e in entries):
                results.append(RuleResult(rule.name, False, (f"{rule.label.capitalize()} already present",)))
                continue
            entries.append(dict(rule.entry))
            results.append(RuleResult(
                rule.name, True, (f"Added {rule.label} {field_name}",), dump_yaml(document)
            ))

        log_json("DEBUG", "rules_applied", details={
            "fired": [r.rule_name for r in results],
            "changed": [r.rule_name for r in results if r.changed],
        })
        return results

