"""Tekton Task document validation: YAML parse plus a JSON-schema check."""
from __future__ import annotations

from typing import Any, Dict, List

import jsonschema
import yaml

from tekton_agent.core.exceptions import SchemaError
from tekton_agent.core.logging_utils import log_json

TASK_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Tekton Task",
    "type": "object",
    "required": ["apiVersion", "kind", "metadata", "spec"],
    "properties": {
        "apiVersion": {"type": "string", "pattern": "^tekton\\.dev/"},
        "kind": {"const": "Task"},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {"name": {"type": "string", "minLength": 1}},
        },
        "spec": {
            "type": "object",
            "required": ["steps"],
            "properties": {
                "params": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["name"],
                        "properties": {
                            "name": {"type": "string"},
                            "type": {"enum": ["string", "array", "object"]},
                            "description": {"type": "string"},
                        },
                    },
                },
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["name"],
                        "properties": {
                            "name": {"type": "string"},
                            "description": {"type": "string"},
                        },
                    },
                },
                "steps": {
                    "type": "array",
                    "minItems": 1,
                    "items": {"type": "object"},
                },
            },
        },
    },
}


class TektonTaskValidator:
    """Parses a Task YAML document and checks it against :data:`TASK_SCHEMA`."""

    def __init__(self, schema: Dict[str, Any] = None):
        self.schema = schema or TASK_SCHEMA
        self._validator = jsonschema.Draft7Validator(self.schema)

    def validate(self, text: str) -> Any:
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SchemaError(f"Tekton Task YAML could not be parsed: {e}") from e

        errors = self.errors_for(document)
        if errors:
            log_json("WARN", "task_schema_invalid", details={"errors": errors})
            raise SchemaError("Tekton Task schema validation failed: " + "; ".join(errors), errors)
        return document

    def errors_for(self, document: Any) -> List[str]:
        errors = []
        for err in sorted(self._validator.iter_errors(document), key=lambda e: list(e.path)):
            location = "/".join(str(p) for p in err.path) or "root"
            errors.append(f"{location}: {err.message}")
        return errors
