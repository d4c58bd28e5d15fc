"""Load Jumpstarter change descriptors from JSON files or open handles."""
from __future__ import annotations

import json
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tekton_agent.core.exceptions import ChangeLoadError
from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.types import ChangeDescriptor


class ChangeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str
    description: Optional[str] = None
    capability: Optional[str] = None
    impact_areas: List[str] = Field(default_factory=list, alias="impactAreas")
    suggested_fields: Dict[str, Any] = Field(default_factory=dict, alias="suggestedParams")

    def to_descriptor(self) -> ChangeDescriptor:
        return ChangeDescriptor(
            id=self.id,
            title=self.title,
            description=self.description,
            impact_areas=tuple(dict.fromkeys(self.impact_areas)),
            suggested_fields=dict(self.suggested_fields),
            capability=self.capability,
        )


class JsonChangeLoader:
    """Reads either a JSON list of changes or an object with a ``changes`` list."""

    def load(self, source: Union[str, Path, IO[str]]) -> List[ChangeDescriptor]:
        label = getattr(source, "name", None) or str(source)
        try:
            if hasattr(source, "read"):
                raw = json.load(source)
            else:
                with open(Path(source), "r", encoding="utf-8") as f:
                    raw = json.load(f)
        except (OSError, UnicodeDecodeError) as e:
            log_json("ERROR", "change_file_unreadable", details={"source": label, "error": str(e)})
            raise ChangeLoadError(f"Cannot read change file {label}: {e}") from e
        except json.JSONDecodeError as e:
            log_json("ERROR", "change_file_invalid_json", details={"source": label, "error": str(e)})
            raise ChangeLoadError(f"Change file {label} is not valid JSON: {e}") from e

        if isinstance(raw, dict):
            raw = raw.get("changes", [])
        if not isinstance(raw, list):
            raise ChangeLoadError(f"Change file {label} must hold a list of changes")

        changes = []
        for index, item in enumerate(raw):
            if isinstance(item, dict) and "suggestedFields" in item and "suggestedParams" not in item:
                item = {**item, "suggestedParams": item["suggestedFields"]}
            try:
                changes.append(ChangeModel.model_validate(item).to_descriptor())
            except ValidationError as e:
                raise ChangeLoadError(f"Change #{index} in {label} is invalid: {e}") from e

        log_json("INFO", "changes_loaded", details={"source": label, "count": len(changes)})
        return changes
