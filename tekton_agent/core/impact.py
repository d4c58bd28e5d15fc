"""Heuristic impact scoring for a set of proposed changes.

The score is a normalised [0, 1] estimate of how risky it is to apply the
changes without a human looking at them. Security-sensitive areas dominate;
networking/storage/resource areas add a bounded medium contribution; long
free-text descriptions add a complexity surcharge.
"""
from __future__ import annotations

from typing import Iterable, Optional

from tekton_agent.core.types import ChangeDescriptor

HIGH_IMPACT_WEIGHTS = {
    "security": 0.4,
    "serviceaccount": 0.3,
    "rbac": 0.3,
}

MEDIUM_IMPACT_WEIGHTS = {
    "network": 0.2,
    "storage": 0.15,
    "resources": 0.1,
}

# Medium areas never push a change set into review territory on their own.
MEDIUM_IMPACT_CAP = 0.25

COMPLEXITY_SURCHARGE = 0.2
LONG_DESCRIPTION_CHARS = 200

_AREA_ALIASES = {
    "service_account": "serviceaccount",
    "service-account": "serviceaccount",
    "networking": "network",
    "secondary-network": "network",
    "volumes": "storage",
    "workspaces": "storage",
    "resource": "resources",
    "compute": "resources",
    "permissions": "rbac",
}


def normalize_area(area: str) -> str:
    key = str(area).strip().lower()
    return _AREA_ALIASES.get(key, key)


def score(changes: Optional[Iterable[ChangeDescriptor]], document: str = "") -> float:
    """Return the impact score of *changes* against *document*.

    ``document`` is accepted for interface symmetry; the current heuristic
    only looks at the change descriptors.
    """
    if not changes:
        return 0.0

    high = 0.0
    medium = 0.0
    surcharge = 0.0
    for change in changes:
        for area in {normalize_area(a) for a in change.impact_areas}:
            high += HIGH_IMPACT_WEIGHTS.get(area, 0.0)
            medium += MEDIUM_IMPACT_WEIGHTS.get(area, 0.0)
        if change.description and len(change.description) > LONG_DESCRIPTION_CHARS:
            surcharge += COMPLEXITY_SURCHARGE

    total = high + min(medium, MEDIUM_IMPACT_CAP) + surcharge
    return round(min(total, 1.0), 4)
