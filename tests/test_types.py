import dataclasses

import pytest

from tekton_agent.core.types import (
    AgentState,
    ChangeDescriptor,
    MonitorPayload,
    Task,
    TaskHistory,
    TaskKind,
)


def test_change_descriptor_from_camel_case():
    change = ChangeDescriptor.from_dict({
        "id": 7,
        "title": "Quay push",
        "impactAreas": ["network", "network", "storage"],
        "suggestedParams": {"quayUrl": "quay.io/org/repo"},
    })
    assert change.id == "7"
    assert change.impact_areas == ("network", "storage")
    assert change.suggested_fields == {"quayUrl": "quay.io/org/repo"}
    assert change.text == "Quay push"
    assert ChangeDescriptor.from_dict(change.to_dict()) == change


def test_task_rejects_mismatched_payload():
    with pytest.raises(TypeError):
        Task("t", TaskKind.UPDATE_TASK, MonitorPayload())


def test_task_factories_assign_prefixed_ids():
    task = Task.update("doc", [], priority=3)
    assert task.id.startswith("update-")
    assert task.kind is TaskKind.UPDATE_TASK
    assert task.priority == 3
    assert Task.update("doc", []).id != task.id


def test_task_history_preserves_insertion_order():
    history = TaskHistory()
    history.append("b", None)
    history.append("a", None)
    history.append("b", None)
    assert history.task_ids() == ["b", "a"]
    assert len(history.get("b")) == 2
    assert "a" in history and "c" not in history


def test_empty_agent_state_round_trips():
    state = AgentState()
    assert AgentState.from_dict(state.to_dict()) == state


@pytest.mark.parametrize("field_name, value", [
    ("id", "other"),
    ("kind", TaskKind.ANALYZE_IMPACT),
    ("payload", MonitorPayload()),
    ("priority", 99),
])
def test_task_fields_are_read_only_after_construction(field_name, value):
    task = Task.update("doc", [], task_id="fixed")
    with pytest.raises(dataclasses.FrozenInstanceError):
        setattr(task, field_name, value)
    assert task.id == "fixed"
    assert task.kind is TaskKind.UPDATE_TASK


def test_task_retry_count_is_mutable():
    task = Task.update("doc", [])
    task.retry_count += 1
    assert task.retry_count == 1
