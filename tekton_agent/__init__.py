"""tekton-agent: an autonomous agent that keeps Tekton Task definitions in step with Jumpstarter changes.

Public entry points:
    Orchestrator   -- named workflows and the task run-loop
    DecisionEngine -- the per-task observe/reason/execute/update loop
    StateStore     -- durable memory, task history and statistics
"""
from tekton_agent.core.config_manager import AgentConfig, ConfigManager
from tekton_agent.core.engine import DecisionEngine
from tekton_agent.core.orchestrator import Orchestrator
from tekton_agent.core.types import ChangeDescriptor, Task, TaskKind
from tekton_agent.memory.state_store import StateStore

__version__ = "0.1.0"

__all__ = [
    "AgentConfig",
    "ChangeDescriptor",
    "ConfigManager",
    "DecisionEngine",
    "Orchestrator",
    "StateStore",
    "Task",
    "TaskKind",
]
