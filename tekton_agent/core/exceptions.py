class AgentError(Exception):
    """Base class for all exceptions in tekton-agent."""
    pass

class ConfigurationError(AgentError):
    """Raised when there is a configuration-related error."""
    pass

class SchemaError(AgentError):
    """Raised when a document fails Tekton Task schema validation."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])

class ProposerError(AgentError):
    """Raised when the generative proposer cannot produce a usable patch."""
    pass

class ChangeLoadError(AgentError):
    """Raised when a change file cannot be read or parsed."""
    pass

class StateStoreError(AgentError):
    """Base class for State Store errors."""
    pass

class StateStoreLockedError(StateStoreError):
    """Raised when another live process owns the state directory."""
    pass

class WorkflowError(AgentError):
    """Raised when an orchestrator workflow cannot produce its result."""
    pass
