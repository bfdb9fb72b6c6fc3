"""Exception hierarchy for the budget agent.

Only two of these ever escape the agent loop: ``ModelBackendError`` (the
model could not be reached) and ``AgentRunCancelled``. Everything that goes
wrong *inside* a tool is converted into an error tool result and handed back
to the model instead.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for all budget agent errors."""


class ModelBackendError(AgentError):
    """Raised when the chat model call fails (network, auth, quota...)."""


class AgentRunCancelled(AgentError):
    """Raised when a run's cancellation token fires between steps."""


class DataStoreError(AgentError):
    """Raised by store implementations when the data store is unavailable."""


class DuplicateToolError(AgentError, ValueError):
    """Raised when two tools are registered under the same name."""


class ToolArgumentError(AgentError, ValueError):
    """Raised by a tool when the model's arguments are unusable."""
