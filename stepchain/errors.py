"""Exception hierarchy for stepchain.

Every error carries optional structured context (process id, step index)
so log lines can point at the instance and step that raised it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class StepChainError(Exception):
    """Base exception for all stepchain errors."""

    def __init__(
        self,
        message: str,
        *,
        process_id: Optional[str] = None,
        step_index: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.process_id = process_id
        self.step_index = step_index
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(StepChainError):
    """The requesting principal may not build or run the process."""


class DeserializeError(StepChainError):
    """Process inputs could not be parsed."""


class BuildError(StepChainError):
    """The process definition failed while registering its steps."""


class PersistenceError(StepChainError):
    """A status store operation (connection, write or commit) failed."""


class ProcessStateError(StepChainError):
    """An operation was attempted in a state that does not allow it."""


# Errors raised by a build hook that abort the chain before any step runs.
BUILD_ERRORS = (AuthorizationError, DeserializeError, BuildError)
