"""Typed errors raised by the dependency engine.

Every rejection carries a stable ``kind`` string so the calling layer can map
it to a response without parsing messages.
"""

from __future__ import annotations

from typing import Any, Optional


class TaskDepsError(Exception):
    """Base class for all engine errors."""

    kind = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.kind, "detail": self.message}
        if self.context:
            data["context"] = self.context
        return data


class NotFoundError(TaskDepsError):
    kind = "not_found"


class ValidationError(TaskDepsError):
    kind = "validation_error"


class SelfDependencyError(TaskDepsError):
    kind = "self_dependency"


class DuplicateDependencyError(TaskDepsError):
    kind = "duplicate_dependency"


class CyclicDependencyError(TaskDepsError):
    kind = "cyclic_dependency"

    def __init__(self, message: str, cycle: Optional[list[str]] = None, **context: Any) -> None:
        super().__init__(message, cycle=list(cycle or []), **context)
        self.cycle = list(cycle or [])


class DependenciesIncompleteError(TaskDepsError):
    kind = "dependencies_incomplete"

    def __init__(self, message: str, incomplete: Optional[list[str]] = None, **context: Any) -> None:
        super().__init__(message, incomplete=list(incomplete or []), **context)
        self.incomplete = list(incomplete or [])


class ForbiddenError(TaskDepsError):
    kind = "forbidden"


class ConcurrentModificationError(TaskDepsError):
    """A transaction lost a race and may be retried by the caller."""

    kind = "concurrent_modification_conflict"


ERROR_KINDS: tuple[type[TaskDepsError], ...] = (
    NotFoundError,
    ValidationError,
    SelfDependencyError,
    DuplicateDependencyError,
    CyclicDependencyError,
    DependenciesIncompleteError,
    ForbiddenError,
    ConcurrentModificationError,
)
