"""Status/progress transition rules.

Legality is evaluated only when a caller explicitly asks for a change; nothing
here runs in the background.  Any status may move to any other status, with a
single guard: a task may only *become* ``completed`` while every direct
dependency is already ``completed``.  Dependencies are not followed
transitively, each one enforces its own chain when it is completed.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from ..constants import PROGRESS_MAX, PROGRESS_MIN
from ..errors import DependenciesIncompleteError, ValidationError
from .model import Task, TaskStatus


def parse_status(value: Any) -> TaskStatus:
    """Coerce *value* into a :class:`TaskStatus` or raise ``ValidationError``."""
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value))
    except ValueError:
        valid = sorted(s.value for s in TaskStatus)
        raise ValidationError(
            f"'status' must be one of {valid}, got {value!r}",
            field="status",
        ) from None


def validate_progress(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"'progress' must be an integer, got {value!r}",
            field="progress",
        )
    if not PROGRESS_MIN <= value <= PROGRESS_MAX:
        raise ValidationError(
            f"'progress' must be within [{PROGRESS_MIN}, {PROGRESS_MAX}], got {value}",
            field="progress",
        )
    return value


def incomplete_dependencies(dependency_statuses: Mapping[str, TaskStatus]) -> list[str]:
    """Ids of direct dependencies that are not completed, sorted."""
    return sorted(
        dep_id for dep_id, status in dependency_statuses.items()
        if status != TaskStatus.COMPLETED
    )


def resolve_transition(
    current: Task,
    requested_status: Optional[Any],
    requested_progress: Optional[Any],
    dependency_statuses: Mapping[str, TaskStatus],
) -> tuple[TaskStatus, int]:
    """Return the ``(status, progress)`` pair a requested update resolves to.

    Args:
        current: The task as currently stored.
        requested_status: New status, or None to keep the current one.
        requested_progress: New progress, or None to keep the current one.
        dependency_statuses: Current status of each direct dependency.

    Raises:
        ValidationError: Unknown status, progress out of range, or a
            non-completed status requested while progress stays at 100.
        DependenciesIncompleteError: The update would complete the task while
            a direct dependency is not completed.
    """
    status = current.status if requested_status is None else parse_status(requested_status)
    progress = current.progress if requested_progress is None else validate_progress(requested_progress)

    # Setting full progress means done, whatever status was asked for.
    if requested_progress is not None and progress == PROGRESS_MAX:
        status = TaskStatus.COMPLETED
    elif progress == PROGRESS_MAX and status != TaskStatus.COMPLETED:
        raise ValidationError(
            f"Cannot move {current.id} to '{status.value}' while progress is {PROGRESS_MAX}; "
            "lower 'progress' in the same update",
            field="status",
            task_id=current.id,
        )

    if status == TaskStatus.COMPLETED and current.status != TaskStatus.COMPLETED:
        blocking = incomplete_dependencies(dependency_statuses)
        if blocking:
            raise DependenciesIncompleteError(
                f"Cannot complete {current.id}; incomplete dependencies: {blocking}",
                incomplete=blocking,
                task_id=current.id,
            )

    return status, progress


def effective_status(task: Task, dependency_statuses: Mapping[str, TaskStatus]) -> TaskStatus:
    """Display status derived from dependency state; never persisted.

    A task that is not completed but has an unmet direct dependency shows as
    ``blocked``.  Otherwise the stored, caller-asserted status is returned.
    """
    if task.status == TaskStatus.COMPLETED:
        return task.status
    if incomplete_dependencies(dependency_statuses):
        return TaskStatus.BLOCKED
    return task.status
