"""Domain model for users, tasks and dependency edges.

Everything here is a plain dataclass that round-trips through ``to_dict`` /
``from_dict`` so the entity store can persist it as YAML.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Optional

from ..utils import _now_iso, _parse_date


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    DEFERRED = "deferred"


class UserRole(str, Enum):
    ADMIN = "admin"    # may act on any task and manage users
    MEMBER = "member"  # may act on owned tasks only


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _generate_id(prefix: str) -> str:
    """Short human-friendly id: ``<prefix>-<12hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _enum_or(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Actor / User
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Actor:
    """Already-authenticated identity supplied by the calling layer."""

    user_id: str
    role: UserRole = UserRole.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def can_modify(self, task: "Task") -> bool:
        return self.is_admin or task.owner_id == self.user_id


@dataclass
class User:
    """A registered user. ``password_hash`` is opaque to the engine."""

    id: str = field(default_factory=lambda: _generate_id("user"))
    username: str = ""
    email: str = ""
    role: UserRole = UserRole.MEMBER
    password_hash: str = ""
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def as_actor(self) -> Actor:
        return Actor(user_id=self.id, role=self.role)

    def copy(self) -> "User":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "password_hash": self.password_hash,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_public_dict(self) -> dict[str, Any]:
        data = self.to_dict()
        data.pop("password_hash", None)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=str(data.get("id") or _generate_id("user")),
            username=str(data.get("username") or ""),
            email=str(data.get("email") or ""),
            role=_enum_or(UserRole, data.get("role"), UserRole.MEMBER),
            password_hash=str(data.get("password_hash") or ""),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A unit of work owned by a user."""

    # Identity
    id: str = field(default_factory=lambda: _generate_id("task"))
    owner_id: str = ""
    description: str = ""

    # Lifecycle
    status: TaskStatus = TaskStatus.NOT_STARTED
    progress: int = 0
    due_date: Optional[date] = None

    # Bookkeeping
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "description": self.description,
            "status": self.status.value,
            "progress": self.progress,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums and dates gracefully."""
        return cls(
            id=str(data.get("id") or _generate_id("task")),
            owner_id=str(data.get("owner_id") or ""),
            description=str(data.get("description") or ""),
            status=_enum_or(TaskStatus, data.get("status"), TaskStatus.NOT_STARTED),
            progress=int(data.get("progress") or 0),
            due_date=_parse_date(data.get("due_date")),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
            completed_at=data.get("completed_at"),
        )

    def copy(self) -> "Task":
        return replace(self)

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def transition(self, new_status: TaskStatus, progress: int) -> None:
        """Apply an already-resolved status/progress pair with timestamp bookkeeping."""
        if new_status == TaskStatus.COMPLETED and self.status != TaskStatus.COMPLETED:
            self.completed_at = _now_iso()
        elif new_status != TaskStatus.COMPLETED:
            self.completed_at = None
        self.status = new_status
        self.progress = progress
        self.touch()

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


# ---------------------------------------------------------------------------
# Dependency edge
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DependencyEdge:
    """``dependent_id`` cannot be completed before ``dependency_id``."""

    dependent_id: str
    dependency_id: str
    created_at: str = field(default_factory=_now_iso, compare=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.dependent_id, self.dependency_id)

    def touches(self, task_id: str) -> bool:
        return task_id in (self.dependent_id, self.dependency_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dependent_id": self.dependent_id,
            "dependency_id": self.dependency_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DependencyEdge":
        return cls(
            dependent_id=str(data.get("dependent_id") or ""),
            dependency_id=str(data.get("dependency_id") or ""),
            created_at=str(data.get("created_at") or _now_iso()),
        )
