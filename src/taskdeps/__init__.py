"""Provide the public `taskdeps` package exports."""

from __future__ import annotations

from .config import EngineConfig, load_engine_config
from .engine.model import Actor, DependencyEdge, Task, TaskStatus, User, UserRole
from .engine.service import TaskService
from .engine.store import EntityStore

__all__ = [
    "Actor",
    "DependencyEdge",
    "EngineConfig",
    "EntityStore",
    "Task",
    "TaskService",
    "TaskStatus",
    "User",
    "UserRole",
    "load_engine_config",
]
