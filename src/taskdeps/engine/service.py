"""Task & dependency service: CRUD, dependency management and read queries.

This is the entry-point for all task manipulation.  It runs every mutation
inside one :class:`EntityStore` transaction and delegates the graph and status
rules to :mod:`.graph` and :mod:`.status`.  Rejections are raised as typed
errors from :mod:`taskdeps.errors`; the only error retried here is a
transient :class:`ConcurrentModificationError`.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from loguru import logger

from ..config import EngineConfig
from ..errors import (
    ConcurrentModificationError,
    CyclicDependencyError,
    DuplicateDependencyError,
    ForbiddenError,
    NotFoundError,
    SelfDependencyError,
    TaskDepsError,
    ValidationError,
)
from ..utils import _now_iso, _parse_date
from .model import Actor, DependencyEdge, Task, TaskStatus, User, UserRole
from .status import effective_status, parse_status, resolve_transition
from .store import EntityStore, StoreTransaction

T = TypeVar("T")

TASK_PATCH_FIELDS = frozenset({"description", "status", "progress", "due_date"})
USER_PATCH_FIELDS = frozenset({"username", "email", "role", "password_hash"})


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------

def _clean_description(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("'description' is required and must be non-empty", field="description")
    return value.strip()


def _clean_due_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    parsed = _parse_date(value)
    if parsed is None:
        raise ValidationError(f"'due_date' must be a calendar date (YYYY-MM-DD), got {value!r}", field="due_date")
    return parsed


def _clean_username(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("'username' is required and must be non-empty", field="username")
    return value.strip()


def _parse_role(value: Any) -> UserRole:
    try:
        return value if isinstance(value, UserRole) else UserRole(str(value))
    except ValueError:
        valid = sorted(r.value for r in UserRole)
        raise ValidationError(f"'role' must be one of {valid}, got {value!r}", field="role") from None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class TaskService:
    """Orchestrate users, tasks and dependency edges against the entity store.

    Parameters
    ----------
    store:
        The entity store every operation runs against.
    config:
        Engine configuration; only ``max_conflict_retries`` is used here.
    """

    def __init__(self, store: EntityStore, config: Optional[EngineConfig] = None) -> None:
        self.store = store
        self.config = config or EngineConfig()

    @classmethod
    def open(cls, state_dir: Path, config: Optional[EngineConfig] = None) -> "TaskService":
        config = config or EngineConfig()
        return cls(EntityStore(state_dir, lock_timeout=config.lock_timeout), config)

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _mutate(self, op: str, fn: Callable[[StoreTransaction], T]) -> T:
        """Run *fn* in a transaction, retrying lost races a bounded number of times."""
        attempts = max(1, self.config.max_conflict_retries)
        for attempt in range(1, attempts + 1):
            try:
                with self.store.transaction() as tx:
                    return fn(tx)
            except ConcurrentModificationError as exc:
                if attempt >= attempts:
                    logger.warning("{} failed after {} attempts: {}", op, attempt, exc)
                    raise
                logger.warning("{} conflicted (attempt {}/{}); retrying: {}", op, attempt, attempts, exc)
            except TaskDepsError as exc:
                logger.debug("{} rejected: {} ({})", op, exc.kind, exc)
                raise
        raise AssertionError("unreachable")

    @staticmethod
    def _require_task(tx: StoreTransaction, task_id: str) -> Task:
        task = tx.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", task_id=task_id)
        return task

    @staticmethod
    def _require_user(tx: StoreTransaction, user_id: str) -> User:
        user = tx.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        return user

    @staticmethod
    def _require_modify(actor: Actor, task: Task) -> None:
        if not actor.can_modify(task):
            raise ForbiddenError(
                f"User {actor.user_id} may not modify task {task.id}",
                task_id=task.id,
                user_id=actor.user_id,
            )

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise ForbiddenError(f"User {actor.user_id} is not an admin", user_id=actor.user_id)

    @staticmethod
    def _dependency_statuses(tx: StoreTransaction, task_id: str) -> dict[str, TaskStatus]:
        statuses: dict[str, TaskStatus] = {}
        for edge in tx.edges:
            if edge.dependent_id != task_id:
                continue
            dep = tx.get_task(edge.dependency_id)
            if dep is not None:
                statuses[dep.id] = dep.status
        return statuses

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def bootstrap_admin(self, username: str, email: str = "", password_hash: str = "") -> User:
        """Create the first admin. Only allowed while the store has no users."""
        def _op(tx: StoreTransaction) -> User:
            if tx.list_users():
                raise ValidationError("Store already has users; bootstrap is not allowed")
            user = User(
                username=_clean_username(username),
                email=email,
                role=UserRole.ADMIN,
                password_hash=password_hash,
            )
            return tx.add_user(user)

        user = self._mutate("bootstrap_admin", _op)
        logger.info("Bootstrapped admin {} ({})", user.username, user.id)
        return user.copy()

    def create_user(
        self,
        actor: Actor,
        username: str,
        email: str = "",
        role: Any = UserRole.MEMBER,
        password_hash: str = "",
    ) -> User:
        def _op(tx: StoreTransaction) -> User:
            self._require_admin(actor)
            clean_name = _clean_username(username)
            clean_role = _parse_role(role)
            if tx.find_user_by_username(clean_name) is not None:
                raise ValidationError(f"Username {clean_name!r} is already taken", field="username")
            return tx.add_user(User(
                username=clean_name,
                email=email,
                role=clean_role,
                password_hash=password_hash,
            ))

        user = self._mutate("create_user", _op)
        logger.info("Created user {} ({}) role={}", user.username, user.id, user.role.value)
        return user.copy()

    def update_user(self, actor: Actor, user_id: str, patch: dict[str, Any]) -> User:
        unknown = sorted(set(patch) - USER_PATCH_FIELDS)

        def _op(tx: StoreTransaction) -> User:
            self._require_admin(actor)
            if unknown:
                raise ValidationError(f"Cannot update user fields: {unknown}", fields=unknown)
            user = self._require_user(tx, user_id)
            updated = user.copy()
            if "username" in patch:
                name = _clean_username(patch["username"])
                other = tx.find_user_by_username(name)
                if other is not None and other.id != user_id:
                    raise ValidationError(f"Username {name!r} is already taken", field="username")
                updated.username = name
            if "email" in patch:
                updated.email = str(patch["email"] or "")
            if "role" in patch:
                updated.role = _parse_role(patch["role"])
            if "password_hash" in patch:
                updated.password_hash = str(patch["password_hash"] or "")
            updated.updated_at = _now_iso()
            return tx.put_user(updated)

        user = self._mutate("update_user", _op)
        logger.info("Updated user {} fields={}", user.id, sorted(patch))
        return user.copy()

    def get_user(self, user_id: str) -> User:
        with self.store.snapshot() as snap:
            return self._require_user(snap, user_id).copy()

    def list_users(self) -> list[User]:
        with self.store.snapshot() as snap:
            return sorted((u.copy() for u in snap.list_users()), key=lambda u: (u.created_at, u.id))

    # ------------------------------------------------------------------
    # Task CRUD
    # ------------------------------------------------------------------

    def create_task(
        self,
        owner: str,
        description: str,
        status: Any = None,
        progress: Any = None,
        due_date: Any = None,
    ) -> Task:
        """Validate and persist a new task owned by user *owner*."""
        def _op(tx: StoreTransaction) -> Task:
            draft = Task(
                owner_id=owner,
                description=_clean_description(description),
                due_date=_clean_due_date(due_date),
            )
            # A new task has no dependencies, so only the progress rule can bite.
            new_status, new_progress = resolve_transition(draft, status, progress, {})
            draft.transition(new_status, new_progress)
            self._require_user(tx, owner)
            return tx.add_task(draft)

        task = self._mutate("create_task", _op)
        logger.info("Created task {} for {} status={}", task.id, owner, task.status.value)
        return task.copy()

    def get_task(self, task_id: str) -> Task:
        with self.store.snapshot() as snap:
            return self._require_task(snap, task_id).copy()

    def list_tasks(self, *, status: Any = None, owner_id: Optional[str] = None) -> list[Task]:
        wanted = parse_status(status) if status is not None else None
        with self.store.snapshot() as snap:
            tasks = [t.copy() for t in snap.list_tasks(status=wanted, owner_id=owner_id)]
        return sorted(tasks, key=lambda t: (t.created_at, t.id))

    def update_task(self, task_id: str, actor: Actor, patch: dict[str, Any]) -> Task:
        """Apply a partial update. Either the whole patch applies or nothing does."""
        unknown = sorted(set(patch) - TASK_PATCH_FIELDS)

        def _op(tx: StoreTransaction) -> Task:
            if unknown:
                raise ValidationError(f"Cannot update task fields: {unknown}", fields=unknown)
            current = self._require_task(tx, task_id)
            self._require_modify(actor, current)

            updated = current.copy()
            if "description" in patch:
                updated.description = _clean_description(patch["description"])
            if "due_date" in patch:
                updated.due_date = _clean_due_date(patch["due_date"])
            if "status" in patch or "progress" in patch:
                new_status, new_progress = resolve_transition(
                    current,
                    patch.get("status"),
                    patch.get("progress"),
                    self._dependency_statuses(tx, task_id),
                )
                updated.transition(new_status, new_progress)
            updated.touch()
            return tx.put_task(updated)

        task = self._mutate("update_task", _op)
        logger.info("Updated task {} fields={} status={}", task.id, sorted(patch), task.status.value)
        return task.copy()

    def delete_task(self, task_id: str, actor: Actor) -> None:
        """Delete a task and every dependency edge touching it."""
        def _op(tx: StoreTransaction) -> int:
            task = self._require_task(tx, task_id)
            self._require_modify(actor, task)
            removed = tx.remove_edges_touching(task_id)
            tx.remove_task(task_id)
            return len(removed)

        removed = self._mutate("delete_task", _op)
        logger.info("Deleted task {} and {} dependency edges", task_id, removed)

    # ------------------------------------------------------------------
    # Dependency management
    # ------------------------------------------------------------------

    def add_dependency(self, dependent_id: str, dependency_id: str, actor: Actor) -> DependencyEdge:
        """Record that *dependent_id* depends on *dependency_id*.

        Every check and the write happen inside one transaction.
        """
        def _op(tx: StoreTransaction) -> DependencyEdge:
            if dependent_id == dependency_id:
                raise SelfDependencyError(
                    f"Task {dependent_id} cannot depend on itself",
                    task_id=dependent_id,
                )
            dependent = self._require_task(tx, dependent_id)
            self._require_task(tx, dependency_id)
            self._require_modify(actor, dependent)
            if tx.has_edge(dependent_id, dependency_id):
                raise DuplicateDependencyError(
                    f"Dependency {dependent_id} -> {dependency_id} already exists",
                    dependent_id=dependent_id,
                    dependency_id=dependency_id,
                )
            graph = tx.graph()
            if graph.would_create_cycle(dependent_id, dependency_id):
                raise CyclicDependencyError(
                    f"Adding dependency {dependent_id} -> {dependency_id} would create a cycle",
                    cycle=[dependent_id, dependency_id],
                    dependent_id=dependent_id,
                    dependency_id=dependency_id,
                )
            return tx.add_edge(DependencyEdge(dependent_id, dependency_id))

        edge = self._mutate("add_dependency", _op)
        logger.info("Added dependency {} -> {}", dependent_id, dependency_id)
        return edge

    def remove_dependency(self, dependent_id: str, dependency_id: str, actor: Actor) -> bool:
        """Remove an edge if present. Returns False (not an error) when absent."""
        def _op(tx: StoreTransaction) -> bool:
            if not tx.has_edge(dependent_id, dependency_id):
                return False
            dependent = tx.get_task(dependent_id)
            if dependent is not None:
                self._require_modify(actor, dependent)
            return tx.remove_edge(dependent_id, dependency_id)

        removed = self._mutate("remove_dependency", _op)
        if removed:
            logger.info("Removed dependency {} -> {}", dependent_id, dependency_id)
        return removed

    # ------------------------------------------------------------------
    # Read queries
    # ------------------------------------------------------------------

    def list_dependencies(self, task_id: str) -> list[Task]:
        """Direct dependencies of *task_id*, ordered by id."""
        with self.store.snapshot() as snap:
            self._require_task(snap, task_id)
            ids = snap.graph().direct_dependencies(task_id)
            return sorted((snap.tasks[i].copy() for i in ids), key=lambda t: t.id)

    def list_dependents(self, task_id: str) -> list[Task]:
        """Direct dependents of *task_id*, ordered by id."""
        with self.store.snapshot() as snap:
            self._require_task(snap, task_id)
            ids = snap.graph().direct_dependents(task_id)
            return sorted((snap.tasks[i].copy() for i in ids), key=lambda t: t.id)

    def transitive_dependencies(self, task_id: str) -> list[str]:
        with self.store.snapshot() as snap:
            self._require_task(snap, task_id)
            return snap.graph().transitive_dependencies(task_id)

    def transitive_dependents(self, task_id: str) -> list[str]:
        """Every task that would be affected by *task_id* (impact analysis)."""
        with self.store.snapshot() as snap:
            self._require_task(snap, task_id)
            return snap.graph().transitive_dependents(task_id)

    def blocking_dependencies(self, task_id: str) -> list[Task]:
        """Direct dependencies that are not completed yet, ordered by id."""
        return [t for t in self.list_dependencies(task_id) if not t.is_completed]

    def effective_status(self, task_id: str) -> TaskStatus:
        with self.store.snapshot() as snap:
            task = self._require_task(snap, task_id)
            return effective_status(task, self._dependency_statuses(snap, task_id))

    def execution_order(self) -> list[str]:
        """All task ids, dependencies before dependents."""
        with self.store.snapshot() as snap:
            return snap.graph().topological_order()
