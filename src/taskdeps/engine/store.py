"""File-based entity store with serialized, bounded-time transactions.

Users, tasks and dependency edges live in a single YAML file (``store.yaml``)
inside the state directory.  All access goes through :meth:`EntityStore.transaction`
(or the read-only :meth:`EntityStore.snapshot`), which holds an in-process
``RLock`` plus an exclusive ``filelock`` lock for the whole read-check-write.
This is the single global mutation lock for the dependency graph: two
concurrent edge insertions can never both pass their cycle check against the
same stale edge set.

The parsed file is cached in memory, keyed on a token built from the file's
inode, mtime, size and ``revision`` line.  While the token is unchanged a
transaction starts from the cache instead of re-parsing, and a commit compares
tokens instead of reading the file back.  Before anything is written the
transaction re-verifies the token, referential integrity and acyclicity, so a
bad write cannot reach disk.
"""

from __future__ import annotations

import os
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

from filelock import FileLock, Timeout
from loguru import logger

from ..constants import DEFAULT_LOCK_TIMEOUT, LOCK_FILE, STORE_FILE, STORE_VERSION
from ..errors import ConcurrentModificationError, CyclicDependencyError, ValidationError
from ..io_utils import _atomic_write_yaml, _load_yaml_with_error
from .graph import DependencyGraph
from .model import DependencyEdge, Task, TaskStatus, User

FileToken = tuple[int, int, int, int]

_REVISION_RE = re.compile(rb"^revision: (\d+)$", re.MULTILINE)


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _empty_payload() -> dict[str, Any]:
    return {"version": STORE_VERSION, "revision": 0, "users": [], "tasks": [], "dependencies": []}


def _load_raw(path: Path) -> dict[str, Any]:
    """Load the raw payload from *path*, returning an empty store if missing."""
    data, err = _load_yaml_with_error(path, _empty_payload())
    if err:
        # Never overwrite a store we could not parse.
        raise RuntimeError(f"Cannot read entity store: {err}")
    return data


def _as_dict_list(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


def _file_token(path: Path) -> Optional[FileToken]:
    """Cheap change detector for *path*; ``None`` when the file does not exist.

    Combines the stat fields with the ``revision`` line written near the top of
    the file, so two writes inside one timestamp tick still differ.
    """
    try:
        with open(path, "rb") as handle:
            st = os.fstat(handle.fileno())
            head = handle.read(256)
    except FileNotFoundError:
        return None
    match = _REVISION_RE.search(head)
    return (st.st_ino, st.st_mtime_ns, st.st_size, int(match.group(1)) if match else -1)


@dataclass
class _CachedState:
    token: Optional[FileToken]
    revision: int
    users: list[User]
    tasks: list[Task]
    edges: list[DependencyEdge]


# ---------------------------------------------------------------------------
# EntityStore
# ---------------------------------------------------------------------------

class EntityStore:
    """Thread- and process-safe, file-backed store for users, tasks and edges.

    Parameters
    ----------
    state_dir:
        Directory holding ``store.yaml`` and its lock file.
    lock_timeout:
        Seconds to wait for the mutation lock before giving up with
        :class:`ConcurrentModificationError`.
    """

    def __init__(self, state_dir: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.state_dir = state_dir
        self.lock_timeout = lock_timeout
        self._store_path = state_dir / STORE_FILE
        self._lock_path = state_dir / LOCK_FILE
        self._file_lock = FileLock(str(self._lock_path))
        self._thread_lock = threading.RLock()
        self._cache: Optional[_CachedState] = None

    @property
    def path(self) -> Path:
        return self._store_path

    # -- locking ------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._thread_lock.acquire(timeout=self.lock_timeout):
            raise ConcurrentModificationError(
                f"Timed out after {self.lock_timeout}s waiting for the store lock"
            )
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            try:
                self._file_lock.acquire(timeout=self.lock_timeout)
            except Timeout as exc:
                raise ConcurrentModificationError(
                    f"Timed out after {self.lock_timeout}s waiting for {self._lock_path.name}"
                ) from exc
            try:
                yield
            finally:
                self._file_lock.release()
        finally:
            self._thread_lock.release()

    # -- internal helpers ---------------------------------------------------

    def _state(self) -> _CachedState:
        """Return the parsed store, re-reading the file only when it changed."""
        token = _file_token(self._store_path)
        if self._cache is None or self._cache.token != token:
            raw = _load_raw(self._store_path)
            self._cache = _CachedState(
                token=token,
                revision=int(raw.get("revision") or 0),
                users=[User.from_dict(d) for d in _as_dict_list(raw.get("users"))],
                tasks=[Task.from_dict(d) for d in _as_dict_list(raw.get("tasks"))],
                edges=[DependencyEdge.from_dict(d) for d in _as_dict_list(raw.get("dependencies"))],
            )
            logger.debug("Loaded store revision {} from {}", self._cache.revision, self._store_path.name)
        return self._cache

    def _load(self, read_only: bool = False) -> StoreTransaction:
        state = self._state()
        return StoreTransaction(
            users=state.users,
            tasks=state.tasks,
            edges=state.edges,
            revision=state.revision,
            read_only=read_only,
            token=state.token,
        )

    def _commit(self, tx: StoreTransaction) -> None:
        on_disk = _file_token(self._store_path)
        if on_disk != tx.token:
            raise ConcurrentModificationError(
                f"Store changed underneath the transaction (loaded revision {tx.revision})",
                expected_revision=tx.revision,
            )
        tx.verify()
        payload = {
            "version": STORE_VERSION,
            "revision": tx.revision + 1,
            "users": [u.to_dict() for u in tx.users.values()],
            "tasks": [t.to_dict() for t in tx.tasks.values()],
            "dependencies": [e.to_dict() for e in tx.edges],
        }
        _atomic_write_yaml(self._store_path, payload)
        tx.revision += 1
        tx.token = _file_token(self._store_path)
        self._cache = _CachedState(
            token=tx.token,
            revision=tx.revision,
            users=list(tx.users.values()),
            tasks=list(tx.tasks.values()),
            edges=list(tx.edges),
        )
        logger.debug("Committed store revision {}", tx.revision)

    # -- public API ---------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Acquire the lock, load state, yield a transaction, and commit on exit.

        Nothing is written if the body raises, so a rejected mutation leaves
        the store untouched::

            with store.transaction() as tx:
                tx.add_edge(DependencyEdge("task-a", "task-b"))
                # verified and saved on exit
        """
        with self._locked():
            tx = self._load()
            yield tx
            if tx.dirty:
                self._commit(tx)

    @contextmanager
    def snapshot(self) -> Iterator[StoreTransaction]:
        """Yield a consistent read-only view taken under the lock."""
        with self._locked():
            yield self._load(read_only=True)

    @property
    def revision(self) -> int:
        with self._locked():
            return self._state().revision


class StoreTransaction:
    """In-memory view of the store for the duration of one transaction.

    Mutations mark the transaction dirty; :class:`EntityStore` flushes it to
    disk when the ``transaction`` context-manager exits cleanly.  Entities are
    shared with the store's cache: replace them with ``put_*`` instead of
    mutating them in place.
    """

    def __init__(
        self,
        users: list[User],
        tasks: list[Task],
        edges: list[DependencyEdge],
        revision: int = 0,
        read_only: bool = False,
        token: Optional[FileToken] = None,
    ) -> None:
        self.users: dict[str, User] = {u.id: u for u in users}
        self.tasks: dict[str, Task] = {t.id: t for t in tasks}
        self.edges: list[DependencyEdge] = list(edges)
        self._edge_keys: set[tuple[str, str]] = {e.key for e in self.edges}
        self.revision = revision
        self.token = token
        self.read_only = read_only
        self.dirty = False

    def _write(self) -> None:
        if self.read_only:
            raise RuntimeError("Cannot modify a read-only snapshot")
        self.dirty = True

    # -- users --------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def find_user_by_username(self, username: str) -> Optional[User]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    def list_users(self) -> list[User]:
        return list(self.users.values())

    def add_user(self, user: User) -> User:
        if user.id in self.users:
            raise ValueError(f"User {user.id} already exists")
        self._write()
        self.users[user.id] = user
        return user

    def put_user(self, user: User) -> User:
        if user.id not in self.users:
            raise KeyError(user.id)
        self._write()
        self.users[user.id] = user
        return user

    # -- tasks --------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def list_tasks(
        self,
        *,
        status: Optional[TaskStatus] = None,
        owner_id: Optional[str] = None,
    ) -> list[Task]:
        out: list[Task] = []
        for t in self.tasks.values():
            if status is not None and t.status != status:
                continue
            if owner_id is not None and t.owner_id != owner_id:
                continue
            out.append(t)
        return out

    def add_task(self, task: Task) -> Task:
        if task.id in self.tasks:
            raise ValueError(f"Task {task.id} already exists")
        self._write()
        self.tasks[task.id] = task
        return task

    def put_task(self, task: Task) -> Task:
        if task.id not in self.tasks:
            raise KeyError(task.id)
        self._write()
        self.tasks[task.id] = task
        return task

    def remove_task(self, task_id: str) -> bool:
        """Physically remove a task. Edges must be removed first."""
        if task_id not in self.tasks:
            return False
        self._write()
        del self.tasks[task_id]
        return True

    # -- edges --------------------------------------------------------------

    def has_edge(self, dependent_id: str, dependency_id: str) -> bool:
        return (dependent_id, dependency_id) in self._edge_keys

    def add_edge(self, edge: DependencyEdge) -> DependencyEdge:
        if edge.key in self._edge_keys:
            raise ValueError(f"Edge {edge.dependent_id} -> {edge.dependency_id} already exists")
        self._write()
        self.edges.append(edge)
        self._edge_keys.add(edge.key)
        return edge

    def remove_edge(self, dependent_id: str, dependency_id: str) -> bool:
        key = (dependent_id, dependency_id)
        if key not in self._edge_keys:
            return False
        self._write()
        self.edges = [e for e in self.edges if e.key != key]
        self._edge_keys.discard(key)
        return True

    def remove_edges_touching(self, task_id: str) -> list[DependencyEdge]:
        """Remove every edge with *task_id* at either end, returning them."""
        removed = [e for e in self.edges if e.touches(task_id)]
        if not removed:
            return []
        self._write()
        self.edges = [e for e in self.edges if not e.touches(task_id)]
        self._edge_keys = {e.key for e in self.edges}
        return removed

    def graph(self) -> DependencyGraph:
        return DependencyGraph(self.edges, nodes=self.tasks.keys())

    # -- integrity ----------------------------------------------------------

    def verify(self) -> None:
        """Re-check the store invariants immediately before commit."""
        for edge in self.edges:
            if edge.dependent_id == edge.dependency_id:
                raise CyclicDependencyError(
                    f"Self-edge on {edge.dependent_id}",
                    cycle=[edge.dependent_id, edge.dependent_id],
                )
            missing = [tid for tid in edge.key if tid not in self.tasks]
            if missing:
                raise ValidationError(
                    f"Edge {edge.dependent_id} -> {edge.dependency_id} references missing tasks {missing}",
                    missing=missing,
                )
        cycle = self.graph().find_cycle()
        if cycle:
            raise CyclicDependencyError(
                f"Commit rejected; dependency cycle {' -> '.join(cycle)}",
                cycle=cycle,
            )
