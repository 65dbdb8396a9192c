"""Task record storage for the Xiaobao engine.

Two implementations share the :class:`TaskStore` protocol:

- :class:`InMemoryTaskStore` keeps tasks in a dict and nothing else.  Used by
  unit tests and by throwaway runs where restarts may lose tasks.
- :class:`JsonFileTaskStore` keeps the same dict and mirrors it to a single
  JSON file (``{"version": 1, "tasks": [...]}``) after every mutation.

Persistence Discipline
----------------------
The in-memory table is only touched from the event loop thread, so reads and
writes need no lock.  Persistence is the only side effect that can overlap,
and it is serialized: every mutation appends one write to a FIFO chain of
``asyncio`` tasks, each of which waits for its predecessor before starting.
At most one write is in flight per store.

A write never modifies the stable file in place.  The snapshot goes to a
temporary file in the same directory, is flushed and fsynced, and then
replaces the stable file with ``os.replace`` (atomic on POSIX and Windows).
A crash mid-write leaves either the old snapshot or the new one on disk.

Write failures are logged and dropped.  The in-memory table stays correct,
and the next mutation writes a fresh full snapshot.

Corrupt Files
-------------
If the stable file holds content that is not a valid snapshot the bytes are
copied to ``<stem>.corrupt.<epoch-ms>.json`` beside it, the stable file is
removed, and the store starts empty.  Loading never raises on bad content.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from xiaobao.core.errors import CorruptStateError, PersistenceError
from xiaobao.core.models import Task, TaskSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class TaskStore(Protocol):
    """Key-value storage for task records."""

    def get(self, task_id: str) -> Task | None: ...

    def set(self, task_id: str, task: Task) -> None: ...

    def delete(self, task_id: str) -> None: ...

    def list(self) -> list[Task]: ...

    async def flush(self) -> None: ...


class InMemoryTaskStore:
    """Dict-backed store without persistence."""

    def __init__(self, tasks: list[Task] | None = None) -> None:
        self._tasks: dict[str, Task] = {task.id: task for task in tasks or []}

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def set(self, task_id: str, task: Task) -> None:
        self._tasks[task_id] = task

    def delete(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)

    def list(self) -> list[Task]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    async def flush(self) -> None:
        return None


class JsonFileTaskStore(InMemoryTaskStore):
    """Task store mirrored to a JSON file with atomic replace semantics."""

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self.path = Path(path)
        self._persist_chain: asyncio.Task | None = None
        self.load()

    # -- Mutations ----------------------------------------------------------

    def set(self, task_id: str, task: Task) -> None:
        super().set(task_id, task)
        self._schedule_persist()

    def delete(self, task_id: str) -> None:
        super().delete(task_id)
        self._schedule_persist()

    # -- Loading ------------------------------------------------------------

    def load(self) -> None:
        """Replace the in-memory table with the contents of the stable file.

        A missing or blank file yields an empty table.  Corrupt content is
        quarantined (see module docstring) and also yields an empty table.
        """
        self._tasks.clear()
        if not self.path.exists():
            return

        raw = self.path.read_bytes()
        if not raw.strip():
            return

        try:
            snapshot = self._parse_snapshot(raw)
        except CorruptStateError as exc:
            backup = self._quarantine(raw)
            logger.warning(
                "Task store %s is corrupt (%s); preserved as %s and starting empty",
                self.path,
                exc,
                backup,
            )
            return

        for task in snapshot.tasks:
            self._tasks[task.id] = task
        logger.info("Loaded %d tasks from %s", len(self._tasks), self.path)

    @staticmethod
    def _parse_snapshot(raw: bytes) -> TaskSnapshot:
        try:
            return TaskSnapshot.model_validate_json(raw)
        except PydanticValidationError as exc:
            raise CorruptStateError(f"{exc.error_count()} validation error(s)") from exc

    def _quarantine(self, raw: bytes) -> Path | None:
        """Copy corrupt content to a timestamped side file and drop the original."""
        backup = self.path.with_name(f"{self.path.stem}.corrupt.{int(time.time() * 1000)}.json")
        try:
            backup.write_bytes(raw)
        except OSError:
            logger.exception("Could not preserve corrupt task store %s", self.path)
            return None
        try:
            self.path.unlink()
        except OSError:
            logger.warning("Could not remove corrupt task store %s", self.path)
        return backup

    # -- Persistence --------------------------------------------------------

    def _schedule_persist(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (startup code, scripts): write synchronously.
            self._persist_now()
            return

        previous = self._persist_chain
        if previous is not None and previous.get_loop() is not loop:
            previous = None
        self._persist_chain = loop.create_task(self._persist_after(previous))

    async def _persist_after(self, previous: asyncio.Task | None) -> None:
        if previous is not None and not previous.done():
            # asyncio.wait never raises the predecessor's exception.
            await asyncio.wait([previous])
        payload = self._serialize()
        try:
            await asyncio.to_thread(self._write_atomic, payload)
        except PersistenceError as exc:
            logger.error("Task store write failed: %s", exc)

    def _persist_now(self) -> None:
        try:
            self._write_atomic(self._serialize())
        except PersistenceError as exc:
            logger.error("Task store write failed: %s", exc)

    def _serialize(self) -> str:
        snapshot = TaskSnapshot(version=SNAPSHOT_VERSION, tasks=self.list())
        return snapshot.model_dump_json(indent=2)

    def _write_atomic(self, payload: str) -> None:
        """Write *payload* to a temp file and atomically move it into place."""
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=self.path.parent,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"could not write {self.path}: {exc}") from exc

    async def flush(self) -> None:
        """Wait until every scheduled write has finished."""
        chain = self._persist_chain
        if chain is not None and not chain.done() and chain.get_loop() is asyncio.get_running_loop():
            await asyncio.wait([chain])
