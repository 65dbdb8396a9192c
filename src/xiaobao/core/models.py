"""Task record and provider job models.

:class:`Task` is the persisted record tracking one generation request from
creation to a terminal state.  It is a frozen Pydantic model: the engine
never mutates a task in place, it asks for a transitioned copy through
:meth:`Task.mark_generating`, :meth:`Task.with_provider_job`,
:meth:`Task.mark_completed` and :meth:`Task.mark_failed`.  Each copy is
re-validated, so the terminal-state invariants below hold for every task
that exists in memory or on disk.

Invariants
----------
- ``completed`` ⇔ ``result_url`` set and ``error`` unset.
- ``failed`` ⇔ ``error`` set and ``result_url`` unset.
- ``processing`` / ``generating`` ⇒ neither ``result_url`` nor ``error``.
- ``completed_at`` is set iff the status is terminal, and once set it is
  never changed (transition helpers are no-ops on a terminal task).

:class:`JobStatus` is the provider's view of a job.  It is read by the
poller and never persisted.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

TaskStatus = Literal["processing", "generating", "completed", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
ACTIVE_STATUSES: frozenset[str] = frozenset({"processing", "generating"})

# Normalised provider job states.  Raw provider states outside this set are
# mapped onto "queued" or "running" by the provider client.
JobState = Literal["queued", "running", "success", "fail"]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def new_task_id() -> str:
    """Return a fresh opaque task identifier."""
    return str(uuid.uuid4())


class WordList(BaseModel):
    """Vocabulary rendered onto one newspaper, grouped by role."""

    core: list[str] = Field(default_factory=list)
    items: list[str] = Field(default_factory=list)
    environment: list[str] = Field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.core) + len(self.items) + len(self.environment)


class Task(BaseModel):
    """Canonical task record shared by the engine, the store and the API."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: TaskStatus = "processing"
    theme: str
    title: str
    prompt: str
    style: str = "cartoon"
    word_list: WordList | None = None
    provider_job_id: str | None = None
    result_url: str | None = None
    error: str | None = None
    callback_url: str | None = None
    estimated_time: int = 0
    cost_time_ms: int | None = None
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def _check_terminal_invariants(self) -> Task:
        if self.status == "completed":
            if not self.result_url or self.error is not None:
                raise ValueError("completed task requires result_url and no error")
        elif self.status == "failed":
            if not self.error or self.result_url is not None:
                raise ValueError("failed task requires error and no result_url")
        elif self.result_url is not None or self.error is not None:
            raise ValueError(f"{self.status} task cannot carry result_url or error")

        if self.is_terminal != (self.completed_at is not None):
            raise ValueError("completed_at must be set exactly when the task is terminal")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # -- Transitions --------------------------------------------------------

    def _evolve(self, **changes: Any) -> Task:
        """Return a validated copy with *changes* applied."""
        return Task.model_validate({**self.model_dump(), **changes})

    def mark_generating(self) -> Task:
        if self.is_terminal:
            return self
        return self._evolve(status="generating")

    def with_provider_job(self, job_id: str) -> Task:
        if self.is_terminal:
            return self
        return self._evolve(provider_job_id=job_id)

    def mark_completed(
        self,
        result_url: str,
        *,
        cost_time_ms: int | None = None,
        at: datetime | None = None,
    ) -> Task:
        if self.is_terminal:
            return self
        return self._evolve(
            status="completed",
            result_url=result_url,
            cost_time_ms=cost_time_ms,
            completed_at=at or utc_now(),
        )

    def mark_failed(self, error: str, *, at: datetime | None = None) -> Task:
        if self.is_terminal:
            return self
        return self._evolve(
            status="failed",
            error=error or "Unknown error",
            completed_at=at or utc_now(),
        )


class TaskSnapshot(BaseModel):
    """On-disk layout of the task store: ``{"version": 1, "tasks": [...]}``."""

    version: int = 1
    tasks: list[Task] = Field(default_factory=list)


@dataclass(slots=True)
class JobStatus:
    """One observation of a provider job."""

    job_id: str
    state: JobState
    result_urls: list[str] = field(default_factory=list)
    fail_reason: str | None = None
    cost_time_ms: int | None = None
    complete_time: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in ("success", "fail")
