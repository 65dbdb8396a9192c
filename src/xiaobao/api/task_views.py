"""Read-only views over stored tasks for the Xiaobao API.

This module keeps response shaping out of ``xiaobao.api.main`` so route
handlers only deal with HTTP concerns.  Nothing here mutates state: every
helper takes a task (or the full task list scanned from the store) and
returns a JSON-ready dictionary.

The admin dashboard expects camelCase keys for the list and stats views,
while the public status endpoint uses snake_case; both shapes are kept for
compatibility with the existing frontend.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime

from xiaobao.core.models import ACTIVE_STATUSES, Task

TOP_THEMES_LIMIT = 5


def task_status_payload(task: Task) -> dict:
    """Build the ``GET /newspaper/task/{task_id}`` response for one task.

    Completed tasks carry a ``result`` block, failed tasks an ``error``, and
    both a ``completed_at``.  Active tasks report their ``estimated_time``
    instead.
    """
    payload: dict = {
        "task_id": task.id,
        "status": task.status,
        "created_at": task.created_at.isoformat(),
    }
    if task.status == "completed":
        payload["result"] = {
            "image_url": task.result_url,
            "word_list": task.word_list.model_dump() if task.word_list else None,
            "prompt_used": task.prompt,
        }
        payload["completed_at"] = _isoformat(task.completed_at)
    elif task.status == "failed":
        payload["error"] = task.error
        payload["completed_at"] = _isoformat(task.completed_at)
    else:
        payload["estimated_time"] = task.estimated_time
    return payload


def duration_seconds(task: Task) -> int | None:
    """Whole seconds between creation and completion, or ``None`` if active."""
    if task.completed_at is None:
        return None
    return max(0, round((task.completed_at - task.created_at).total_seconds()))


def summarize_tasks(tasks: list[Task]) -> dict:
    """Build the admin task list: status counts plus rows, newest first."""
    ordered = sorted(tasks, key=lambda task: task.created_at, reverse=True)
    rows = []
    for task in ordered:
        seconds = duration_seconds(task)
        rows.append(
            {
                "id": task.id,
                "theme": task.theme,
                "title": task.title,
                "status": task.status,
                "createdAt": task.created_at.isoformat(),
                "completedAt": _isoformat(task.completed_at),
                "duration": f"{seconds}s" if seconds is not None else None,
            }
        )

    counts = Counter(task.status for task in tasks)
    return {
        "total": len(tasks),
        "completed": counts["completed"],
        "failed": counts["failed"],
        "processing": sum(counts[status] for status in ACTIVE_STATUSES),
        # No user accounts exist; kept for the dashboard layout.
        "activeUsers": 0,
        "list": rows,
    }


def compute_stats(tasks: list[Task]) -> dict:
    """Aggregate success counts, mean completion time and the top themes.

    ``averageTime`` is the rounded mean duration in seconds over completed
    tasks only; failures would skew it towards the poll timeout.
    """
    counts = Counter(task.status for task in tasks)
    durations = [
        seconds
        for task in tasks
        if task.status == "completed" and (seconds := duration_seconds(task)) is not None
    ]
    average = round(sum(durations) / len(durations)) if durations else 0

    theme_counts = Counter(task.theme for task in tasks if task.theme)
    top_themes = [
        {"name": name, "count": count}
        for name, count in theme_counts.most_common(TOP_THEMES_LIMIT)
    ]

    return {
        "total": len(tasks),
        "success": counts["completed"],
        "failed": counts["failed"],
        "averageTime": average,
        "topThemes": top_themes,
    }


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
