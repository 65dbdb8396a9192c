"""Best-effort delivery of terminal task state to a caller-supplied URL.

Delivery is at-most-once: one POST, no retry, failures are logged and never
raised.  Callers that need certainty reconcile by polling the task status
endpoint.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from xiaobao.core.models import Task

logger = logging.getLogger(__name__)


def callback_payload(task: Task) -> dict[str, Any]:
    """Build the JSON body posted to the callback URL."""
    result = None
    if task.status == "completed":
        result = {
            "image_url": task.result_url,
            "word_list": task.word_list.model_dump() if task.word_list else None,
        }
    return {
        "task_id": task.id,
        "status": task.status,
        "result": result,
        "error": task.error if task.status == "failed" else None,
    }


class CallbackNotifier:
    """Fire-and-forget POST of a task's terminal state."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def notify(self, url: str, task: Task) -> None:
        try:
            response = await self._client.post(url, json=callback_payload(task))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Callback for task %s to %s failed: %s", task.id, url, exc)
            return
        if not response.is_success:
            logger.warning(
                "Callback for task %s to %s returned HTTP %d",
                task.id,
                url,
                response.status_code,
            )
            return
        logger.info("Callback for task %s delivered to %s", task.id, url)

    async def aclose(self) -> None:
        await self._client.aclose()
