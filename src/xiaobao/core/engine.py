"""Task lifecycle orchestration.

:class:`TaskEngine` is the single entry point the HTTP layer talks to.  It
validates a request, persists an initial ``processing`` record and hands the
slow part (provider submission plus polling) to a background ``asyncio``
task, so :meth:`TaskEngine.create_task` returns as soon as the record
exists.  Callers observe progress only by reading the task back.

Lifecycle
---------
::

    create_task ──► processing ──► generating ──► completed
                          │              └─────► failed
                          └────────────────────► failed

Every transition is written through the task store as soon as it happens.
Exactly one background run exists per task id, so the transitions of one
task are strictly sequential.

Failure Handling
----------------
Modelled failures (:class:`~xiaobao.core.errors.XiaobaoError`: submission
or query errors, provider ``fail``, poll timeout) end the run with
``failed`` and the error message.  Anything else is logged with its
traceback and also ends the run with ``failed``: a fault never leaves a
task stuck in ``processing`` or ``generating``.

Mock Mode
---------
Without provider credentials the engine can synthesize a deterministic
placeholder SVG (as a ``data:`` URI) instead of calling the provider.  Mock
runs go through the same transitions and the same store writes.

Restarts
--------
Background runs are cancelled on shutdown without touching the stored
record.  :meth:`TaskEngine.recover_pending` picks them up again on the next
start: polling resumes for tasks that already have a provider job id, tasks
interrupted before submission are failed (resubmitting could bill the same
request twice), and mock tasks are simply re-run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any
from urllib.parse import quote

from xiaobao.core.errors import (
    NotFoundError,
    ProviderNotConfiguredError,
    ValidationError,
    XiaobaoError,
)
from xiaobao.core.models import ACTIVE_STATUSES, Task, new_task_id
from xiaobao.core.notifier import CallbackNotifier
from xiaobao.core.poller import Poller
from xiaobao.core.prompt_builder import PromptBuilder
from xiaobao.core.provider import GenerationOptions, KieClient, estimate_processing_time
from xiaobao.core.task_store import TaskStore

logger = logging.getLogger(__name__)

MOCK_ESTIMATED_TIME = 5

_MOCK_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="768" height="1024">'
    '<rect width="100%" height="100%" fill="#f7f7ff"/>'
    '<text x="50%" y="45%" dominant-baseline="middle" text-anchor="middle" '
    'font-family="Arial" font-size="28" fill="#333">MOCK IMAGE</text>'
    '<text x="50%" y="52%" dominant-baseline="middle" text-anchor="middle" '
    'font-family="Arial" font-size="18" fill="#666">Set XIAOBAO_KIE_API_KEY for real generation</text>'
    "</svg>"
)


def mock_image_url() -> str:
    """Return the placeholder image used in mock mode."""
    return f"data:image/svg+xml;utf8,{quote(_MOCK_SVG)}"


class TaskEngine:
    """Create tasks, run them in the background and serve their state."""

    def __init__(
        self,
        store: TaskStore,
        prompt_builder: PromptBuilder | None = None,
        *,
        client: KieClient | None = None,
        poller: Poller | None = None,
        notifier: CallbackNotifier | None = None,
        mock: bool = False,
        mock_delay_s: float = 0.0,
        generation_options: GenerationOptions | None = None,
    ) -> None:
        self._store = store
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.client = client
        if poller is None and client is not None:
            poller = Poller(client)
        self._poller = poller
        self._notifier = notifier
        self.mock = mock
        self._mock_delay_s = mock_delay_s
        self._options = generation_options or GenerationOptions()
        # Strong references keep fire-and-forget tasks alive until done.
        self._background: set[asyncio.Task] = set()

    @property
    def provider_configured(self) -> bool:
        return self.client is not None

    # -- Public interface ---------------------------------------------------

    async def create_task(
        self,
        theme: str | None,
        title: str | None,
        *,
        style: str = "cartoon",
        custom_words: list[str] | None = None,
        callback_url: str | None = None,
    ) -> Task:
        """Persist a new task and start generating it in the background.

        Returns:
            The freshly stored ``processing`` task.

        Raises:
            ValidationError: Theme or title missing, or the theme is unknown
                and no custom words were given.
            ProviderNotConfiguredError: No provider client and mock mode
                disabled.
        """
        theme = (theme or "").strip()
        title = (title or "").strip()
        if not theme or not title:
            raise ValidationError("Missing required fields: theme and title are required")
        if not self.mock and self.client is None:
            raise ProviderNotConfiguredError(
                "Image generation is not configured: set XIAOBAO_KIE_API_KEY and retry"
            )

        words = self.prompt_builder.resolve_words(theme, custom_words)
        prompt = self.prompt_builder.build_prompt(theme, title, words, style=style)
        task = Task(
            id=new_task_id(),
            theme=theme,
            title=title,
            prompt=prompt,
            style=style or "cartoon",
            word_list=words,
            callback_url=callback_url or None,
            estimated_time=MOCK_ESTIMATED_TIME if self.mock else estimate_processing_time(prompt),
        )
        self._store.set(task.id, task)
        self._spawn(self._run(task))
        logger.info("Created task %s theme=%s mock=%s", task.id, theme, self.mock)
        return task

    def get_task(self, task_id: str) -> Task:
        task = self._store.get(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    def list_tasks(self) -> list[Task]:
        return self._store.list()

    def active_count(self) -> int:
        """Number of stored tasks that have not reached a terminal state."""
        return sum(1 for task in self._store.list() if task.status in ACTIVE_STATUSES)

    def recover_pending(self) -> int:
        """Resume tasks left non-terminal by a previous process.

        Must be called from inside the running event loop.

        Returns:
            Number of tasks resumed or failed.
        """
        recovered = 0
        for task in self._store.list():
            if task.is_terminal:
                continue
            recovered += 1
            if self.mock or task.provider_job_id is not None:
                logger.info("Resuming task %s (job=%s)", task.id, task.provider_job_id)
                self._spawn(self._run(task))
            else:
                logger.warning("Task %s was interrupted before submission", task.id)
                self._save(task.mark_failed("Interrupted by a restart before the job was submitted"))
        return recovered

    async def drain(self) -> None:
        """Wait for every background run (and the callbacks they spawn)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background runs, flush the store and close HTTP clients."""
        pending = list(self._background)
        for job in pending:
            job.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._store.flush()
        if self.client is not None:
            await self.client.aclose()
        if self._notifier is not None:
            await self._notifier.aclose()

    # -- Background run -----------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        job = asyncio.get_running_loop().create_task(coro)
        self._background.add(job)
        job.add_done_callback(self._background.discard)
        return job

    async def _run(self, task: Task) -> None:
        try:
            outcome = await self._generate(task)
        except XiaobaoError as exc:
            logger.warning("Task %s failed: %s", task.id, exc)
            outcome = self._latest(task).mark_failed(str(exc))
        except Exception as exc:
            logger.exception("Task %s crashed unexpectedly", task.id)
            outcome = self._latest(task).mark_failed(str(exc) or type(exc).__name__)

        if outcome is None or not self._save(outcome):
            return
        logger.info("Task %s finished status=%s", outcome.id, outcome.status)
        if outcome.callback_url and self._notifier is not None:
            self._spawn(self._notifier.notify(outcome.callback_url, outcome))

    async def _generate(self, task: Task) -> Task | None:
        """Run one task to its terminal record; ``None`` if it was deleted."""
        task = task.mark_generating()
        if not self._save(task):
            return None

        if self.mock:
            if self._mock_delay_s > 0:
                await asyncio.sleep(self._mock_delay_s)
            return task.mark_completed(mock_image_url())

        if self.client is None or self._poller is None:
            raise ProviderNotConfiguredError("No image provider is configured")

        if task.provider_job_id is None:
            job_id = await self.client.submit(task.prompt, self._options)
            task = task.with_provider_job(job_id)
            if not self._save(task):
                return None

        result = await self._poller.wait(task.provider_job_id)
        return task.mark_completed(result.result_url, cost_time_ms=result.cost_time_ms)

    def _latest(self, task: Task) -> Task:
        return self._store.get(task.id) or task

    def _save(self, task: Task) -> bool:
        """Write *task* unless it was deleted or already reached a terminal state."""
        current = self._store.get(task.id)
        if current is None:
            logger.info("Task %s was deleted, dropping %s update", task.id, task.status)
            return False
        if current.is_terminal:
            return False
        self._store.set(task.id, task)
        return True
