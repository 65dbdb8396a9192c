"""Shared pytest fixtures for Xiaobao tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from xiaobao.core.config import XiaobaoConfig
from xiaobao.core.errors import QueryError
from xiaobao.core.models import JobStatus, Task


class ScriptedProvider:
    """Stand-in for KieClient that replays a fixed list of status results.

    Each ``query_status`` call consumes the next scripted item; the last item
    repeats once the script is exhausted.  Items that are exceptions are
    raised instead of returned.
    """

    def __init__(
        self,
        statuses: list[JobStatus | Exception] | None = None,
        *,
        job_id: str = "job-1",
        submit_error: Exception | None = None,
    ) -> None:
        self.statuses = list(statuses or [JobStatus(job_id=job_id, state="running")])
        self.job_id = job_id
        self.submit_error = submit_error
        self.submitted: list[str] = []
        self.queries = 0
        self.closed = False

    async def submit(self, prompt: str, options=None) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(prompt)
        return self.job_id

    async def query_status(self, job_id: str) -> JobStatus:
        self.queries += 1
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def check_quota(self) -> dict:
        return {"remaining": 100}

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> XiaobaoConfig:
    """Create a mock-mode configuration storing tasks in a temp directory.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        XiaobaoConfig instance for testing
    """
    return XiaobaoConfig(
        _env_file=None,
        kie_api_key=None,
        mock_image_generation=True,
        environment="test",
        task_store_path=temp_dir / "tasks.json",
        poll_interval_s=0.0,
        poll_max_attempts=5,
    )


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Factory for Task records with sensible defaults.

    Returns:
        Callable accepting Task field overrides
    """

    def _make(**overrides) -> Task:
        fields = {
            "id": "task-1",
            "theme": "超市",
            "title": "快乐购物",
            "prompt": "A literacy newspaper about a supermarket.",
        }
        fields.update(overrides)
        return Task(**fields)

    return _make


@pytest.fixture
def scripted_provider() -> type[ScriptedProvider]:
    """Return the ScriptedProvider class so tests can script responses."""
    return ScriptedProvider


@pytest.fixture
def running() -> Callable[[str], JobStatus]:
    """Factory for non-terminal provider statuses."""
    return lambda job_id="job-1": JobStatus(job_id=job_id, state="running")


@pytest.fixture
def transient_error() -> Callable[[], QueryError]:
    """Factory for a transient (retryable) query error."""
    return lambda: QueryError("Provider returned HTTP 502: bad gateway", status_code=502)
