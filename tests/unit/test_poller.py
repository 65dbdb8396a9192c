"""Tests for xiaobao.core.poller — bounded job polling.

The poller takes an injectable ``sleep`` so these tests record the requested
delays instead of waiting.
"""

from __future__ import annotations

import asyncio

import pytest

from xiaobao.core.errors import PollTimeoutError, ProviderJobFailedError, QueryError
from xiaobao.core.models import JobStatus
from xiaobao.core.poller import Poller


class RecordingSleep:
    """Async sleep replacement that records each delay."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def success(urls=("https://cdn.example/a.png",), cost=1500):
    return JobStatus(job_id="job-1", state="success", result_urls=list(urls), cost_time_ms=cost)


class TestPollerConstruction:
    """Constructor validation."""

    def test_rejects_zero_attempts(self, scripted_provider):
        with pytest.raises(ValueError):
            Poller(scripted_provider(), max_attempts=0)


class TestPollerOutcomes:
    """Terminal outcomes of a poll sequence."""

    def test_success_after_running(self, scripted_provider, running):
        provider = scripted_provider([running(), running(), success()])
        sleep = RecordingSleep()
        poller = Poller(provider, interval_s=3.0, max_attempts=10, sleep=sleep)

        result = asyncio.run(poller.wait("job-1"))

        assert result.result_url == "https://cdn.example/a.png"
        assert result.cost_time_ms == 1500
        assert result.attempts == 3
        assert provider.queries == 3
        assert sleep.calls == [3.0, 3.0]

    def test_first_url_wins(self, scripted_provider):
        provider = scripted_provider([success(urls=("https://a", "https://b"))])
        result = asyncio.run(Poller(provider, sleep=RecordingSleep()).wait("job-1"))
        assert result.result_url == "https://a"
        assert result.result_urls == ["https://a", "https://b"]

    def test_fail_raises_job_failed(self, scripted_provider):
        provider = scripted_provider(
            [JobStatus(job_id="job-1", state="fail", fail_reason="quota exceeded")]
        )
        with pytest.raises(ProviderJobFailedError) as excinfo:
            asyncio.run(Poller(provider, sleep=RecordingSleep()).wait("job-1"))
        assert str(excinfo.value) == "Generation failed: quota exceeded"
        assert excinfo.value.reason == "quota exceeded"

    def test_success_without_urls_is_rejected(self, scripted_provider):
        provider = scripted_provider([success(urls=())])
        with pytest.raises(QueryError):
            asyncio.run(Poller(provider, sleep=RecordingSleep()).wait("job-1"))
        assert provider.queries == 1


class TestPollerTimeout:
    """The attempt ceiling is exact."""

    def test_timeout_after_exactly_max_attempts(self, scripted_provider, running):
        provider = scripted_provider([running()])
        sleep = RecordingSleep()
        poller = Poller(provider, interval_s=2.0, max_attempts=4, sleep=sleep)

        with pytest.raises(PollTimeoutError) as excinfo:
            asyncio.run(poller.wait("job-1"))

        assert provider.queries == 4
        # No sleep after the final attempt.
        assert sleep.calls == [2.0, 2.0, 2.0]
        assert excinfo.value.attempts == 4

    def test_single_attempt_never_sleeps(self, scripted_provider, running):
        provider = scripted_provider([running()])
        sleep = RecordingSleep()

        with pytest.raises(PollTimeoutError):
            asyncio.run(Poller(provider, max_attempts=1, sleep=sleep).wait("job-1"))

        assert provider.queries == 1
        assert sleep.calls == []


class TestPollerErrors:
    """Transient errors consume attempts, permanent ones stop at once."""

    def test_transient_then_success(self, scripted_provider, running, transient_error):
        provider = scripted_provider([transient_error(), running(), success()])
        result = asyncio.run(
            Poller(provider, max_attempts=5, sleep=RecordingSleep()).wait("job-1")
        )
        assert result.attempts == 3
        assert provider.queries == 3

    def test_transient_on_last_attempt_is_raised(self, scripted_provider, running, transient_error):
        provider = scripted_provider([running(), running(), transient_error()])
        with pytest.raises(QueryError) as excinfo:
            asyncio.run(Poller(provider, max_attempts=3, sleep=RecordingSleep()).wait("job-1"))
        assert excinfo.value.status_code == 502
        assert provider.queries == 3

    def test_permanent_error_stops_immediately(self, scripted_provider):
        provider = scripted_provider([QueryError("Provider error 401: bad key", permanent=True)])
        sleep = RecordingSleep()
        with pytest.raises(QueryError):
            asyncio.run(Poller(provider, max_attempts=10, sleep=sleep).wait("job-1"))
        assert provider.queries == 1
        assert sleep.calls == []
