"""Tests for xiaobao.core.provider — the Kie.ai job client.

All HTTP traffic goes through ``httpx.MockTransport`` so no network access
is needed.  Tests cover request shape, envelope unwrapping, state
normalisation and the transient/permanent error split.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from xiaobao.core.errors import QueryError, SubmissionError
from xiaobao.core.provider import (
    GenerationOptions,
    KieClient,
    estimate_processing_time,
    is_permanent_code,
)


def run_with(handler, call):
    """Run ``call(client)`` against a KieClient backed by *handler*."""

    async def scenario():
        async with KieClient("test-key", transport=httpx.MockTransport(handler)) as client:
            return await call(client)

    return asyncio.run(scenario())


def envelope(data, code=200, msg="success"):
    return httpx.Response(200, json={"code": code, "msg": msg, "data": data})


class TestHelpers:
    """Module-level helpers."""

    @pytest.mark.parametrize(
        ("length", "expected"),
        [(0, 10), (99, 10), (100, 15), (250, 20)],
    )
    def test_estimate_processing_time(self, length, expected):
        assert estimate_processing_time("x" * length) == expected

    @pytest.mark.parametrize("code", [400, 401, 402, 403, 404, 422])
    def test_permanent_codes(self, code):
        assert is_permanent_code(code)

    @pytest.mark.parametrize("code", [None, 429, 500, 502, 503])
    def test_transient_codes(self, code):
        assert not is_permanent_code(code)

    def test_empty_api_key_rejected(self):
        with pytest.raises(ValueError):
            KieClient("")


class TestSubmit:
    """POST /api/v1/jobs/createTask."""

    def test_request_shape_and_job_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return envelope({"taskId": "job-42"})

        options = GenerationOptions(callback_url="https://hooks.example/kie")
        job_id = run_with(handler, lambda client: client.submit("draw a shop", options))

        assert job_id == "job-42"
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/v1/jobs/createTask"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"] == {
            "model": "nano-banana-pro",
            "input": {
                "prompt": "draw a shop",
                "image_input": [],
                "aspect_ratio": "3:4",
                "resolution": "2K",
                "output_format": "png",
            },
            "callBackUrl": "https://hooks.example/kie",
        }

    def test_callback_url_omitted_by_default(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return envelope({"taskId": "job-1"})

        run_with(handler, lambda client: client.submit("p"))
        assert "callBackUrl" not in seen["body"]

    def test_missing_task_id(self):
        with pytest.raises(SubmissionError, match="task id"):
            run_with(lambda request: envelope({}), lambda client: client.submit("p"))

    def test_envelope_error_code_is_permanent(self):
        def handler(request):
            return envelope(None, code=402, msg="Credits insufficient")

        with pytest.raises(SubmissionError) as excinfo:
            run_with(handler, lambda client: client.submit("p"))
        assert excinfo.value.permanent
        assert excinfo.value.status_code == 402
        assert "Credits insufficient" in str(excinfo.value)

    def test_server_error_is_transient(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(SubmissionError) as excinfo:
            run_with(handler, lambda client: client.submit("p"))
        assert not excinfo.value.permanent
        assert excinfo.value.status_code == 503

    def test_unauthorized_is_permanent(self):
        def handler(request):
            return httpx.Response(401, json={"code": 401, "msg": "bad key"})

        with pytest.raises(SubmissionError) as excinfo:
            run_with(handler, lambda client: client.submit("p"))
        assert excinfo.value.permanent
        assert "bad key" in str(excinfo.value)

    def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(SubmissionError) as excinfo:
            run_with(handler, lambda client: client.submit("p"))
        assert not excinfo.value.permanent

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(SubmissionError, match="timed out") as excinfo:
            run_with(handler, lambda client: client.submit("p"))
        assert not excinfo.value.permanent

    def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(SubmissionError, match="non-JSON"):
            run_with(handler, lambda client: client.submit("p"))


class TestQueryStatus:
    """GET /api/v1/jobs/recordInfo."""

    def test_success_parses_result_json(self):
        seen = {}

        def handler(request):
            seen["task_id"] = request.url.params["taskId"]
            return envelope(
                {
                    "state": "success",
                    "resultJson": json.dumps({"resultUrls": ["https://cdn.example/a.png"]}),
                    "costTime": 15000,
                    "completeTime": 1757584164490,
                }
            )

        status = run_with(handler, lambda client: client.query_status("job-7"))

        assert seen["task_id"] == "job-7"
        assert status.state == "success"
        assert status.result_urls == ["https://cdn.example/a.png"]
        assert status.cost_time_ms == 15000
        assert status.complete_time == 1757584164490

    def test_success_without_urls_is_permanent_error(self):
        def handler(request):
            return envelope({"state": "success", "resultJson": "{}"})

        with pytest.raises(QueryError) as excinfo:
            run_with(handler, lambda client: client.query_status("job-7"))
        assert excinfo.value.permanent

    def test_fail_carries_reason(self):
        def handler(request):
            return envelope({"state": "fail", "failMsg": "content policy"})

        status = run_with(handler, lambda client: client.query_status("job-7"))
        assert status.state == "fail"
        assert status.fail_reason == "content policy"

    def test_fail_falls_back_to_code(self):
        def handler(request):
            return envelope({"state": "fail", "failCode": "500"})

        status = run_with(handler, lambda client: client.query_status("job-7"))
        assert status.fail_reason == "500"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("waiting", "queued"),
            ("queuing", "queued"),
            ("PENDING", "queued"),
            ("generating", "running"),
            ("processing", "running"),
        ],
    )
    def test_state_normalisation(self, raw, expected):
        status = run_with(
            lambda request: envelope({"state": raw}),
            lambda client: client.query_status("job-7"),
        )
        assert status.state == expected
        assert not status.is_terminal

    def test_missing_state_is_transient(self):
        with pytest.raises(QueryError) as excinfo:
            run_with(lambda request: envelope({}), lambda client: client.query_status("job-7"))
        assert not excinfo.value.permanent

    def test_unknown_job_is_permanent(self):
        def handler(request):
            return httpx.Response(404, json={"code": 404, "msg": "record not found"})

        with pytest.raises(QueryError) as excinfo:
            run_with(handler, lambda client: client.query_status("job-7"))
        assert excinfo.value.permanent


class TestCheckQuota:
    """GET /api/v1/chat/credit."""

    def test_scalar_credit(self):
        quota = run_with(lambda request: envelope(88), lambda client: client.check_quota())
        assert quota == {"remaining": 88}

    def test_unavailable_returns_none(self):
        quota = run_with(
            lambda request: httpx.Response(500, text="down"),
            lambda client: client.check_quota(),
        )
        assert quota is None
