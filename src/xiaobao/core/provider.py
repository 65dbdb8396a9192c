"""Async client for the Kie.ai "Nano Banana Pro" job API.

Generation is a two-step protocol:

1. ``POST /api/v1/jobs/createTask`` creates a job and returns its id.
2. ``GET /api/v1/jobs/recordInfo?taskId=<id>`` reports the job state until
   it reaches ``success`` (with a JSON-encoded ``resultJson`` holding the
   output URLs) or ``fail`` (with ``failMsg``).

Every response is wrapped in an envelope ``{"code": 200, "msg": ..., "data":
{...}}``; a ``code`` other than 200 is an error even when the HTTP status is
200.

The client is a plain request/response wrapper.  It keeps no state between
calls and never retries; the :mod:`xiaobao.core.poller` owns the retry
policy.  Failures are reported as :class:`SubmissionError` or
:class:`QueryError` carrying a ``permanent`` flag so the poller can stop
early on errors that repeating will not fix.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from xiaobao.core.errors import ProviderError, QueryError, SubmissionError
from xiaobao.core.models import JobState, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.kie.ai"
DEFAULT_MODEL = "nano-banana-pro"
DEFAULT_TIMEOUT_SECONDS = 30.0

# Provider or HTTP codes that will not change on retry: bad request,
# unauthorized, insufficient credits, forbidden, not found, rejected input.
_PERMANENT_CODES: frozenset[int] = frozenset({400, 401, 402, 403, 404, 422})

# Raw provider states that mean "accepted but not started".
_QUEUED_STATES: frozenset[str] = frozenset({"waiting", "queuing", "queued", "pending"})


def estimate_processing_time(prompt: str) -> int:
    """Rough seconds-to-result estimate: 10s plus 5s per 100 prompt characters."""
    return 10 + (len(prompt) // 100) * 5


def is_permanent_code(code: int | None) -> bool:
    return code in _PERMANENT_CODES


@dataclass(slots=True)
class GenerationOptions:
    """Provider-specific knobs for one job."""

    aspect_ratio: str = "3:4"
    resolution: str = "2K"
    output_format: str = "png"
    image_input: list[str] = field(default_factory=list)
    callback_url: str | None = None


class KieClient:
    """Thin async wrapper around the Kie.ai job endpoints."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.model = model
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    async def submit(self, prompt: str, options: GenerationOptions | None = None) -> str:
        """Create a generation job and return the provider job id.

        Raises:
            SubmissionError: On transport failure, an error status, or a
                payload without ``data.taskId``.
        """
        options = options or GenerationOptions()
        payload: dict[str, Any] = {
            "model": self.model,
            "input": {
                "prompt": prompt,
                "image_input": list(options.image_input),
                "aspect_ratio": options.aspect_ratio,
                "resolution": options.resolution,
                "output_format": options.output_format,
            },
        }
        if options.callback_url:
            payload["callBackUrl"] = options.callback_url

        data = await self._call("POST", "/api/v1/jobs/createTask", SubmissionError, json=payload)
        job_id = data.get("taskId")
        if not isinstance(job_id, str) or not job_id:
            raise SubmissionError("Provider response did not contain a task id")
        logger.info("Submitted provider job %s (model=%s)", job_id, self.model)
        return job_id

    async def query_status(self, job_id: str) -> JobStatus:
        """Fetch the current state of a provider job.

        Raises:
            QueryError: On transport failure, an error status, a malformed
                payload, or a ``success`` record without result URLs.
        """
        data = await self._call(
            "GET",
            "/api/v1/jobs/recordInfo",
            QueryError,
            params={"taskId": job_id},
        )
        raw_state = data.get("state")
        if not isinstance(raw_state, str) or not raw_state:
            raise QueryError(f"Provider record for {job_id} has no state")

        state = _normalize_state(raw_state)
        status = JobStatus(
            job_id=job_id,
            state=state,
            cost_time_ms=_optional_int(data.get("costTime")),
            complete_time=_optional_int(data.get("completeTime")),
        )
        if state == "success":
            status.result_urls = _parse_result_urls(data.get("resultJson"))
            if not status.result_urls:
                raise QueryError(
                    f"Provider reported success for {job_id} without result URLs",
                    permanent=True,
                )
        elif state == "fail":
            status.fail_reason = str(data.get("failMsg") or data.get("failCode") or "unknown reason")
        return status

    async def check_quota(self) -> dict[str, Any] | None:
        """Return ``{"remaining": credits}`` or ``None`` when unavailable."""
        try:
            data = await self._call("GET", "/api/v1/chat/credit", QueryError, allow_scalar=True)
        except ProviderError as exc:
            if exc.status_code != 404:
                logger.warning("Could not fetch provider quota: %s", exc)
            return None
        return {"remaining": data.get("value")}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> KieClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def _call(
        self,
        method: str,
        url: str,
        error_cls: type[ProviderError],
        *,
        allow_scalar: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Perform one request and unwrap the ``{"code", "msg", "data"}`` envelope."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise error_cls(f"Provider request timed out: {method} {url}") from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"Provider request failed: {exc}") from exc

        if not response.is_success:
            raise error_cls(
                f"Provider returned HTTP {response.status_code}: {_message_of(response)}",
                permanent=is_permanent_code(response.status_code),
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise error_cls("Provider returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise error_cls("Provider returned an unexpected payload")

        code = body.get("code")
        if code != 200:
            code_int = code if isinstance(code, int) else None
            raise error_cls(
                f"Provider error {code}: {body.get('msg') or 'no message'}",
                permanent=is_permanent_code(code_int),
                status_code=code_int,
            )

        data = body.get("data")
        if isinstance(data, dict):
            return data
        if allow_scalar and data is not None:
            return {"value": data}
        raise error_cls("Provider response is missing its data object")


def _normalize_state(raw_state: str) -> JobState:
    state = raw_state.strip().lower()
    if state in ("success", "fail"):
        return state  # type: ignore[return-value]
    if state in _QUEUED_STATES:
        return "queued"
    return "running"


def _parse_result_urls(result_json: Any) -> list[str]:
    """Extract ``resultUrls`` from the JSON-encoded ``resultJson`` field."""
    if isinstance(result_json, str):
        try:
            result_json = json.loads(result_json)
        except ValueError:
            logger.warning("Could not parse provider resultJson: %.200s", result_json)
            return []
    if not isinstance(result_json, dict):
        return []
    urls = result_json.get("resultUrls")
    if not isinstance(urls, list):
        return []
    return [url for url in urls if isinstance(url, str) and url]


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _message_of(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get("msg"):
        return str(body["msg"])
    return response.text[:200]
