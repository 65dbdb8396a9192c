"""Exception hierarchy for the Xiaobao task engine.

Every error raised on purpose by the core derives from :class:`XiaobaoError`
so the background task runner can tell a modelled failure (which becomes a
``failed`` task with a readable message) from an unexpected fault (which is
logged with a traceback before the task is failed).

Hierarchy
---------
::

    XiaobaoError
    ├── ValidationError              400 at the HTTP boundary
    ├── NotFoundError                404 at the HTTP boundary
    ├── ProviderNotConfiguredError   503 at the HTTP boundary
    ├── ProviderError
    │   ├── SubmissionError          createTask call failed
    │   ├── QueryError               recordInfo call failed
    │   └── ProviderJobFailedError   provider reported state "fail"
    ├── PollTimeoutError             attempt ceiling exhausted
    ├── PersistenceError             snapshot write/rename failed
    └── CorruptStateError            stable file failed validation on load
"""

from __future__ import annotations


class XiaobaoError(Exception):
    """Base class for all modelled Xiaobao failures."""


class ValidationError(XiaobaoError):
    """A request field is missing or invalid."""


class NotFoundError(XiaobaoError):
    """No task exists with the requested id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class ProviderNotConfiguredError(XiaobaoError):
    """No provider credentials are configured and mock mode is disabled."""


class ProviderError(XiaobaoError):
    """A call to the image provider failed.

    Attributes:
        permanent: ``True`` when repeating the same call cannot succeed
            (bad credentials, insufficient credits, rejected input).
            Transport failures, 5xx responses and malformed payloads are
            transient.
        status_code: HTTP status or provider ``code`` when one was received.
    """

    def __init__(
        self,
        message: str,
        *,
        permanent: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.permanent = permanent
        self.status_code = status_code


class SubmissionError(ProviderError):
    """The provider refused or failed to create a generation job."""


class QueryError(ProviderError):
    """The provider failed to report the status of a generation job."""


class ProviderJobFailedError(ProviderError):
    """The provider finished the job with state ``fail``."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"Generation failed: {reason}", permanent=True)
        self.job_id = job_id
        self.reason = reason


class PollTimeoutError(XiaobaoError):
    """No terminal state was observed within the attempt ceiling."""

    def __init__(self, job_id: str, attempts: int) -> None:
        super().__init__(
            f"Generation timed out after {attempts} status checks, please retry"
        )
        self.job_id = job_id
        self.attempts = attempts


class PersistenceError(XiaobaoError):
    """Writing the task snapshot to stable storage failed."""


class CorruptStateError(XiaobaoError):
    """The stable task file exists but does not hold a valid snapshot."""
