from typing import Optional


class JobError(Exception):
    """Terminal failure of a document job.

    Carries the endpoint attempted and, when the remote service answered,
    its HTTP status so callers can tell bad input from a remote outage.
    """

    kind = "error"

    def __init__(self, message: str, endpoint: str, status: Optional[int] = None):
        self.message = message
        self.endpoint = endpoint
        self.status = status
        super().__init__(str(self))

    def __str__(self) -> str:
        status = f" (HTTP {self.status})" if self.status is not None else ""
        return f"{self.kind} at {self.endpoint}{status}: {self.message}"


class RemoteRejected(JobError):
    """4xx: the request was malformed or unauthorized, never retried"""

    kind = "remote_rejected"


class RemoteFailure(JobError):
    """5xx: error on the remote side"""

    kind = "remote_failure"


class JobTimeout(JobError, TimeoutError):
    kind = "timeout"


class MalformedResponse(JobError):
    """Response is neither a final artifact nor a pending indicator"""

    kind = "malformed_response"


class JobCancelled(JobError):
    kind = "cancelled"


class ContentResolutionError(Exception):
    """Raised when document content cannot be acquired from its source"""
