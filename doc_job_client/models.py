import random
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class JobState(str, Enum):
    submitted = "submitted"
    pending = "pending"
    completed = "completed"
    failed = "failed"
    timed_out = "timed_out"
    cancelled = "cancelled"


TERMINAL_STATES = frozenset(
    {JobState.completed, JobState.failed, JobState.timed_out, JobState.cancelled}
)


class Completed(BaseModel):
    kind: Literal["completed"] = "completed"
    body: bytes
    content_type: Optional[str] = None


class Pending(BaseModel):
    kind: Literal["pending"] = "pending"
    poll_url: str


class StillPending(BaseModel):
    kind: Literal["still_pending"] = "still_pending"
    poll_url: Optional[str] = None


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    status: int
    message: str


SubmissionResult = Union[Completed, Pending, Failed]
PollOutcome = Union[Completed, StillPending, Failed]


class JobResult(BaseModel):
    body: bytes
    content_type: Optional[str] = None
    polls: int = 0
    elapsed_time: float


class RetrySchedule(BaseModel):
    """Polling budget for a pending job.

    The first poll is issued right after the submission; every later poll
    waits ``base_delay * backoff_factor ** (attempt - 2)`` seconds, clipped
    to ``max_delay`` when one is set.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=20, ge=1)
    base_delay: float = Field(default=5.0, ge=0)
    backoff_factor: float = Field(default=1.5, ge=1)
    max_delay: Optional[float] = Field(default=None, gt=0)
    timeout: Optional[float] = Field(default=None, gt=0)
    jitter: bool = False

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before poll number ``attempt`` (1-based)"""
        if attempt <= 1:
            return 0.0
        delay = self.base_delay * (self.backoff_factor ** (attempt - 2))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)

        # Up to 20% extra, never below the deterministic value
        if self.jitter:
            delay *= 1 + 0.2 * random.random()
        return delay

    def total_backoff(self) -> float:
        """Upper bound on the time spent sleeping across all polls, jitter excluded"""
        if self.max_delay is None:
            n = self.max_attempts - 1
            if self.backoff_factor == 1:
                return self.base_delay * n
            return self.base_delay * (self.backoff_factor**n - 1) / (self.backoff_factor - 1)
        return sum(
            min(self.base_delay * self.backoff_factor ** (i - 2), self.max_delay)
            for i in range(2, self.max_attempts + 1)
        )


QUICK_SCHEDULE = RetrySchedule(max_attempts=10, base_delay=5.0, backoff_factor=1.5)
HEAVY_SCHEDULE = RetrySchedule(
    max_attempts=30, base_delay=10.0, backoff_factor=2.0, max_delay=60.0
)
