import asyncio
import json
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

import aiohttp
from loguru import logger
from doc_job_client.endpoints import expects_json, schedule_for
from doc_job_client.errors import (
    JobCancelled,
    JobError,
    JobTimeout,
    MalformedResponse,
    RemoteFailure,
    RemoteRejected,
)
from doc_job_client.models import (
    Completed,
    Failed,
    JobResult,
    JobState,
    RetrySchedule,
    TERMINAL_STATES,
)
from doc_job_client.responses import classify_poll, classify_submission
from doc_job_client.settings import ClientSettings, get_settings

RawResponse = Tuple[int, bytes, Optional[str], Optional[str]]


class AsyncJobClient:
    """Runs one document operation, polling until the remote job settles.

    A session passed in is reused and left open; otherwise every run opens
    and closes its own. Runs share no mutable state and may be awaited
    concurrently.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
        on_state_change: Optional[Callable[[JobState], Awaitable[Any]]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.session = session
        self.on_state_change = on_state_change
        self.logger = logger
        self._sleep = sleep

    def _url(self, endpoint_path: str) -> str:
        if endpoint_path.startswith(("http://", "https://")):
            return endpoint_path
        return f"{self.settings.base_url}/{endpoint_path.lstrip('/')}"

    def _prepare_body(self, endpoint_path: str, request_body: Mapping[str, Any]) -> dict:
        if not endpoint_path:
            raise ValueError("endpoint_path must not be empty")

        body = dict(request_body)
        if self.settings.async_flag:
            body.setdefault("async", True)

        try:
            json.dumps(body)
        except (TypeError, ValueError) as e:
            raise ValueError(
                f"Request body for {endpoint_path} is not JSON-serializable: {e}"
            ) from e
        return body

    def _request_timeout(
        self, deadline: Optional[float], timeout: Optional[float], url: str
    ) -> Tuple[float, bool]:
        """Per-request timeout, cut short so a request never outlives the deadline"""
        request_timeout = self.settings.request_timeout
        if deadline is None:
            return request_timeout, False

        remaining = deadline - asyncio.get_event_loop().time()
        if remaining <= 0:
            raise JobTimeout(f"hard timeout of {timeout}s reached", url)
        if remaining < request_timeout:
            return remaining, True
        return request_timeout, False

    async def _request(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        timeout: float,
        body: Optional[dict] = None,
    ) -> RawResponse:
        """Issues one HTTP request and reads the whole response"""
        async with session.request(
            method,
            url,
            json=body,
            headers=self.settings.headers(),
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            data = await response.read()
            return (
                response.status,
                data,
                response.headers.get("Content-Type"),
                response.headers.get("Location"),
            )

    async def _set_state(self, state: JobState) -> None:
        if state in TERMINAL_STATES:
            self.logger.info(f"Job finished in state {state.value}")
        else:
            self.logger.debug(f"Job state changed to {state.value}")
        if self.on_state_change is not None:
            await self.on_state_change(state)

    @staticmethod
    def _failure(failed: Failed, url: str) -> JobError:
        if failed.status < 500:
            return RemoteRejected(failed.message, url, failed.status)
        return RemoteFailure(failed.message, url, failed.status)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event], url: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelled("cancelled by caller", url)

    async def _wait_before_retry(
        self,
        schedule: RetrySchedule,
        attempt: int,
        deadline: Optional[float],
        cancel_event: Optional[asyncio.Event],
        url: str,
    ) -> None:
        """Sleeps the backoff delay, or raises if the deadline would be crossed"""
        delay = schedule.delay_for(attempt)

        if deadline is not None:
            remaining = deadline - asyncio.get_event_loop().time()
            if remaining <= 0 or delay > remaining:
                raise JobTimeout(
                    f"job still pending after {attempt - 1} polls, "
                    f"hard timeout of {schedule.timeout}s reached",
                    url,
                )

        self.logger.debug(
            f"Job still pending, waiting {delay:.2f}s before poll {attempt}"
        )
        if cancel_event is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel_event.wait())
        _, pending = await asyncio.wait(
            {sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _poll_until_complete(
        self,
        session: aiohttp.ClientSession,
        url: str,
        poll_url: str,
        schedule: RetrySchedule,
        start_time: float,
        deadline: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> JobResult:
        loop = asyncio.get_event_loop()
        last_error: Optional[BaseException] = None

        for attempt in range(1, schedule.max_attempts + 1):
            if attempt > 1:
                await self._wait_before_retry(
                    schedule, attempt, deadline, cancel_event, url
                )
            self._check_cancelled(cancel_event, url)

            timeout, capped = self._request_timeout(deadline, schedule.timeout, url)
            try:
                status, data, content_type, location = await self._request(
                    session, "GET", poll_url, timeout
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as polling_error:
                timed_out = isinstance(polling_error, asyncio.TimeoutError)
                if timed_out and capped:
                    raise JobTimeout(
                        f"job still pending after {attempt} polls, "
                        f"hard timeout of {schedule.timeout}s reached",
                        url,
                    ) from polling_error
                if not timed_out and isinstance(
                    polling_error, aiohttp.ClientConnectionError
                ):
                    raise
                self.logger.warning(
                    f"Error polling {poll_url} "
                    f"(attempt {attempt}/{schedule.max_attempts}): {polling_error!r}"
                )
                last_error = polling_error
                continue

            last_error = None
            outcome = classify_poll(status, data, content_type, location, poll_url)
            if isinstance(outcome, Completed):
                return JobResult(
                    body=outcome.body,
                    content_type=outcome.content_type,
                    polls=attempt,
                    elapsed_time=loop.time() - start_time,
                )
            if isinstance(outcome, Failed):
                if outcome.status == 404:
                    outcome = Failed(
                        status=404,
                        message=f"processing job not found or expired ({outcome.message})",
                    )
                raise self._failure(outcome, url)

            if outcome.poll_url:
                poll_url = outcome.poll_url

        if last_error is not None:
            raise JobTimeout(
                f"network error during polling after {schedule.max_attempts} "
                f"attempts: {last_error!r}",
                url,
            ) from last_error
        raise JobTimeout(
            f"job still pending after {schedule.max_attempts} polls", url
        )

    async def _run(
        self,
        session: aiohttp.ClientSession,
        endpoint_path: str,
        body: dict,
        schedule: RetrySchedule,
        cancel_event: Optional[asyncio.Event],
    ) -> JobResult:
        start_time = asyncio.get_event_loop().time()
        deadline = start_time + schedule.timeout if schedule.timeout else None
        url = self._url(endpoint_path)
        self._check_cancelled(cancel_event, url)

        self.logger.info(f"Submitting job to {url}")
        await self._set_state(JobState.submitted)
        timeout, capped = self._request_timeout(deadline, schedule.timeout, url)
        try:
            status, data, content_type, location = await self._request(
                session, "POST", url, timeout, body
            )
        except asyncio.TimeoutError as e:
            reason = (
                f"hard timeout of {schedule.timeout}s reached"
                if capped
                else f"request timeout of {timeout}s reached"
            )
            raise JobTimeout(f"submission got no response, {reason}", url) from e

        submission = classify_submission(status, data, content_type, location, url)
        if isinstance(submission, Completed):
            return JobResult(
                body=submission.body,
                content_type=submission.content_type,
                polls=0,
                elapsed_time=asyncio.get_event_loop().time() - start_time,
            )
        if isinstance(submission, Failed):
            raise self._failure(submission, url)

        self.logger.info(f"Job accepted by {url}, polling {submission.poll_url}")
        await self._set_state(JobState.pending)
        return await self._poll_until_complete(
            session, url, submission.poll_url, schedule, start_time, deadline, cancel_event
        )

    async def run_detailed(
        self,
        endpoint_path: str,
        request_body: Mapping[str, Any],
        schedule: Optional[RetrySchedule] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> JobResult:
        """Submits the job and waits for its artifact, returning it with run metadata"""
        body = self._prepare_body(endpoint_path, request_body)
        schedule = schedule or schedule_for(endpoint_path)

        try:
            if self.session is not None:
                result = await self._run(
                    self.session, endpoint_path, body, schedule, cancel_event
                )
            else:
                async with aiohttp.ClientSession() as session:
                    result = await self._run(
                        session, endpoint_path, body, schedule, cancel_event
                    )
        except JobError as e:
            self.logger.error(f"Job failed: {e}")
            if isinstance(e, JobTimeout):
                await self._set_state(JobState.timed_out)
            elif isinstance(e, JobCancelled):
                await self._set_state(JobState.cancelled)
            else:
                await self._set_state(JobState.failed)
            raise
        except aiohttp.ClientError as e:
            self.logger.error(f"Transport error at {endpoint_path}: {e!r}")
            await self._set_state(JobState.failed)
            raise

        self.logger.info(
            f"Job at {endpoint_path} completed after {result.polls} polls "
            f"({result.elapsed_time:.2f}s, {len(result.body)} bytes)"
        )
        await self._set_state(JobState.completed)
        return result

    async def run(
        self,
        endpoint_path: str,
        request_body: Mapping[str, Any],
        schedule: Optional[RetrySchedule] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> bytes:
        """Submits the job and returns the final artifact bytes"""
        result = await self.run_detailed(
            endpoint_path, request_body, schedule, cancel_event
        )
        return result.body

    async def run_json(
        self,
        endpoint_path: str,
        request_body: Mapping[str, Any],
        schedule: Optional[RetrySchedule] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Runs an operation whose artifact is a JSON document and decodes it"""
        if not expects_json(endpoint_path):
            self.logger.warning(
                f"{endpoint_path} is not a known JSON operation, decoding its artifact anyway"
            )
        body = await self.run(endpoint_path, request_body, schedule, cancel_event)
        try:
            return json.loads(body)
        except ValueError as e:
            raise MalformedResponse(
                f"artifact is not JSON: {e}", self._url(endpoint_path), 200
            ) from e
