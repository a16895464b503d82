import asyncio
import uuid
from typing import Dict, List, Optional, Tuple

from aiohttp import web
from loguru import logger


class DocumentServer:
    """Local stand-in for the document API.

    Every operation answers 200 right away when ``immediate`` is set,
    otherwise 202 with a ``Location`` that stays pending for
    ``pending_polls`` polls before returning ``result``.
    """

    def __init__(
        self,
        pending_polls: int = 1,
        immediate: bool = False,
        result: bytes = b"RESULT",
        content_type: str = "application/pdf",
        submit_status: Optional[int] = None,
        poll_error_status: Optional[int] = None,
        poll_error_after: int = 0,
        submit_delay: float = 0.0,
        poll_delay: float = 0.0,
        slow_polls: Optional[int] = None,
    ):
        self.pending_polls = pending_polls
        self.immediate = immediate
        self.result = result
        self.content_type = content_type
        self.submit_status = submit_status
        self.poll_error_status = poll_error_status
        self.poll_error_after = poll_error_after
        self.submit_delay = submit_delay
        self.poll_delay = poll_delay
        self.slow_polls = slow_polls
        self.slow_polls_served = 0
        self.requests: List[Tuple[str, str]] = []
        self.bodies: List[dict] = []
        self.polls: Dict[str, int] = {}
        self.runner: Optional[web.AppRunner] = None
        self.app = web.Application()
        self.app.router.add_post("/api/v2/{operation}", self.handle_submit)
        self.app.router.add_get("/api/v2/jobs/{job_id}", self.handle_poll)
        self.logger = logger

    def _result_response(self) -> web.Response:
        return web.Response(body=self.result, headers={"Content-Type": self.content_type})

    async def handle_submit(self, request):
        self.requests.append(("POST", request.path))
        self.bodies.append(await request.json())
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)

        if self.submit_status is not None:
            self.logger.info(f"Rejecting submission with {self.submit_status}")
            return web.json_response(
                {"message": f"submission refused ({self.submit_status})"},
                status=self.submit_status,
            )

        if self.immediate:
            self.logger.info("Returning completed document")
            return self._result_response()

        job_id = uuid.uuid4().hex
        self.polls[job_id] = 0
        self.logger.info(f"Accepted job {job_id}")
        return web.Response(status=202, headers={"Location": f"/api/v2/jobs/{job_id}"})

    async def handle_poll(self, request):
        self.requests.append(("GET", request.path))
        if self.poll_delay and (
            self.slow_polls is None or self.slow_polls_served < self.slow_polls
        ):
            self.slow_polls_served += 1
            await asyncio.sleep(self.poll_delay)
        job_id = request.match_info["job_id"]
        if job_id not in self.polls:
            return web.json_response({"error": "job not found"}, status=404)

        self.polls[job_id] += 1
        count = self.polls[job_id]

        if self.poll_error_status is not None and count > self.poll_error_after:
            self.logger.info(f"Returning error status {self.poll_error_status}")
            return web.json_response(
                {"detail": "processing failed"}, status=self.poll_error_status
            )

        if count > self.pending_polls:
            self.logger.info(f"Returning completed document for {job_id}")
            return self._result_response()

        self.logger.info(f"Returning pending status for {job_id} (poll {count})")
        return web.Response(status=202)

    async def start(self, port: int = 0) -> int:
        """Starts serving and returns the bound port"""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "127.0.0.1", port)
        await site.start()
        port = self.runner.addresses[0][1]
        self.logger.info(f"Server started on port {port}")
        return port

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
