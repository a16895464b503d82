import asyncio

from document_server import DocumentServer
from doc_job_client.async_job_client import AsyncJobClient
from doc_job_client.content import BinarySource, ContentResolver, encode_document
from doc_job_client.errors import JobError
from doc_job_client.models import RetrySchedule
from doc_job_client.settings import ClientSettings


async def state_changed(state):
    print(f"Job state changed to: {state.value}")


async def main():
    PORT = 8000
    server = DocumentServer(pending_polls=3, result=b"%PDF-1.7 merged")
    await server.start(port=PORT)
    print(f"Server started on http://127.0.0.1:{PORT}")

    schedule = RetrySchedule(
        max_attempts=10, base_delay=0.5, backoff_factor=2.0, max_delay=4.0, timeout=60.0
    )
    settings = ClientSettings(base_url=f"http://127.0.0.1:{PORT}")
    client = AsyncJobClient(settings, on_state_change=state_changed)

    content = await ContentResolver().resolve(BinarySource(data=b"%PDF-1.7 first"))
    body = {"docContent": [encode_document(content)], "docName": "merged.pdf"}

    try:
        result = await client.run_detailed("/api/v2/Merge", body, schedule)
        print(f"Received {len(result.body)} bytes after {result.polls} polls")
        print(f"Total time: {result.elapsed_time:.6f}s")
    except JobError as e:
        print(f"Job failed: {e}")
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
