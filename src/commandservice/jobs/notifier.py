import asyncio
import logging
from urllib.request import Request, urlopen

from commandservice.jobs.models import Job, JobResponse

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts terminal job snapshots to a caller-supplied URL. Best effort."""

    def __init__(self, timeout_seconds: float = 10):
        self.timeout_seconds = timeout_seconds

    async def notify(self, url: str, job: Job):
        try:
            logger.info(f"Calling webhook ({url}) for job {job.id}")
            status = await asyncio.to_thread(self._post, url, job)
            logger.info(f"Webhook for job {job.id} answered with HTTP {status}")
        except Exception as e:
            logger.error(f"Error calling webhook for job {job.id}: {e}")

    def _post(self, url: str, job: Job) -> int:
        payload = JobResponse.from_job(job).model_dump_json(by_alias=True).encode("utf-8")
        request = Request(
            url,
            data=payload,
            method="POST",
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        with urlopen(request, timeout=self.timeout_seconds) as response:
            return response.status
