import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

import httpx

from lumina.models.schemas import GenerationRequest, VideoResult
from lumina.services.credentials import CredentialProvider
from lumina.services.errors import (
    Cancelled,
    ConfigurationError,
    CredentialInvalidError,
    GenerationError,
    TransportError,
)
from lumina.services.job_client import CancellationToken, LongRunningJobClient

logger = logging.getLogger(__name__)


class JobNotFoundError(RuntimeError):
    pass


class JobInProgressError(RuntimeError):
    pass


class VideoNotReadyError(RuntimeError):
    pass


@dataclass
class GenerationJob:
    job_id: str
    status: str = "generating"
    detail: Optional[str] = None
    error_kind: Optional[str] = None
    result: Optional[VideoResult] = None
    created_at: datetime = field(default_factory=datetime.now)
    token: CancellationToken = field(default_factory=CancellationToken, repr=False)
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self.status == "generating"


class GenerationService:
    """Runs generations in the background, one at a time.

    Keeps a record per job for status queries. When the backend rejects the
    credential, the selected key is reset so the user is asked for a new one.
    """

    def __init__(
        self,
        client: LongRunningJobClient,
        credential_provider: CredentialProvider,
        http_timeout_seconds: float = 60.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        history_limit: int = 100,
    ):
        self.client = client
        self.credential_provider = credential_provider
        self.http_timeout_seconds = http_timeout_seconds
        self.history_limit = history_limit
        self._http_transport = http_transport
        self._jobs: Dict[str, GenerationJob] = {}

    def active_job(self) -> Optional[GenerationJob]:
        for job in self._jobs.values():
            if job.active:
                return job
        return None

    def _ensure_idle(self) -> None:
        active = self.active_job()
        if active is not None:
            raise JobInProgressError(f"Job {active.job_id} is still generating.")

    def _prune(self) -> None:
        finished = [job_id for job_id, job in self._jobs.items() if not job.active]
        for job_id in finished[: max(len(finished) - self.history_limit, 0)]:
            del self._jobs[job_id]

    async def start(self, request: GenerationRequest) -> GenerationJob:
        self._ensure_idle()
        self.client.validate(request)
        if await asyncio.to_thread(self.credential_provider.current) is None:
            raise ConfigurationError("No API key is available. Select an API key before generating.")
        # Another request may have started a job while the credential was read.
        self._ensure_idle()

        self._prune()
        job = GenerationJob(job_id=str(uuid.uuid4()))
        self._jobs[job.job_id] = job
        job.task = asyncio.create_task(self._drive(job, request))
        logger.info("Started generation job %s", job.job_id)
        return job

    async def _drive(self, job: GenerationJob, request: GenerationRequest) -> None:
        try:
            result = await self.client.run(request, job.token)
        except Cancelled as exc:
            job.status = "cancelled"
            job.detail = str(exc)
            job.error_kind = exc.kind
            logger.info("Generation job %s cancelled", job.job_id)
        except CredentialInvalidError as exc:
            self._reset_credential()
            self._fail(job, exc)
        except GenerationError as exc:
            self._fail(job, exc)
        except Exception:
            logger.exception("Unexpected error in generation job %s", job.job_id)
            job.status = "failed"
            job.detail = "Internal error"
            job.error_kind = "internal"
        else:
            job.status = "completed"
            job.result = result
            job.detail = "Video generation completed."
            logger.info("Generation job %s completed", job.job_id)

    @staticmethod
    def _fail(job: GenerationJob, exc: GenerationError) -> None:
        job.status = "failed"
        job.detail = str(exc)
        job.error_kind = exc.kind
        logger.error("Generation job %s failed (%s): %s", job.job_id, exc.kind, exc)

    def _reset_credential(self) -> None:
        invalidate = getattr(self.credential_provider, "invalidate", None)
        if invalidate is not None:
            invalidate()

    def get(self, job_id: str) -> GenerationJob:
        job = self._jobs.get(job_id)
        if not job:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def cancel(self, job_id: str) -> GenerationJob:
        job = self.get(job_id)
        if job.active:
            job.token.cancel()
            logger.info("Cancellation requested for job %s", job_id)
        return job

    async def wait(self, job_id: str) -> GenerationJob:
        job = self.get(job_id)
        if job.task is not None:
            await job.task
        return job

    async def fetch_video(self, job_id: str) -> Tuple[bytes, str]:
        job = self.get(job_id)
        if job.status != "completed" or job.result is None:
            raise VideoNotReadyError(f"Job {job_id} has no video yet")

        credential = await asyncio.to_thread(self.credential_provider.current)
        url = self.client.backend.download_url(job.result, credential)
        try:
            async with httpx.AsyncClient(
                timeout=self.http_timeout_seconds, follow_redirects=True, transport=self._http_transport
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to download video for job %s: %s", job_id, exc)
            raise TransportError("Failed to load video.") from exc
        return resp.content, resp.headers.get("content-type", "video/mp4")

    async def shutdown(self) -> None:
        tasks = []
        for job in self._jobs.values():
            if job.active:
                job.token.cancel()
            if job.task is not None:
                tasks.append(job.task)
        if tasks:
            await asyncio.gather(*tasks)

    @staticmethod
    def serialize(job: GenerationJob) -> Dict[str, Optional[object]]:
        return {
            "job_id": job.job_id,
            "status": job.status,
            "detail": job.detail,
            "error_kind": job.error_kind,
            "video_url": f"/api/videos/{job.job_id}" if job.result else None,
            "expiry": job.result.expiry if job.result else None,
        }
