import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from lumina.models.schemas import GenerationRequest, VideoResult
from lumina.services.backends.base import JobBackend, JobHandle
from lumina.services.credentials import CredentialProvider
from lumina.services.errors import (
    Cancelled,
    ConfigurationError,
    ErrorClassifier,
    GenerationError,
    PollTimeoutError,
    ProtocolError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 10.0


class CancellationToken:
    """Signals a running generation to stop polling."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass(frozen=True)
class JobStatus:
    done: bool
    result: Optional[VideoResult] = None
    error: Optional[GenerationError] = None

    @property
    def pending(self) -> bool:
        return not self.done


PENDING = JobStatus(done=False)


class LongRunningJobClient:
    """Drives one generation request from submission to a terminal result.

    The client keeps no per-run state: the credential is read from the
    provider on every submit and each ``run`` owns its handle.
    """

    def __init__(
        self,
        backend: JobBackend,
        credential_provider: CredentialProvider,
        classifier: ErrorClassifier,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_poll_duration_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.credential_provider = credential_provider
        self.classifier = classifier
        self.poll_interval_seconds = poll_interval_seconds
        self.max_poll_duration_seconds = max_poll_duration_seconds
        self._sleep = sleep
        self._clock = clock

    @staticmethod
    def validate(request: GenerationRequest) -> None:
        if request.clean_prompt is None and request.reference_image is None:
            raise ValidationError("A prompt or a reference image is required.")

    async def submit(self, request: GenerationRequest) -> JobHandle:
        self.validate(request)
        prompt = request.clean_prompt
        image = request.reference_image

        credential = await asyncio.to_thread(self.credential_provider.current)
        if credential is None:
            raise ConfigurationError("No API key is available. Select an API key before generating.")

        fmt = request.format
        model_id = self.backend.model_id(fmt.model_tier)
        logger.info(
            "Submitting %s job: model=%s aspect_ratio=%s resolution=%s image=%s",
            self.backend.name,
            model_id,
            fmt.aspect_ratio.value,
            fmt.resolution.value,
            image is not None,
        )
        return await self.backend.submit_job(
            credential,
            model_id=model_id,
            prompt=prompt,
            image=image,
            number_of_videos=1,
            resolution=fmt.resolution,
            aspect_ratio=fmt.aspect_ratio,
        )

    async def poll(self, handle: JobHandle) -> Tuple[JobHandle, JobStatus]:
        handle = await self.backend.poll_job(handle)
        return handle, self.status_of(handle)

    def status_of(self, handle: JobHandle) -> JobStatus:
        operation = handle.operation
        if not operation.done:
            return PENDING
        if operation.error is not None:
            return JobStatus(done=True, error=self.classifier.job_failure(operation.error.message))

        results = operation.response.results if operation.response else []
        first = results[0] if results else None
        if first is None or not first.uri:
            return JobStatus(done=True, error=ProtocolError("operation completed without a usable result"))
        return JobStatus(done=True, result=VideoResult(uri=first.uri, expiry=first.expiry))

    async def run(self, request: GenerationRequest, cancel_token: Optional[CancellationToken] = None) -> VideoResult:
        if cancel_token is not None and cancel_token.cancelled:
            raise Cancelled("Generation was cancelled before it started.")

        started = self._clock()
        try:
            handle = await self.submit(request)
            logger.info("Job %s submitted", handle.name)
            status = self.status_of(handle)
            polls = 0
            while status.pending:
                await self._pause(cancel_token, started)
                polls += 1
                logger.info("Polling job %s (attempt %d)", handle.name, polls)
                handle, status = await self.poll(handle)
        except TransportError as exc:
            error = self.classifier.classify(exc)
            if error is exc:
                raise
            raise error from exc
        except GenerationError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while driving a %s job", self.backend.name)
            raise self.classifier.classify(exc) from exc

        if status.error is not None:
            logger.error("Job %s failed: %s", handle.name, status.error)
            raise status.error
        logger.info("Job %s completed after %d polls", handle.name, polls)
        return status.result

    async def _pause(self, cancel_token: Optional[CancellationToken], started: float) -> None:
        # The last wait is shortened so the final poll lands on the deadline.
        delay = self.poll_interval_seconds
        if self.max_poll_duration_seconds is not None:
            remaining = self.max_poll_duration_seconds - (self._clock() - started)
            if remaining <= 0:
                raise PollTimeoutError(
                    f"Video generation did not finish within {self.max_poll_duration_seconds:g} seconds."
                )
            delay = min(delay, remaining)

        if cancel_token is None:
            await self._sleep(delay)
            return

        if cancel_token.cancelled or await cancel_token.wait(delay):
            raise Cancelled("Generation was cancelled.")
