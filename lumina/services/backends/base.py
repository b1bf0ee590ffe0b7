from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from lumina.models.schemas import (
    AspectRatio,
    ModelTier,
    OperationState,
    ReferenceImage,
    Resolution,
    VideoResult,
)
from lumina.services.credentials import Credential


@dataclass(frozen=True)
class JobHandle:
    """
    Opaque token for one in-flight operation.

    Backends return a fresh handle from every status check; the latest one
    must be used for the next check since it can carry updated state.
    """
    name: str
    backend: str
    credential: Credential = field(repr=False, compare=False)
    operation: OperationState = field(default_factory=OperationState)
    state: Dict[str, Any] = field(default_factory=dict)

    def with_operation(self, operation: OperationState) -> "JobHandle":
        return replace(self, operation=operation)


class JobBackend(ABC):
    """
    A video generation service speaking the long-running job protocol.
    All backends must implement submit_job and poll_job.
    """

    name: str = "backend"

    @abstractmethod
    def model_id(self, tier: ModelTier) -> str:
        """Vendor model identifier for a model tier."""

    @abstractmethod
    async def submit_job(
        self,
        credential: Credential,
        *,
        model_id: str,
        prompt: Optional[str],
        image: Optional[ReferenceImage],
        number_of_videos: int,
        resolution: Resolution,
        aspect_ratio: AspectRatio,
    ) -> JobHandle:
        """
        Start a generation job.

        Args:
            credential: Credential read for this submission
            model_id: Vendor model identifier
            prompt: Text prompt, None for image-only requests
            image: Optional conditioning image
            number_of_videos: Outputs to request
            resolution: Output resolution
            aspect_ratio: Output aspect ratio

        Returns:
            JobHandle: Handle for the started operation

        Raises:
            TransportError: If the service call fails
            ValidationError: If the backend cannot serve the requested format
        """

    @abstractmethod
    async def poll_job(self, handle: JobHandle) -> JobHandle:
        """
        Check the operation once.

        Returns:
            JobHandle: Refreshed handle whose ``operation`` holds the status

        Raises:
            TransportError: If the service call fails
        """

    def download_url(self, result: VideoResult, credential: Optional[Credential]) -> str:
        """URL that fetches the video bytes for a finished result."""
        return result.uri
