from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import Base64Bytes, BaseModel, Field

ImageMimeType = Literal["image/png", "image/jpeg", "image/webp"]


class AspectRatio(str, Enum):
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"


class Resolution(str, Enum):
    HD = "720p"
    FULL_HD = "1080p"


class ModelTier(str, Enum):
    FAST = "fast"
    QUALITY = "quality"


class VideoFormat(BaseModel):
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    resolution: Resolution = Resolution.HD
    model_tier: ModelTier = ModelTier.FAST


class ReferenceImage(BaseModel):
    data: bytes
    mime_type: ImageMimeType


class GenerationRequest(BaseModel):
    """A prompt and/or reference image plus format options.

    The prompt-or-image rule is checked by the job client at submit time, so
    an incomplete request can still be built and handed over.
    """

    prompt: Optional[str] = None
    reference_image: Optional[ReferenceImage] = None
    format: VideoFormat = Field(default_factory=VideoFormat)

    @property
    def clean_prompt(self) -> Optional[str]:
        prompt = (self.prompt or "").strip()
        return prompt or None


class VideoResult(BaseModel):
    uri: str
    expiry: Optional[datetime] = None


# Job protocol payload returned by a status check.


class OperationError(BaseModel):
    message: Optional[str] = None


class GeneratedResult(BaseModel):
    uri: Optional[str] = None
    expiry: Optional[datetime] = None


class OperationResponse(BaseModel):
    results: List[GeneratedResult] = Field(default_factory=list)


class OperationState(BaseModel):
    done: bool = False
    error: Optional[OperationError] = None
    response: Optional[OperationResponse] = None


# HTTP API


class ImagePayload(BaseModel):
    data: Base64Bytes = Field(..., description="Base64 encoded image bytes, without a data: prefix")
    mime_type: ImageMimeType


class VideoRequest(BaseModel):
    prompt: Optional[str] = Field(None, description="Text prompt; optional when an image is given")
    image: Optional[ImagePayload] = None
    format: VideoFormat = Field(default_factory=VideoFormat)

    def to_generation_request(self) -> GenerationRequest:
        image = None
        if self.image is not None:
            image = ReferenceImage(data=self.image.data, mime_type=self.image.mime_type)
        return GenerationRequest(prompt=self.prompt, reference_image=image, format=self.format)


class VideoJobResponse(BaseModel):
    job_id: str
    status: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    detail: Optional[str] = None
    error_kind: Optional[str] = None
    video_url: Optional[str] = None
    expiry: Optional[datetime] = None


class CredentialRequest(BaseModel):
    api_key: str = Field(..., min_length=1)


class CredentialStatusResponse(BaseModel):
    has_credential: bool
