import asyncio
import base64
import logging
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from lumina.models.schemas import (
    AspectRatio,
    GeneratedResult,
    ModelTier,
    OperationError,
    OperationResponse,
    OperationState,
    ReferenceImage,
    Resolution,
)
from lumina.services.backends.base import JobBackend, JobHandle
from lumina.services.credentials import Credential
from lumina.services.errors import TransportError, ValidationError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, Credential], Any]

_IMAGE_FORMATS = {"image/png": "png", "image/jpeg": "jpeg"}


def create_client(service_name: str, credential: Credential, region: str = "us-east-1"):
    try:
        return boto3.client(
            service_name,
            region_name=region,
            aws_access_key_id=credential.key_id,
            aws_secret_access_key=credential.secret,
            aws_session_token=credential.session_token,
            config=BotoConfig(retries={"max_attempts": 5, "mode": "adaptive"}),
        )
    except (ClientError, BotoCoreError) as exc:
        logger.exception("Failed to create %s client", service_name)
        raise TransportError(f"Unable to create {service_name} client.") from exc


def _split_s3_uri(uri: str) -> Tuple[str, str]:
    path = uri[len("s3://"):] if uri.startswith("s3://") else uri
    bucket, _, prefix = path.partition("/")
    return bucket, prefix.strip("/")


class NovaReelBackend(JobBackend):
    """Amazon Nova Reel through Bedrock asynchronous invocation.

    Nova Reel renders 6 second clips at 1280x720 only. Output is written to
    S3; a finished job is returned as a presigned URL to the ``.mp4``.
    """

    name = "nova_reel"

    def __init__(
        self,
        *,
        model_id: str,
        s3_bucket: Optional[str],
        s3_prefix: str = "",
        region: str = "us-east-1",
        presigned_url_seconds: int = 3600,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._model_id = model_id
        self.s3_bucket = s3_bucket
        self.s3_prefix = s3_prefix.strip("/")
        self.region = region
        self.presigned_url_seconds = presigned_url_seconds
        self._client_factory = client_factory or (lambda service, cred: create_client(service, cred, region))

    def model_id(self, tier: ModelTier) -> str:
        return self._model_id

    def build_model_input(
        self,
        *,
        prompt: Optional[str],
        image: Optional[ReferenceImage],
        resolution: Resolution,
        aspect_ratio: AspectRatio,
    ) -> Dict[str, Any]:
        if resolution != Resolution.HD or aspect_ratio != AspectRatio.LANDSCAPE:
            raise ValidationError("Nova Reel supports only 16:9 video at 720p.")
        if not prompt:
            raise ValidationError("Nova Reel requires a text prompt.")

        params: Dict[str, Any] = {"text": prompt}
        if image is not None:
            image_format = _IMAGE_FORMATS.get(image.mime_type)
            if image_format is None:
                raise ValidationError(f"Nova Reel does not accept {image.mime_type} images.")
            params["images"] = [
                {"format": image_format, "source": {"bytes": base64.b64encode(image.data).decode("ascii")}}
            ]

        return {
            "taskType": "TEXT_VIDEO",
            "textToVideoParams": params,
            "videoGenerationConfig": {
                "fps": 24,
                "durationSeconds": 6,
                "dimension": "1280x720",
                "seed": random.randint(0, 2 ** 31 - 1),
            },
        }

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
        if not self.s3_bucket:
            raise ValidationError("BEDROCK_S3_BUCKET must be set to use Nova Reel.")
        model_input = self.build_model_input(
            prompt=prompt, image=image, resolution=resolution, aspect_ratio=aspect_ratio
        )
        s3_prefix = "/".join(p for p in (self.s3_prefix, uuid.uuid4().hex) if p)
        request = {
            "modelId": model_id,
            "modelInput": model_input,
            "outputDataConfig": {
                "s3OutputDataConfig": {"s3Uri": f"s3://{self.s3_bucket}/{s3_prefix}"}
            },
        }

        bedrock_client = self._client_factory("bedrock-runtime", credential)
        try:
            response = await asyncio.to_thread(bedrock_client.start_async_invoke, **request)
        except (ClientError, BotoCoreError) as exc:
            logger.exception("Failed to start Nova Reel video generation job")
            raise TransportError(str(exc)) from exc

        invocation_arn = response.get("invocationArn")
        if not invocation_arn:
            raise TransportError("Bedrock did not return an invocation ARN.")

        logger.info("Started Nova Reel job %s", invocation_arn)
        return JobHandle(
            name=invocation_arn,
            backend=self.name,
            credential=credential,
            state={"s3_bucket": self.s3_bucket, "s3_prefix": s3_prefix},
        )

    async def poll_job(self, handle: JobHandle) -> JobHandle:
        bedrock_client = self._client_factory("bedrock-runtime", handle.credential)
        try:
            response = await asyncio.to_thread(bedrock_client.get_async_invoke, invocationArn=handle.name)
        except (ClientError, BotoCoreError) as exc:
            logger.exception("Failed to fetch job status for %s", handle.name)
            raise TransportError(str(exc)) from exc

        status = (response.get("status") or "").lower()
        if status == "completed":
            operation = await self._completed_operation(handle, response)
        elif status == "failed":
            failure_message = response.get("failureMessage") or "Video generation failed."
            logger.error("Nova Reel job %s failed: %s", handle.name, failure_message)
            operation = OperationState(done=True, error=OperationError(message=failure_message))
        else:
            operation = OperationState(done=False)
        return handle.with_operation(operation)

    async def _completed_operation(self, handle: JobHandle, response: Dict[str, Any]) -> OperationState:
        s3_uri = ((response.get("outputDataConfig") or {}).get("s3OutputDataConfig") or {}).get("s3Uri")
        if s3_uri:
            bucket, prefix = _split_s3_uri(s3_uri)
        else:
            bucket, prefix = handle.state.get("s3_bucket"), handle.state.get("s3_prefix", "")

        s3_client = self._client_factory("s3", handle.credential)
        video_key = await asyncio.to_thread(self._find_video_key, s3_client, bucket, prefix)
        if not video_key:
            logger.error("No video file found under s3://%s/%s", bucket, prefix)
            return OperationState(done=True, response=OperationResponse(results=[]))

        try:
            url = await asyncio.to_thread(
                s3_client.generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket, "Key": video_key},
                ExpiresIn=self.presigned_url_seconds,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.exception("Failed to presign s3://%s/%s", bucket, video_key)
            raise TransportError(str(exc)) from exc

        expiry = datetime.now(timezone.utc) + timedelta(seconds=self.presigned_url_seconds)
        return OperationState(
            done=True,
            response=OperationResponse(results=[GeneratedResult(uri=url, expiry=expiry)]),
        )

    @staticmethod
    def _find_video_key(s3_client, bucket: str, prefix: str) -> Optional[str]:
        try:
            response = s3_client.list_objects_v2(Bucket=bucket, Prefix=prefix)
        except (ClientError, BotoCoreError) as exc:
            logger.exception("Unable to list S3 objects for %s/%s", bucket, prefix)
            raise TransportError(str(exc)) from exc

        for obj in response.get("Contents") or []:
            key = obj.get("Key", "")
            if key.lower().endswith(".mp4"):
                return key
        return None
