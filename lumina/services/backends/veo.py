"""
Gemini API Veo backend.

Video generation is a long-running operation: ``predictLongRunning`` returns
an operation name, and ``GET /{name}`` reports ``done`` plus either an
``error`` or the generated samples.
"""
import base64
import json
import logging
from typing import Any, Dict, List, Optional

import httpx
import pydantic

from lumina.models.schemas import (
    AspectRatio,
    GeneratedResult,
    ModelTier,
    OperationError,
    OperationResponse,
    OperationState,
    ReferenceImage,
    Resolution,
    VideoResult,
)
from lumina.services.backends.base import JobBackend, JobHandle
from lumina.services.credentials import Credential
from lumina.services.errors import ProtocolError, TransportError

logger = logging.getLogger(__name__)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except (json.JSONDecodeError, ValueError):
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    text = (resp.text or "").strip()
    return text[:200] or f"HTTP {resp.status_code}"


def _mapping(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProtocolError(f"Malformed {what} in the operation response: {type(value).__name__}")
    return value


def _extract_results(response: Dict[str, Any]) -> List[GeneratedResult]:
    samples = _mapping(response.get("generateVideoResponse"), "generateVideoResponse").get("generatedSamples") or []
    if not isinstance(samples, list):
        raise ProtocolError(f"Malformed generatedSamples in the operation response: {type(samples).__name__}")
    results = []
    for sample in samples:
        video = _mapping(_mapping(sample, "generated sample").get("video"), "video")
        results.append(GeneratedResult(uri=video.get("uri")))
    return results


def parse_operation(body: Dict[str, Any]) -> OperationState:
    error = body.get("error")
    response = body.get("response")
    try:
        return OperationState(
            done=bool(body.get("done")),
            error=OperationError(message=_mapping(error, "error").get("message")) if error is not None else None,
            response=OperationResponse(results=_extract_results(_mapping(response, "response")))
            if response is not None
            else None,
        )
    except pydantic.ValidationError as exc:
        raise ProtocolError(f"Malformed operation response: {exc.errors()[0]['msg']}") from exc


class VeoBackend(JobBackend):
    name = "veo"

    def __init__(
        self,
        *,
        base_url: str,
        fast_model_id: str,
        quality_model_id: str,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model_ids = {ModelTier.FAST: fast_model_id, ModelTier.QUALITY: quality_model_id}
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def model_id(self, tier: ModelTier) -> str:
        return self.model_ids[tier]

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds,
            follow_redirects=True,
            transport=self._transport,
        )

    @staticmethod
    def _headers(credential: Credential) -> Dict[str, str]:
        return {"x-goog-api-key": credential.secret, "Content-Type": "application/json"}

    def build_payload(
        self,
        *,
        prompt: Optional[str],
        image: Optional[ReferenceImage],
        number_of_videos: int,
        resolution: Resolution,
        aspect_ratio: AspectRatio,
    ) -> Dict[str, Any]:
        instance: Dict[str, Any] = {}
        if prompt:
            instance["prompt"] = prompt
        if image is not None:
            instance["image"] = {
                "bytesBase64Encoded": base64.b64encode(image.data).decode("ascii"),
                "mimeType": image.mime_type,
            }
        return {
            "instances": [instance],
            "parameters": {
                "aspectRatio": aspect_ratio.value,
                "resolution": resolution.value,
                "sampleCount": number_of_videos,
            },
        }

    async def _send(self, method: str, url: str, credential: Credential, **kwargs) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.request(method, url, headers=self._headers(credential), **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Veo request %s %s failed: %s", method, url, exc)
            raise TransportError(f"Unable to reach the video service: {exc}") from exc

        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.error("Veo request %s %s returned %s: %s", method, url, resp.status_code, message)
            raise TransportError(message)

        try:
            body = resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProtocolError(f"Invalid JSON from the video service: {resp.text[:200]}") from exc
        if not isinstance(body, dict):
            raise ProtocolError(f"Unexpected JSON type from the video service: {type(body).__name__}")
        return body

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
        payload = self.build_payload(
            prompt=prompt,
            image=image,
            number_of_videos=number_of_videos,
            resolution=resolution,
            aspect_ratio=aspect_ratio,
        )
        url = f"{self.base_url}/models/{model_id}:predictLongRunning"
        body = await self._send("POST", url, credential, json=payload)

        name = body.get("name")
        if not name:
            raise ProtocolError("The video service did not return an operation name.")
        return JobHandle(name=name, backend=self.name, credential=credential, operation=parse_operation(body))

    async def poll_job(self, handle: JobHandle) -> JobHandle:
        body = await self._send("GET", f"{self.base_url}/{handle.name}", handle.credential)
        return handle.with_operation(parse_operation(body))

    def download_url(self, result: VideoResult, credential: Optional[Credential]) -> str:
        # Generated file URIs are only served with the API key attached.
        if credential is None:
            return result.uri
        separator = "&" if "?" in result.uri else "?"
        return f"{result.uri}{separator}key={credential.secret}"
