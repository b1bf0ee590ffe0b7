import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from lumina.api.deps import get_generation_service
from lumina.config import settings
from lumina.models.schemas import (
    CredentialRequest,
    CredentialStatusResponse,
    JobStatusResponse,
    VideoJobResponse,
    VideoRequest,
)
from lumina.services.credentials import SelectableCredentialProvider
from lumina.services.errors import ConfigurationError, TransportError, ValidationError
from lumina.services.generation_service import (
    GenerationService,
    JobInProgressError,
    JobNotFoundError,
    VideoNotReadyError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.post("/generate-video", response_model=VideoJobResponse)
async def generate_video(payload: VideoRequest, service: GenerationService = Depends(get_generation_service)):
    prompt = (payload.prompt or "").strip()
    if len(prompt) > settings.prompt_char_limit:
        raise HTTPException(
            status_code=400,
            detail=f"Prompt too long. Maximum {settings.prompt_char_limit} characters.",
        )

    try:
        job = await service.start(payload.to_generation_request())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except JobInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return VideoJobResponse(job_id=job.job_id, status=job.status)


@router.get("/video-status/{job_id}", response_model=JobStatusResponse)
async def get_video_status(job_id: str, service: GenerationService = Depends(get_generation_service)):
    try:
        job = service.get(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return JobStatusResponse(**service.serialize(job))


@router.post("/video-status/{job_id}/cancel", response_model=JobStatusResponse)
async def cancel_video(job_id: str, service: GenerationService = Depends(get_generation_service)):
    try:
        job = service.cancel(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return JobStatusResponse(**service.serialize(job))


@router.get("/videos/{job_id}")
async def get_video(job_id: str, service: GenerationService = Depends(get_generation_service)):
    try:
        content, media_type = await service.fetch_video(job_id)
    except (JobNotFoundError, VideoNotReadyError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TransportError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return Response(content=content, media_type=media_type)


@router.get("/credential", response_model=CredentialStatusResponse)
async def get_credential_status(service: GenerationService = Depends(get_generation_service)):
    credential = await asyncio.to_thread(service.credential_provider.current)
    return CredentialStatusResponse(has_credential=credential is not None)


@router.post("/credential", response_model=CredentialStatusResponse)
async def select_credential(payload: CredentialRequest, service: GenerationService = Depends(get_generation_service)):
    provider = service.credential_provider
    if not isinstance(provider, SelectableCredentialProvider):
        raise HTTPException(status_code=400, detail="This backend does not accept API keys at runtime.")
    try:
        provider.select(payload.api_key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CredentialStatusResponse(has_credential=True)


@router.get("/health")
async def health_check():
    return {"status": "ok"}
