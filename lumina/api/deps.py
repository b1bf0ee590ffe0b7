from functools import lru_cache

from lumina.config import settings
from lumina.services.factory import build_job_client, get_backend, get_credential_provider
from lumina.services.generation_service import GenerationService


@lru_cache()
def get_generation_service() -> GenerationService:
    credential_provider = get_credential_provider(settings)
    client = build_job_client(get_backend(settings), credential_provider, settings)
    return GenerationService(
        client,
        credential_provider,
        http_timeout_seconds=settings.http_timeout_seconds,
        history_limit=settings.job_history_limit,
    )
