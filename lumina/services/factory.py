"""
Backend and client wiring.

The backend is picked by VIDEO_BACKEND ("veo" or "nova_reel"); credentials
follow the backend: an API key for Veo, AWS keys for Nova Reel.
"""
import logging
from typing import Optional

from lumina.config import Settings, settings as default_settings
from lumina.services.backends.base import JobBackend
from lumina.services.backends.nova_reel import NovaReelBackend
from lumina.services.backends.veo import VeoBackend
from lumina.services.credentials import (
    AwsCredentialProvider,
    CredentialProvider,
    EnvCredentialProvider,
    SelectableCredentialProvider,
)
from lumina.services.errors import ErrorClassifier
from lumina.services.job_client import LongRunningJobClient

logger = logging.getLogger(__name__)


def get_backend(settings: Optional[Settings] = None) -> JobBackend:
    settings = settings or default_settings
    if settings.video_backend == "nova_reel":
        return NovaReelBackend(
            model_id=settings.bedrock_model_id,
            s3_bucket=settings.bedrock_s3_bucket,
            s3_prefix=settings.bedrock_s3_prefix,
            region=settings.aws_region,
            presigned_url_seconds=settings.presigned_url_seconds,
        )
    if settings.video_backend != "veo":
        logger.warning("Unknown video backend '%s', defaulting to veo", settings.video_backend)
    return VeoBackend(
        base_url=settings.gemini_base_url,
        fast_model_id=settings.veo_fast_model_id,
        quality_model_id=settings.veo_quality_model_id,
        timeout_seconds=settings.http_timeout_seconds,
    )


def get_credential_provider(settings: Optional[Settings] = None) -> CredentialProvider:
    settings = settings or default_settings
    if settings.video_backend == "nova_reel":
        return AwsCredentialProvider(
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            session_token=settings.aws_session_token,
            region=settings.aws_region,
            role_arn=settings.bedrock_role_arn,
        )
    return SelectableCredentialProvider(fallback=EnvCredentialProvider(settings.credential_env_var))


def build_job_client(
    backend: JobBackend,
    credential_provider: CredentialProvider,
    settings: Optional[Settings] = None,
) -> LongRunningJobClient:
    settings = settings or default_settings
    return LongRunningJobClient(
        backend,
        credential_provider,
        ErrorClassifier(settings.credential_invalid_patterns),
        poll_interval_seconds=settings.poll_interval_seconds,
        max_poll_duration_seconds=settings.max_poll_duration_seconds,
    )
