from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    video_backend: str = Field("veo", validation_alias="VIDEO_BACKEND")

    # Name of the process-wide variable holding the API key. Read on every submit.
    credential_env_var: str = Field("API_KEY", validation_alias="CREDENTIAL_ENV_VAR")

    gemini_base_url: str = Field(
        "https://generativelanguage.googleapis.com/v1beta", validation_alias="GEMINI_BASE_URL"
    )
    veo_fast_model_id: str = Field("veo-3.1-fast-generate-preview", validation_alias="VEO_FAST_MODEL_ID")
    veo_quality_model_id: str = Field("veo-3.1-generate-preview", validation_alias="VEO_QUALITY_MODEL_ID")
    http_timeout_seconds: float = Field(60.0, validation_alias="HTTP_TIMEOUT_SECONDS")

    aws_access_key_id: Optional[str] = Field(default=None, validation_alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = Field(default=None, validation_alias="AWS_SECRET_ACCESS_KEY")
    aws_session_token: Optional[str] = Field(default=None, validation_alias="AWS_SESSION_TOKEN")
    aws_region: str = Field("us-east-1", validation_alias="AWS_REGION")

    bedrock_role_arn: Optional[str] = Field(default=None, validation_alias="BEDROCK_ROLE_ARN")
    bedrock_model_id: str = Field("amazon.nova-reel-v1:0", validation_alias="BEDROCK_NOVA_REEL_MODEL_ID")
    bedrock_s3_bucket: Optional[str] = Field(default=None, validation_alias="BEDROCK_S3_BUCKET")
    bedrock_s3_prefix: str = Field("bedrock-temp", validation_alias="BEDROCK_S3_PREFIX")
    presigned_url_seconds: int = Field(3600, validation_alias="PRESIGNED_URL_SECONDS")

    poll_interval_seconds: float = Field(10.0, validation_alias="POLL_INTERVAL_SECONDS")
    max_poll_duration_seconds: Optional[float] = Field(default=None, validation_alias="MAX_POLL_DURATION_SECONDS")
    credential_invalid_patterns: List[str] = Field(
        default_factory=lambda: ["Requested entity was not found"],
        validation_alias="CREDENTIAL_INVALID_PATTERNS",
    )

    app_host: str = Field("127.0.0.1", validation_alias="APP_HOST")
    app_port: int = Field(8000, validation_alias="APP_PORT")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    prompt_char_limit: int = Field(2400, validation_alias="PROMPT_CHAR_LIMIT")
    # Finished jobs kept for status queries; the oldest are dropped first.
    job_history_limit: int = Field(100, validation_alias="JOB_HISTORY_LIMIT")

    @field_validator("bedrock_s3_prefix", mode="before")
    @classmethod
    def normalize_prefix(cls, value: Optional[str]) -> str:
        value = value or ""
        return value.strip("/")

    @field_validator("video_backend", mode="before")
    @classmethod
    def normalize_backend(cls, value: Optional[str]) -> str:
        return (value or "veo").strip().lower()

    @field_validator("max_poll_duration_seconds", mode="before")
    @classmethod
    def empty_duration_means_unbounded(cls, value):
        if value in ("", None):
            return None
        return value


@lru_cache()
def get_settings() -> Settings:
    try:
        return Settings()
    except Exception as exc:
        raise RuntimeError("Failed to load application settings. Ensure your .env file is configured.") from exc


settings = get_settings()
