import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from lumina.services.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    secret: str = field(repr=False)
    key_id: Optional[str] = None
    session_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None


class CredentialProvider(ABC):
    """Source of the credential used for the next submission.

    ``current`` is called at the start of every submit and must reflect
    external changes made since the previous call.
    """

    @abstractmethod
    def current(self) -> Optional[Credential]:
        ...


class StaticCredentialProvider(CredentialProvider):
    def __init__(self, credential: Optional[Credential] = None):
        self._credential = credential

    def current(self) -> Optional[Credential]:
        return self._credential


class EnvCredentialProvider(CredentialProvider):
    """Reads an API key from the process environment on each call."""

    def __init__(self, variable: str = "API_KEY"):
        self.variable = variable

    def current(self) -> Optional[Credential]:
        value = (os.environ.get(self.variable) or "").strip()
        if not value:
            return None
        return Credential(secret=value)


class SelectableCredentialProvider(CredentialProvider):
    """A key chosen at runtime through the API, over an optional fallback.

    ``invalidate`` drops the selected key after the backend rejected it and
    also stops the fallback from being used, so the user has to pick a key
    again.
    """

    def __init__(self, fallback: Optional[CredentialProvider] = None):
        self._fallback = fallback
        self._selected: Optional[Credential] = None
        self._invalidated = False
        self._lock = threading.Lock()

    def select(self, api_key: str) -> None:
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValueError("api_key must not be empty")
        with self._lock:
            self._selected = Credential(secret=api_key)
            self._invalidated = False
        logger.info("API key selected")

    def invalidate(self) -> None:
        with self._lock:
            self._selected = None
            self._invalidated = True
        logger.warning("API key invalidated; a new key must be selected")

    def current(self) -> Optional[Credential]:
        with self._lock:
            if self._selected is not None:
                return self._selected
            if self._invalidated or self._fallback is None:
                return None
        return self._fallback.current()


class AwsCredentialProvider(CredentialProvider):
    """AWS credentials for Bedrock, optionally through an assumed IAM role.

    Assumed-role credentials are reused until five minutes before they
    expire.
    """

    refresh_margin = timedelta(minutes=5)

    def __init__(
        self,
        access_key_id: Optional[str],
        secret_access_key: Optional[str],
        session_token: Optional[str] = None,
        region: str = "us-east-1",
        role_arn: Optional[str] = None,
        session_name: str = "lumina-video",
    ):
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.region = region
        self.role_arn = role_arn
        self.session_name = session_name
        self._assumed: Optional[Credential] = None
        self._lock = threading.Lock()

    def _base_credential(self) -> Optional[Credential]:
        if not self.access_key_id or not self.secret_access_key:
            return None
        return Credential(
            secret=self.secret_access_key,
            key_id=self.access_key_id,
            session_token=self.session_token,
        )

    def current(self) -> Optional[Credential]:
        base = self._base_credential()
        if base is None or not self.role_arn:
            return base
        with self._lock:
            if self._assumed and self._assumed.expires_at:
                if datetime.now(timezone.utc) + self.refresh_margin < self._assumed.expires_at:
                    return self._assumed
            self._assumed = self._assume_role(base)
            return self._assumed

    def _assume_role(self, base: Credential) -> Credential:
        session = boto3.Session(
            aws_access_key_id=base.key_id,
            aws_secret_access_key=base.secret,
            aws_session_token=base.session_token,
            region_name=self.region,
        )
        sts_client = session.client("sts", config=BotoConfig(retries={"max_attempts": 3}))
        try:
            response = sts_client.assume_role(
                RoleArn=self.role_arn,
                RoleSessionName=self.session_name,
                DurationSeconds=3600,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.exception("Unable to assume IAM role for Bedrock access")
            raise ConfigurationError("Failed to assume IAM role. Check your credentials and permissions.") from exc

        credentials = response["Credentials"]
        return Credential(
            secret=credentials["SecretAccessKey"],
            key_id=credentials["AccessKeyId"],
            session_token=credentials["SessionToken"],
            expires_at=credentials["Expiration"].astimezone(timezone.utc),
        )
