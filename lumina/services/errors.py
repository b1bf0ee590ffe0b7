import logging
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class GenerationError(RuntimeError):
    """Base class for every failure a generation run can report."""

    kind = "generation_error"


class ValidationError(GenerationError):
    kind = "validation"


class ConfigurationError(GenerationError):
    kind = "configuration"


class TransportError(GenerationError):
    kind = "transport"


class JobError(GenerationError):
    kind = "job_failed"


class ProtocolError(GenerationError):
    kind = "protocol"


class CredentialInvalidError(GenerationError):
    kind = "credential_invalid"


class Cancelled(GenerationError):
    kind = "cancelled"


class PollTimeoutError(GenerationError):
    kind = "timeout"


class ErrorClassifier:
    """Maps raw backend failures onto the error taxonomy.

    The vendor reports an expired or revoked key as a generic "not found"
    error, so the only signal is the message text. Patterns are matched as
    case-insensitive substrings.
    """

    def __init__(self, credential_patterns: Iterable[str]):
        self.credential_patterns: List[str] = [p.lower() for p in credential_patterns if p]

    def is_credential_failure(self, message: Optional[str]) -> bool:
        text = (message or "").lower()
        return any(pattern in text for pattern in self.credential_patterns)

    def classify(self, exc: BaseException) -> GenerationError:
        message = str(exc)
        if isinstance(exc, (TransportError, JobError)) and self.is_credential_failure(message):
            logger.warning("Backend error looks like an invalid credential: %s", message)
            error = CredentialInvalidError("API key session expired or invalid. Please re-select your API key.")
            error.__cause__ = exc
            return error
        if isinstance(exc, GenerationError):
            return exc
        error = TransportError(message or exc.__class__.__name__)
        error.__cause__ = exc
        return error

    def job_failure(self, message: Optional[str]) -> GenerationError:
        return self.classify(JobError(message or "Unknown error during video generation"))
