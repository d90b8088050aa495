"""Error taxonomy for captcha recognition.

Adapters raise ``ProviderError`` with a ``kind`` the failover policy can
inspect; the orchestrator raises ``CaptchaExhaustedError`` once every tier
has been tried. Capture and crop problems are reported before any provider
is contacted.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification of a failed recognition attempt."""
    TRANSIENT = "transient"  # Network or availability problem
    RATE_LIMITED = "rate_limited"  # Provider asked us to slow down
    MALFORMED_RESPONSE = "malformed_response"  # Provider replied with unusable content
    MISSING_CREDENTIAL = "missing_credential"  # Local configuration problem
    TIMEOUT = "timeout"  # Call or poll loop exceeded its bound
    REJECTED = "rejected"  # HTTP status outside the failover trigger set
    EXHAUSTED = "exhausted"  # Every tier has been tried


class CaptchaError(Exception):
    """Base class for all captcha-relay errors."""
    
    kind: Optional[ErrorKind] = None


class ProviderError(CaptchaError):
    """A provider adapter failed to produce a usable result.
    
    Attributes:
        kind: Failure classification.
        status_code: HTTP status (or synthetic code such as 408 for timeouts).
        provider: Name of the provider that failed, when known.
    """
    
    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.TRANSIENT,
        status_code: Optional[int] = None,
        provider: Optional[str] = None
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.provider = provider
    
    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is not None:
            return f"{message} (status {self.status_code})"
        return message


class MissingCredentialError(ProviderError):
    """A provider needs a secret the credential store does not have."""
    
    def __init__(self, credential_name: str, provider: Optional[str] = None):
        super().__init__(
            f"Credential '{credential_name}' not found. Please set it in the settings.",
            kind=ErrorKind.MISSING_CREDENTIAL,
            provider=provider
        )
        self.credential_name = credential_name


class CaptchaExhaustedError(CaptchaError):
    """Every provider in every tier failed with a retryable error.
    
    The last underlying ``ProviderError`` is chained as ``__cause__`` and
    kept on ``last_error``.
    """
    
    kind = ErrorKind.EXHAUSTED
    
    def __init__(
        self,
        last_tier: int,
        status: str,
        last_error: Optional[BaseException] = None
    ):
        detail = f": {last_error}" if last_error else ""
        super().__init__(
            f"All providers exhausted (last tier attempted: {last_tier}){detail}"
        )
        self.last_tier = last_tier
        self.status = status
        self.last_error = last_error


class CaptureError(CaptchaError):
    """The capture collaborator could not supply a frame."""


class CaptureDecodeError(CaptchaError):
    """The captured frame is not a decodable image."""


class InvalidCropError(CaptchaError):
    """The crop region collapses to zero area."""
