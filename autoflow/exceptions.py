"""
Exception hierarchy for credential resolution and node execution.

Every failure that crosses the credential store, resolver or dispatcher
boundary is one of these classes. Each carries:
    - error_code: stable machine-readable code
    - status_code: HTTP status used by the API layer
    - user_message: text that is safe to show to the end user
    - context: extra diagnostic fields (never rendered to the user)
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCode(str, Enum):
    """Standardized error codes for execution failures."""

    INVALID_CONFIG = "INVALID_CONFIG"
    CREDENTIAL_UNAVAILABLE = "CREDENTIAL_UNAVAILABLE"
    REAUTHORIZATION_REQUIRED = "REAUTHORIZATION_REQUIRED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_NODE = "UNKNOWN_NODE"
    CORRUPT_RECORD = "CORRUPT_RECORD"
    STORAGE_ERROR = "STORAGE_ERROR"


GENERIC_FAILURE_MESSAGE = (
    "Something went wrong while reading your saved connection. "
    "Please try again, or contact support if the problem persists."
)


class AutoflowError(Exception):
    """Base exception with error code, status code and diagnostic context."""

    error_code: ErrorCode = ErrorCode.PROVIDER_ERROR
    status_code: int = 500
    # message is logged only, never serialized into results
    internal: bool = False

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        **context: Any,
    ):
        """
        Initialize error.

        Args:
            message: Diagnostic message (may contain technical detail)
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.cause = cause
        self.context = context
        if cause is not None:
            self.context["cause"] = {"type": type(cause).__name__, "message": str(cause)}
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """Message safe to render to the end user."""
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to an API response payload (no diagnostic context)."""
        return {
            "error_code": self.error_code.value,
            "error_type": type(self).__name__,
            "message": self.user_message,
        }


class InvalidConfigError(AutoflowError):
    """Node configuration is missing required fields. User-fixable."""

    error_code = ErrorCode.INVALID_CONFIG
    status_code = 422

    def __init__(self, node_id: str, missing_fields: Sequence[str], labels: Optional[Dict[str, str]] = None):
        self.node_id = node_id
        self.missing_fields: List[str] = list(missing_fields)
        self.labels = labels or {}
        names = ", ".join(self.missing_fields)
        super().__init__(
            f"Node '{node_id}' is missing required config fields: {names}",
            node_id=node_id,
            missing_fields=self.missing_fields,
        )

    @property
    def user_message(self) -> str:
        described = [
            f"{self.labels[name]} ({name})" if self.labels.get(name) else name
            for name in self.missing_fields
        ]
        return "Please fill in the required fields: " + ", ".join(described)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["missing_fields"] = self.missing_fields
        return payload


class CredentialUnavailableError(AutoflowError):
    """No credential of any accepted kind exists for the service."""

    error_code = ErrorCode.CREDENTIAL_UNAVAILABLE
    status_code = 409

    def __init__(self, service: str, message: Optional[str] = None, **context: Any):
        self.service = service
        super().__init__(message or f"No credential found for '{service}'", service=service, **context)

    @property
    def user_message(self) -> str:
        return f"{self.service} is not connected. Connect it in your integration settings and try again."

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["service"] = self.service
        return payload


class ReauthorizationRequiredError(AutoflowError):
    """Refresh token is expired or revoked; the user must reconnect."""

    error_code = ErrorCode.REAUTHORIZATION_REQUIRED
    status_code = 401

    def __init__(self, service: str, message: Optional[str] = None, cause: Optional[BaseException] = None, **context: Any):
        self.service = service
        super().__init__(
            message or f"Authorization for '{service}' has expired",
            cause=cause,
            service=service,
            **context,
        )

    @property
    def user_message(self) -> str:
        return f"Your {self.service} connection has expired. Please reconnect {self.service} and try again."

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["service"] = self.service
        return payload


class DecryptionError(AutoflowError):
    """Stored ciphertext failed authentication (tamper or wrong key)."""

    error_code = ErrorCode.DECRYPTION_FAILED
    status_code = 500
    internal = True

    @property
    def user_message(self) -> str:
        return GENERIC_FAILURE_MESSAGE


class CorruptRecordError(AutoflowError):
    """A stored credential payload is malformed (truncation, schema drift)."""

    error_code = ErrorCode.CORRUPT_RECORD
    status_code = 500
    internal = True

    @property
    def user_message(self) -> str:
        return GENERIC_FAILURE_MESSAGE


class StorageError(AutoflowError):
    """The credential database could not be read or written."""

    error_code = ErrorCode.STORAGE_ERROR
    status_code = 503
    internal = True

    @property
    def user_message(self) -> str:
        return GENERIC_FAILURE_MESSAGE


class ProviderError(AutoflowError):
    """An upstream API returned an error. Carries status and body verbatim."""

    error_code = ErrorCode.PROVIDER_ERROR
    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        body: Any = None,
        provider: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.upstream_status = upstream_status
        self.body = body
        self.provider = provider
        super().__init__(
            message,
            cause=cause,
            upstream_status=upstream_status,
            provider=provider,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["upstream_status"] = self.upstream_status
        payload["body"] = self.body
        if self.provider:
            payload["provider"] = self.provider
        return payload


class ExecutionTimeoutError(AutoflowError):
    """The in-flight provider call exceeded the caller's timeout."""

    error_code = ErrorCode.TIMEOUT
    status_code = 504

    def __init__(self, timeout: Optional[float], message: Optional[str] = None, cause: Optional[BaseException] = None):
        self.timeout = timeout
        text = message or (f"Timed out after {timeout:g}s" if timeout else "Timed out")
        super().__init__(text, cause=cause, timeout=timeout)


class UnknownNodeError(AutoflowError):
    """No node with the given id exists in the registry."""

    error_code = ErrorCode.UNKNOWN_NODE
    status_code = 404

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Unknown node type: '{node_id}'", node_id=node_id)
