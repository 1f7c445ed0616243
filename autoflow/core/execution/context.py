"""
Execution Context

Per-invocation capabilities handed to a node function, and the result
returned by the dispatcher. Nothing here is persisted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Sequence, Tuple

from autoflow.exceptions import AutoflowError
from autoflow.schemas.credential import ResolvedCredential
from autoflow.services.credential_resolver import CredentialResolver
from autoflow.services.http_client import HttpClient
from autoflow.utils.timezone import to_iso, utc_now

logger = logging.getLogger(__name__)


class NodeLogger(logging.LoggerAdapter):
    """
    Structured logger for one node execution.

    Entries go to the regular `autoflow.nodes` logger and are also recorded
    so they can be returned with the result.
    """

    def __init__(self, node_type: str, execution_id: str, user_id: str):
        super().__init__(
            logging.getLogger(f"autoflow.nodes.{node_type}"),
            {"node_type": node_type, "execution_id": execution_id, "user_id": user_id},
        )
        self.entries: List[Dict[str, Any]] = []

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['node_type']}:{self.extra['execution_id']}] {msg}", kwargs

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        text = str(msg) % args if args else str(msg)
        self.entries.append({
            "level": logging.getLevelName(level),
            "message": text,
            "timestamp": to_iso(utc_now()),
        })
        super().log(level, msg, *args, **kwargs)


class CredentialLookup:
    """
    Credential access scoped to the invoking user.

    Each (service, accept) pair is resolved at most once per execution.
    """

    def __init__(self, resolver: CredentialResolver, user_id: str):
        self._resolver = resolver
        self.user_id = user_id
        self._cache: Dict[Tuple[str, Optional[frozenset]], ResolvedCredential] = {}

    async def get(self, service: str, accept: Optional[Iterable[str]] = None) -> ResolvedCredential:
        """
        Resolve a credential for `service`.

        Raises:
            CredentialUnavailableError, ReauthorizationRequiredError, ...
        """
        key = (service, frozenset(accept) if accept is not None else None)
        if key not in self._cache:
            self._cache[key] = await self._resolver.resolve(self.user_id, service, accept=accept)
        return self._cache[key]

    async def token(self, service: str, accept: Optional[Iterable[str]] = None) -> str:
        """Shortcut for the plaintext token."""
        return (await self.get(service, accept)).token

    async def preload(self, services: Sequence[str]) -> Dict[str, Optional[ResolvedCredential]]:
        """Resolve several services up front; unconnected services map to None."""
        resolved = await self._resolver.resolve_all(self.user_id, services)
        for service, credential in resolved.items():
            if credential is not None:
                self._cache[(service, None)] = credential
        return resolved


@dataclass
class NodeExecutionContext:
    """Everything a node function may use besides its input and config."""
    user_id: str
    node_type: str
    execution_id: str
    credentials: CredentialLookup
    http: HttpClient
    logger: NodeLogger
    timeout: float


@dataclass
class ExecutionFailure:
    """Classified failure of one node execution."""
    code: str
    error_type: str
    message: str
    detail: str = ""
    missing_fields: List[str] = field(default_factory=list)
    service: Optional[str] = None
    status_code: Optional[int] = None
    upstream_status: Optional[int] = None
    body: Any = None

    @classmethod
    def from_error(cls, error: AutoflowError) -> "ExecutionFailure":
        return cls(
            code=error.error_code.value,
            error_type=type(error).__name__,
            message=error.user_message,
            detail="" if error.internal else error.message,
            missing_fields=list(getattr(error, "missing_fields", []) or []),
            service=getattr(error, "service", None),
            status_code=error.status_code,
            upstream_status=getattr(error, "upstream_status", None),
            body=getattr(error, "body", None),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code,
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.detail:
            payload["detail"] = self.detail
        if self.missing_fields:
            payload["missing_fields"] = self.missing_fields
        if self.service:
            payload["service"] = self.service
        if self.upstream_status is not None:
            payload["upstream_status"] = self.upstream_status
            payload["body"] = self.body
        return payload


@dataclass
class NodeExecutionResult:
    """Result from executing a single node"""
    node_id: str
    success: bool
    outputs: Any = None
    error: Optional[ExecutionFailure] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    execution_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "node_id": self.node_id,
            "execution_id": self.execution_id,
            "success": self.success,
            "outputs": self.outputs,
            "error": self.error.to_dict() if self.error else None,
            "logs": self.logs,
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "duration_ms": self.duration_ms,
        }
