"""
API Dependencies

Services are built once by the application lifespan and kept on app.state;
these dependencies hand them to endpoints. The caller is identified by the
X-User-Id header set by the surrounding platform.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from autoflow.core.execution.dispatcher import ExecutionDispatcher
from autoflow.core.nodes.registry import NodeRegistry
from autoflow.database.layout import SchemaDetector
from autoflow.database.repositories.credential import CredentialRepository
from autoflow.database.repositories.integration import IntegrationRepository
from autoflow.services.credential_resolver import CredentialResolver


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Get the invoking user from the X-User-Id header.

    Raises:
        HTTPException 401: If the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    return x_user_id.strip()


def get_registry(request: Request) -> NodeRegistry:
    return request.app.state.registry


def get_dispatcher(request: Request) -> ExecutionDispatcher:
    return request.app.state.dispatcher


def get_resolver(request: Request) -> CredentialResolver:
    return request.app.state.resolver


def get_detector(request: Request) -> SchemaDetector:
    return request.app.state.detector


def get_credential_repository(request: Request) -> CredentialRepository:
    return request.app.state.credentials


def get_integration_repository(request: Request) -> IntegrationRepository:
    return request.app.state.integrations
