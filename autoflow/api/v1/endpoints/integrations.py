"""
Integration Endpoints

GET  /integrations/status      - Connected services for the caller
POST /integrations/credentials - Store a static credential (API key, bot token, ...)
POST /integrations/oauth       - Store tokens from an OAuth callback
POST /integrations/disconnect  - Remove an OAuth record and/or static credentials

Secrets are sealed before storage and never returned.
"""

import logging
from datetime import timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from autoflow.api.deps import (
    get_credential_repository,
    get_current_user_id,
    get_detector,
    get_integration_repository,
    get_resolver,
)
from autoflow.database.layout import SchemaDetector
from autoflow.database.repositories.credential import CredentialRepository
from autoflow.database.repositories.integration import IntegrationRepository
from autoflow.schemas.credential import (
    DisconnectRequest,
    OAuthTokens,
    StoreCredentialRequest,
    StoreOAuthTokensRequest,
)
from autoflow.services.credential_resolver import CredentialResolver
from autoflow.utils.timezone import ensure_aware, to_iso, utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status", summary="Connection status")
async def integration_status(
    user_id: str = Depends(get_current_user_id),
    resolver: CredentialResolver = Depends(get_resolver),
) -> Dict[str, Any]:
    """List connected services without decrypting any secret."""
    statuses = await resolver.connection_status(user_id)
    return {
        "integrations": [item.model_dump(mode="json") for item in statuses],
        "total": len(statuses),
    }


@router.post("/credentials", status_code=status.HTTP_201_CREATED, summary="Store static credential")
async def store_credential(
    request: StoreCredentialRequest,
    user_id: str = Depends(get_current_user_id),
    credentials: CredentialRepository = Depends(get_credential_repository),
) -> Dict[str, Any]:
    """
    Create or replace the (user, service, credential_type) credential.

    The value is sealed before it reaches the database.
    """
    await credentials.store(user_id, request.service, request.credential_type, request.value, request.metadata)
    logger.info(f"User {user_id} stored {request.service}/{request.credential_type} credential")
    return {
        "success": True,
        "service": request.service,
        "credential_type": request.credential_type,
        "credential_kinds": await credentials.list_kinds(user_id, request.service),
    }


@router.post("/oauth", status_code=status.HTTP_201_CREATED, summary="Store OAuth tokens")
async def store_oauth_tokens(
    request: StoreOAuthTokensRequest,
    user_id: str = Depends(get_current_user_id),
    detector: SchemaDetector = Depends(get_detector),
    integrations: IntegrationRepository = Depends(get_integration_repository),
) -> Dict[str, Any]:
    """Create or update the caller's integration record for a service."""
    if request.expires_at is not None:
        expires_at = ensure_aware(request.expires_at)
    elif request.expires_in is not None:
        expires_at = utc_now() + timedelta(seconds=request.expires_in)
    else:
        expires_at = None

    layout = await detector.detect()
    record = await integrations.upsert(
        layout,
        user_id,
        request.service,
        OAuthTokens(access_token=request.access_token, refresh_token=request.refresh_token, expires_at=expires_at),
        metadata=request.metadata,
    )
    return {
        "success": True,
        "service": record.service,
        "expires_at": to_iso(record.expires_at),
        "has_refresh_token": record.has_refresh_token,
    }


@router.post("/disconnect", summary="Disconnect a service")
async def disconnect(
    request: DisconnectRequest,
    user_id: str = Depends(get_current_user_id),
    detector: SchemaDetector = Depends(get_detector),
    integrations: IntegrationRepository = Depends(get_integration_repository),
    credentials: CredentialRepository = Depends(get_credential_repository),
) -> Dict[str, Any]:
    """
    Remove stored access for a service.

    With credential_type only that static credential goes; otherwise the
    OAuth record and every static credential of the service are removed.
    """
    service = request.service.strip().lower()
    oauth_removed = False
    if request.credential_type is None:
        layout = await detector.detect()
        oauth_removed = await integrations.delete(layout, user_id, service)
    static_removed = await credentials.delete(user_id, service, request.credential_type)

    logger.info(f"User {user_id} disconnected {service} (oauth={oauth_removed}, static={static_removed})")
    return {
        "success": oauth_removed or static_removed,
        "service": service,
        "oauth_removed": oauth_removed,
        "credentials_removed": static_removed,
    }
