"""Pytest fixtures and configuration."""

import os

# Set up test environment variables BEFORE any autoflow imports
TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
os.environ.setdefault("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./data/test-autoflow.db")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_DIR", "")

from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from autoflow.config import Settings, get_settings
from autoflow.core.execution.dispatcher import ExecutionDispatcher
from autoflow.core.nodes.loader import build_registry
from autoflow.core.nodes.registry import NodeRegistry
from autoflow.database.layout import SchemaDetector, create_schema
from autoflow.database.repositories.credential import CredentialRepository
from autoflow.database.repositories.integration import IntegrationRepository
from autoflow.database.session import create_engine_for_url, create_session_factory
from autoflow.schemas.credential import OAuthTokens
from autoflow.security.encryption import CipherVault
from autoflow.services.credential_resolver import CredentialResolver
from autoflow.services.http_client import HttpClient
from autoflow.services.token_refresh import TokenRefreshOrchestrator
from autoflow.utils.timezone import utc_now


@pytest.fixture
def encryption_key() -> str:
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def vault(encryption_key) -> CipherVault:
    return CipherVault.from_material(encryption_key)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with a throwaway database and OAuth apps for google and slack."""
    return Settings(
        ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'autoflow.db'}",
        LOG_DIR="",
        FILES_ROOT=str(tmp_path / "files"),
        GOOGLE_INTEGRATION_CLIENT_ID="google-client",
        GOOGLE_INTEGRATION_CLIENT_SECRET="google-secret",
        SLACK_CLIENT_ID="slack-client",
        SLACK_CLIENT_SECRET="slack-secret",
    )


class CredentialStack:
    """Engine, repositories and resolver over one SQLite file."""

    def __init__(self, engine, settings: Settings, vault: CipherVault, handler: Callable):
        self.engine = engine
        self.settings = settings
        self.vault = vault
        self.requests: List[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.handler(request)

        self.handler = handler
        self._transport = httpx.MockTransport(recording_handler)
        session_factory = create_session_factory(engine)
        self.detector = SchemaDetector(engine)
        self.integrations = IntegrationRepository(session_factory, vault)
        self.credentials = CredentialRepository(session_factory, vault)
        self.refresher = TokenRefreshOrchestrator(
            self.integrations,
            self.detector,
            http=HttpClient(timeout=5, transport=self._transport),
            settings=settings,
        )
        self.resolver = CredentialResolver(
            self.detector, self.integrations, self.credentials, self.refresher, vault=vault, settings=settings
        )

    async def connect(
        self,
        user_id: str,
        service: str,
        access_token: str = "access-1",
        refresh_token: Optional[str] = "refresh-1",
        expires_in: Optional[int] = 3600,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Store an OAuth integration record."""
        layout = await self.detector.detect()
        expires_at = utc_now() + timedelta(seconds=expires_in) if expires_in is not None else None
        return await self.integrations.upsert(
            layout,
            user_id,
            service,
            OAuthTokens(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at),
            metadata=metadata,
        )

    def dispatcher(self, registry: NodeRegistry) -> ExecutionDispatcher:
        """Dispatcher whose node HTTP calls go to the same mock handler."""
        return ExecutionDispatcher(
            registry,
            self.resolver,
            settings=self.settings,
            http_factory=lambda seconds: HttpClient(timeout=seconds, transport=self._transport),
        )


def _unexpected_request(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"Unexpected outbound request: {request.method} {request.url}")


@pytest.fixture
async def make_stack(tmp_path, test_settings, vault):
    """
    Factory for a credential stack in a given table layout.

    Usage:
        stack = await make_stack("catalogue", handler=token_endpoint)
    """
    stacks: List[CredentialStack] = []

    async def factory(layout: str = "inline", handler: Callable = _unexpected_request) -> CredentialStack:
        db_path = tmp_path / f"{layout}-{len(stacks)}.db"
        engine = create_engine_for_url(f"sqlite+aiosqlite:///{db_path}", test_settings)
        async with engine.begin() as conn:
            await create_schema(conn, layout)
        stacks.append(CredentialStack(engine, test_settings, vault, handler))
        return stacks[-1]

    yield factory

    for created in stacks:
        await created.refresher.aclose()
        await created.engine.dispose()


@pytest.fixture
async def stack(make_stack) -> CredentialStack:
    return await make_stack("inline")


@pytest.fixture
def files_root(tmp_path, monkeypatch):
    """Point FILES_ROOT at a temporary directory."""
    root = tmp_path / "files"
    root.mkdir()
    monkeypatch.setenv("FILES_ROOT", str(root))
    get_settings.cache_clear()
    yield root
    get_settings.cache_clear()


@pytest.fixture(scope="session")
def registry() -> NodeRegistry:
    return build_registry()


@pytest.fixture
def dispatcher(stack, registry) -> ExecutionDispatcher:
    return stack.dispatcher(registry)
