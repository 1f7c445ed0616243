"""
Execution Dispatcher

Single entry point for running one node:

    1. Look up the node (unknown id -> UnknownNodeError)
    2. Resolve {{...}} templates in the config
    3. Apply declared defaults
    4. Validate required fields (one InvalidConfigError naming all missing)
    5. Build a fresh context scoped to the invoking user
    6. Run the node function under the caller's timeout
    7. Classify failures; anything unclassified becomes ProviderError

The node's return value is passed back verbatim.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Mapping, Optional

from autoflow.config import Settings, get_settings
from autoflow.core.execution.context import (
    CredentialLookup,
    ExecutionFailure,
    NodeExecutionContext,
    NodeExecutionResult,
    NodeLogger,
)
from autoflow.core.nodes.registry import NodeRegistry
from autoflow.core.nodes.variables import resolve_config_templates
from autoflow.exceptions import (
    AutoflowError,
    ExecutionTimeoutError,
    InvalidConfigError,
    ProviderError,
)
from autoflow.services.credential_resolver import CredentialResolver
from autoflow.services.http_client import HttpClient
from autoflow.utils.timezone import utc_now

logger = logging.getLogger(__name__)


class ExecutionDispatcher:
    """
    Runs registered nodes against resolved credentials.

    Example:
        >>> result = await dispatcher.execute("send-email-gmail", {"to": "a@b.co", "subject": "Hi"}, {}, "user-1")
        >>> result.success
        True
    """

    def __init__(
        self,
        registry: NodeRegistry,
        resolver: CredentialResolver,
        settings: Optional[Settings] = None,
        http_factory: Optional[Callable[[float], HttpClient]] = None,
    ):
        """
        Args:
            registry: Frozen node catalogue
            resolver: Credential resolver shared by all executions
            settings: Settings (defaults to process settings)
            http_factory: Builds the per-execution HTTP client from a timeout
                (tests inject clients backed by httpx.MockTransport)
        """
        self.registry = registry
        self.resolver = resolver
        self.settings = settings or get_settings()
        self.http_factory = http_factory or (lambda timeout: HttpClient(timeout=timeout))

    async def execute(
        self,
        node_id: str,
        config: Optional[Mapping[str, Any]],
        input_data: Any,
        user_id: str,
        timeout: Optional[float] = None,
        previous_outputs: Optional[Mapping[str, Any]] = None,
    ) -> NodeExecutionResult:
        """
        Execute one node.

        Never raises for node failures; they are returned as a failed result.
        """
        execution_id = uuid.uuid4().hex[:12]
        started_at = utc_now()
        timeout = timeout or self.settings.NODE_EXECUTION_TIMEOUT_SECONDS
        node_logger = NodeLogger(node_id, execution_id, user_id)

        if input_data is None:
            input_data = {}

        try:
            outputs = await self._run(node_id, config or {}, input_data, user_id, timeout,
                                      execution_id, node_logger, previous_outputs)
        except AutoflowError as e:
            self._log_failure(node_id, user_id, e)
            return self._result(node_id, execution_id, started_at, node_logger, error=ExecutionFailure.from_error(e))

        completed = self._result(node_id, execution_id, started_at, node_logger, outputs=outputs)
        logger.info(f"✅ Node {node_id} completed in {completed.duration_ms}ms (user {user_id})")
        return completed

    async def _run(
        self,
        node_id: str,
        config: Mapping[str, Any],
        input_data: Any,
        user_id: str,
        timeout: float,
        execution_id: str,
        node_logger: NodeLogger,
        previous_outputs: Optional[Mapping[str, Any]],
    ) -> Any:
        definition = self.registry.require(node_id)

        resolved = resolve_config_templates(dict(config), input_data, previous_outputs)
        resolved = definition.apply_defaults(resolved)

        missing = definition.missing_fields(resolved)
        if missing:
            raise InvalidConfigError(node_id, missing, labels=definition.field_labels())

        http = self.http_factory(timeout)
        context = NodeExecutionContext(
            user_id=user_id,
            node_type=node_id,
            execution_id=execution_id,
            credentials=CredentialLookup(self.resolver, user_id),
            http=http,
            logger=node_logger,
            timeout=timeout,
        )

        logger.info(f"▶️ Executing node {node_id} (execution {execution_id}, user {user_id})")
        try:
            return await asyncio.wait_for(definition.execute(input_data, resolved, context), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ExecutionTimeoutError(timeout, cause=e)
        except AutoflowError:
            raise
        except Exception as e:
            logger.warning(f"Node {node_id} raised {type(e).__name__}: {e}")
            raise ProviderError(str(e) or type(e).__name__, cause=e)
        finally:
            await http.aclose()

    def _log_failure(self, node_id: str, user_id: str, error: AutoflowError) -> None:
        if error.internal:
            logger.error(
                f"❌ Node {node_id} failed for user {user_id}: {type(error).__name__}: {error.message}",
                exc_info=error,
            )
        else:
            logger.info(f"Node {node_id} failed for user {user_id}: {error.error_code.value}: {error.message}")

    def _result(
        self,
        node_id: str,
        execution_id: str,
        started_at,
        node_logger: NodeLogger,
        outputs: Any = None,
        error: Optional[ExecutionFailure] = None,
    ) -> NodeExecutionResult:
        completed_at = utc_now()
        return NodeExecutionResult(
            node_id=node_id,
            execution_id=execution_id,
            success=error is None,
            outputs=outputs,
            error=error,
            logs=list(node_logger.entries),
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
        )
