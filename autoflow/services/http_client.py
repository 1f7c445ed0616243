"""
HTTP Capability

Outbound HTTP for nodes and the refresh orchestrator. Wraps httpx.AsyncClient
and turns transport outcomes into the execution error taxonomy:

    non-2xx response   -> ProviderError(upstream status, parsed body)
    timeout            -> ExecutionTimeoutError
    connection failure -> ProviderError (no status)
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from autoflow.exceptions import ExecutionTimeoutError, ProviderError

logger = logging.getLogger(__name__)


def parse_body(response: httpx.Response) -> Any:
    """Parse a response body as JSON when possible, else text. Empty -> None."""
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    text = response.text
    stripped = text.lstrip()
    if stripped.startswith("{") or stripped.startswith("["):
        try:
            return json.loads(text)
        except ValueError:
            pass
    return text


def error_message_from_body(body: Any, status_code: int) -> str:
    """Best-effort upstream error message, verbatim."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for key in ("message", "error_description", "detail", "msg"):
            if body.get(key):
                return str(body[key])
        if isinstance(error, str) and error:
            return error
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict) and first.get("message"):
                return str(first["message"])
            return str(first)
    if isinstance(body, str) and body.strip():
        return body.strip()[:500]
    return f"HTTP {status_code}"


class HttpClient:
    """
    Async HTTP capability handed to nodes through the execution context.

    Example:
        >>> async with HttpClient(timeout=10) as http:
        ...     data = await http.get("https://api.example.com/items", headers={"Authorization": "Bearer x"})
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        provider: Optional[str] = None,
    ):
        """
        Args:
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject httpx.MockTransport)
            provider: Provider name attached to raised ProviderErrors
        """
        self.timeout = timeout
        self.provider = provider
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
        files: Any = None,
        content: Optional[bytes] = None,
        auth: Optional[httpx.Auth] = None,
        timeout: Optional[float] = None,
        provider: Optional[str] = None,
    ) -> httpx.Response:
        """
        Send a request and return the raw response after the status check.

        Raises:
            ProviderError: On non-2xx status or transport failure
            ExecutionTimeoutError: On timeout
        """
        provider = provider or self.provider
        kwargs: Dict[str, Any] = {"headers": dict(headers or {}), "params": params}
        if body is not None:
            kwargs["json"] = body
        if data is not None:
            kwargs["data"] = data
        if files is not None:
            kwargs["files"] = files
        if content is not None:
            kwargs["content"] = content
        if auth is not None:
            kwargs["auth"] = auth
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)

        logger.debug(f"{method.upper()} {url}")
        try:
            response = await self.client.request(method.upper(), url, **kwargs)
        except httpx.TimeoutException as e:
            effective = timeout or self.timeout
            logger.warning(f"Request timed out after {effective}s: {method.upper()} {url}")
            raise ExecutionTimeoutError(effective, cause=e)
        except httpx.HTTPError as e:
            logger.warning(f"Request failed: {method.upper()} {url}: {e}")
            raise ProviderError(f"Request failed: {e}", provider=provider, cause=e)

        if not response.is_success:
            parsed = parse_body(response)
            message = error_message_from_body(parsed, response.status_code)
            logger.info(f"{method.upper()} {url} -> {response.status_code}: {message}")
            raise ProviderError(message, upstream_status=response.status_code, body=parsed, provider=provider)

        return response

    async def request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and return the parsed body."""
        response = await self.send(method, url, **kwargs)
        return parse_body(response)

    async def get(self, url: str, **kwargs: Any) -> Any:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, body: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", url, body=body, **kwargs)

    async def put(self, url: str, body: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", url, body=body, **kwargs)

    async def patch(self, url: str, body: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", url, body=body, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", url, **kwargs)
