"""
Daemon transport for LocalChat.

Talks to the local inference daemon over its Unix domain socket, or over
HTTP when a base URL is configured, and turns every failure into a
``LocalChatError``.
"""

import contextlib
import json
import logging
import os
from typing import Any, AsyncIterator, Dict, Iterator, Optional

import httpx

from .exceptions import (
    LocalChatConnectionError,
    LocalChatPermissionError,
    LocalChatStreamError,
    LocalChatTimeoutError,
    raise_for_status,
)

logger = logging.getLogger(__name__)

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"


def _auth_headers(api_key: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def _require_socket(socket_path: str) -> None:
    """Fail early when the daemon socket is missing or not usable by us."""
    if not os.path.exists(socket_path):
        raise LocalChatConnectionError(
            f"No daemon socket at {socket_path}. Is the daemon running?"
        )
    if not os.access(socket_path, os.R_OK | os.W_OK):
        raise LocalChatPermissionError(f"Cannot read and write daemon socket {socket_path}")


def _error_message(response: httpx.Response) -> str:
    """Extract the daemon's error text; both ``{"error": "..."}`` and
    ``{"error": {"message": "..."}}`` bodies are in use."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message", response.text)
    if isinstance(error, str):
        return error
    return response.text


def _error_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@contextlib.contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except httpx.TimeoutException as e:
        raise LocalChatTimeoutError(f"{action} timed out: {e}") from e
    except httpx.ConnectError as e:
        raise LocalChatConnectionError(f"Failed to connect: {e}") from e
    except httpx.HTTPError as e:
        raise LocalChatConnectionError(f"HTTP error: {e}") from e


def decode_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Decode one line of a streaming response.

    The daemon emits newline-delimited JSON; OpenAI-style endpoints emit SSE
    ``data:`` lines. Returns None for lines that carry no object; the
    caller handles the ``SSE_DONE`` terminator.
    """
    line = line.strip()
    if line.startswith(SSE_PREFIX):
        data = line[len(SSE_PREFIX):]
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Skipping malformed SSE data line: {data!r}")
            return None
    if line.startswith("{"):
        try:
            return json.loads(line)
        except json.JSONDecodeError as e:
            raise LocalChatStreamError(f"Failed to parse JSON: {e}") from e
    return None


class AsyncTransport:
    """
    Async transport for the inference daemon.

    Example:
        >>> async with AsyncTransport(base_url="http://localhost:11434") as transport:
        ...     async for chunk in transport.stream("/api/pull", json_data={"name": "m"}):
        ...         print(chunk)
    """

    DEFAULT_SOCKET_PATH = os.path.expanduser("~/.localchat/run/daemon.sock")
    DEFAULT_HTTP_URL = "http://localhost:11434"
    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        socket_path: Optional[str] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.socket_path = socket_path or self.DEFAULT_SOCKET_PATH
        self.base_url = base_url
        self.timeout = timeout

        if http_transport is None and not base_url:
            _require_socket(self.socket_path)
            http_transport = httpx.AsyncHTTPTransport(uds=self.socket_path)
            base_url = "http://localhost"

        self.client = httpx.AsyncClient(
            transport=http_transport,
            base_url=base_url or self.DEFAULT_HTTP_URL,
            headers=_auth_headers(api_key),
            timeout=timeout,
        )

    async def _request(
        self, method: str, path: str, json_data: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> Dict[str, Any]:
        with _translate_errors("Request"):
            response = await self.client.request(method, path, json=json_data, **kwargs)

        if response.status_code >= 400:
            raise_for_status(response.status_code, _error_message(response), _error_body(response))
        if response.status_code == 204:
            return {}
        return response.json()

    async def _stream(
        self, method: str, path: str, json_data: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> AsyncIterator[Dict[str, Any]]:
        with _translate_errors("Stream"):
            async with self.client.stream(method, path, json=json_data, **kwargs) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise_for_status(response.status_code, _error_message(response))

                async for line in response.aiter_lines():
                    if line.strip() == SSE_PREFIX + SSE_DONE:
                        break
                    chunk = decode_line(line)
                    if chunk is not None:
                        yield chunk

    async def post(
        self, path: str, json_data: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> Dict[str, Any]:
        return await self._request("POST", path, json_data=json_data, **kwargs)

    def stream(
        self, path: str, json_data: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> AsyncIterator[Dict[str, Any]]:
        """POST ``json_data`` and yield each streamed JSON object."""
        return self._stream("POST", path, json_data=json_data, **kwargs)

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "AsyncTransport":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
