"""connection.py

Session management for the tool-serving process under evaluation.

Responsibilities:
- Build the fastmcp transport for the configured kind (stdio / sse / shttp)
- Resolve Azure AD client credentials into a bearer header for HTTP transports
- Open the session with a handshake timeout and record negotiated capabilities
- List tools / resources / prompts (cached for the session's lifetime)
- Call tools with a per-call timeout, mapping failures onto the harness errors
- Tear the session down gracefully, forcing it closed after a grace period
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import anyio
import httpx2
from azure.identity import ClientSecretCredential
from fastmcp import Client
from fastmcp.client.transports import SSETransport, StdioTransport, StreamableHttpTransport
from mcp import MCPError
from mcp.types import CONNECTION_CLOSED, REQUEST_TIMEOUT, CallToolResult, TextContent, Tool

from config import (
    CLIENT_NAME,
    DEFAULT_HANDSHAKE_TIMEOUT_S,
    DEFAULT_STOP_GRACE_S,
    DEFAULT_TIMEOUT_S,
    SHTTP_RECONNECT_ATTEMPTS,
    SHTTP_RECONNECT_DELAY_S,
    logger,
)
from errors import McpConnectionError, ToolExecutionError, ToolTimeoutError
from models import AzureAdAuth, HttpServerConfig, ServerConfig, SseServerConfig, StdioServerConfig
from tool_schema import ToolDescriptor, summarize

# Errors that mean the transport itself is gone, not that one call failed.
_TRANSPORT_ERRORS = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    httpx2.TransportError,
    ConnectionError,
    BrokenPipeError,
)


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    BUSY = "busy"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class SessionInfo:
    server_name: Optional[str]
    server_version: Optional[str]
    transport: str
    protocol_version: Optional[str] = None
    supports_tools: bool = False
    supports_resources: bool = False
    supports_prompts: bool = False


# =========================
# Transport construction
# =========================


def _resolve_auth_headers(auth: Optional[AzureAdAuth]) -> dict[str, str]:
    if auth is None:
        return {}
    credential = ClientSecretCredential(
        tenant_id=auth.tenant_id,
        client_id=auth.client_id,
        client_secret=auth.client_secret,
    )
    token = credential.get_token(auth.scope).token
    return {"Authorization": f"Bearer {token}"}


def build_transport(cfg: ServerConfig):
    if isinstance(cfg, StdioServerConfig):
        return StdioTransport(
            command=cfg.command,
            args=list(cfg.args),
            env=dict(cfg.env) or None,
            cwd=cfg.cwd,
            keep_alive=False,
        )
    if isinstance(cfg, (SseServerConfig, HttpServerConfig)):
        headers = {**cfg.headers, **_resolve_auth_headers(cfg.auth)}
        if isinstance(cfg, SseServerConfig):
            return SSETransport(url=cfg.url, headers=headers)
        return StreamableHttpTransport(url=cfg.url, headers=headers)
    raise ValueError(f"Unsupported server transport: {getattr(cfg, 'transport', cfg)!r}")


def _connect_policy(cfg: ServerConfig) -> tuple[int, float]:
    """(attempts, delay seconds) for opening the session."""
    if isinstance(cfg, SseServerConfig) and cfg.reconnect:
        return 1 + max(0, cfg.max_reconnect_attempts), cfg.reconnect_interval_s
    if isinstance(cfg, HttpServerConfig):
        return SHTTP_RECONNECT_ATTEMPTS, SHTTP_RECONNECT_DELAY_S
    return 1, 0.0


def _extract_payload(result: CallToolResult) -> Any:
    if result.structured_content is not None:
        return result.structured_content
    texts = [block.text for block in result.content if isinstance(block, TextContent)]
    if len(texts) == 1:
        return texts[0]
    if texts:
        return texts
    return [block.model_dump(mode="json", exclude_none=True) for block in result.content]


def _error_text(result: CallToolResult) -> str:
    texts = [block.text for block in result.content if isinstance(block, TextContent)]
    return "\n".join(texts) or "Tool reported an error"


# =========================
# Connection manager
# =========================


class ConnectionManager:
    """Owns exactly one session to the configured server.

    ``client_factory`` builds the fastmcp ``Client``; it defaults to one wired to
    ``build_transport(server_config)`` and exists so tests can connect to an
    in-memory server.
    """

    def __init__(
        self,
        server_config: ServerConfig,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        handshake_timeout_s: float = DEFAULT_HANDSHAKE_TIMEOUT_S,
        stop_grace_s: float = DEFAULT_STOP_GRACE_S,
        max_concurrent_calls: Optional[int] = None,
        client_factory: Optional[Callable[[], Client]] = None,
    ) -> None:
        self.server_config = server_config
        self.timeout_s = timeout_s
        self.handshake_timeout_s = handshake_timeout_s
        self.stop_grace_s = stop_grace_s
        self._client_factory = client_factory or self._default_client

        self._state = ConnectionState.IDLE
        self._in_flight = 0
        self._client: Optional[Client] = None
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[SessionInfo] = None
        self._start_lock = asyncio.Lock()
        self._call_slots = asyncio.Semaphore(max_concurrent_calls) if max_concurrent_calls else None

        self._tools: Optional[list[ToolDescriptor]] = None
        self._resources: Optional[list[Any]] = None
        self._prompts: Optional[list[Any]] = None

    def _default_client(self) -> Client:
        return Client(
            build_transport(self.server_config),
            name=CLIENT_NAME,
            timeout=self.timeout_s,
            init_timeout=self.handshake_timeout_s,
        )

    # ---- state

    @property
    def state(self) -> ConnectionState:
        if self._state is ConnectionState.READY and self._in_flight:
            return ConnectionState.BUSY
        return self._state

    @property
    def session(self) -> Optional[SessionInfo]:
        return self._session

    def _set_state(self, new: ConnectionState) -> None:
        if new is not self._state:
            logger.debug("Connection state %s -> %s", self._state.value, new.value)
        self._state = new

    def _require_ready(self) -> Client:
        if self._state is not ConnectionState.READY or self._client is None:
            raise McpConnectionError(f"Session is not ready (state={self.state.value})")
        return self._client

    def _mark_failed(self, reason: BaseException) -> McpConnectionError:
        logger.error("Transport failure: %s", reason)
        self._set_state(ConnectionState.FAILED)
        return McpConnectionError(f"Transport failure: {reason}")

    # ---- lifecycle

    async def start(self) -> SessionInfo:
        async with self._start_lock:
            if self._state is ConnectionState.READY and self._session is not None:
                return self._session
            if self._state not in (ConnectionState.IDLE, ConnectionState.FAILED):
                raise McpConnectionError(f"Cannot start session in state {self._state.value}")

            attempts, delay_s = _connect_policy(self.server_config)
            last_error: Optional[BaseException] = None
            for attempt in range(1, attempts + 1):
                self._set_state(ConnectionState.CONNECTING)
                try:
                    self._session = await self._open()
                    self._set_state(ConnectionState.READY)
                    logger.info(
                        "Connected to %s %s over %s",
                        self._session.server_name or "server",
                        self._session.server_version or "",
                        self._session.transport,
                    )
                    return self._session
                except asyncio.CancelledError:
                    await self._discard_stack()
                    self._set_state(ConnectionState.FAILED)
                    raise
                except TimeoutError as e:
                    last_error = e
                    logger.warning(
                        "Handshake timed out after %.1fs (attempt %d/%d)",
                        self.handshake_timeout_s, attempt, attempts,
                    )
                except Exception as e:
                    last_error = e
                    logger.warning("Connection attempt %d/%d failed: %s", attempt, attempts, e)
                await self._discard_stack()
                self._set_state(ConnectionState.FAILED)
                if attempt < attempts and delay_s > 0:
                    await asyncio.sleep(delay_s)

            if isinstance(last_error, TimeoutError):
                raise McpConnectionError(
                    f"Handshake timed out after {self.handshake_timeout_s:.1f}s"
                ) from last_error
            raise McpConnectionError(f"Failed to connect to server: {last_error}") from last_error

    async def _open(self) -> SessionInfo:
        client = self._client_factory()
        stack = AsyncExitStack()
        self._client, self._stack = client, stack
        async with asyncio.timeout(self.handshake_timeout_s):
            await stack.enter_async_context(client)

        caps = client.server_capabilities
        info = client.server_info
        return SessionInfo(
            server_name=getattr(info, "name", None),
            server_version=getattr(info, "version", None),
            transport=getattr(self.server_config, "transport", "unknown"),
            protocol_version=client.protocol_version,
            supports_tools=bool(caps and caps.tools is not None),
            supports_resources=bool(caps and caps.resources is not None),
            supports_prompts=bool(caps and caps.prompts is not None),
        )

    async def _discard_stack(self) -> None:
        stack, client = self._stack, self._client
        self._stack, self._client = None, None
        if stack is None:
            return
        try:
            async with asyncio.timeout(self.stop_grace_s):
                await stack.aclose()
        except Exception as e:
            logger.debug("Ignoring error while discarding failed session: %s", e)
            if client is not None:
                await self._force_close(client)

    async def _force_close(self, client: Client) -> None:
        try:
            async with asyncio.timeout(self.stop_grace_s):
                await client.close()
        except Exception as e:
            logger.warning("Forced transport close failed: %s", e)

    async def stop(self) -> None:
        """Close the session. Never raises; problems are logged."""
        if self._state is ConnectionState.STOPPED:
            return
        stack, client = self._stack, self._client
        self._stack, self._client = None, None
        self._tools = self._resources = self._prompts = None
        self._set_state(ConnectionState.STOPPED)
        if stack is None:
            return
        try:
            async with asyncio.timeout(self.stop_grace_s):
                await stack.aclose()
            logger.debug("Session closed")
        except TimeoutError:
            logger.warning("Session did not close within %.1fs; forcing termination", self.stop_grace_s)
            if client is not None:
                await self._force_close(client)
        except Exception as e:
            logger.warning("Error while closing session: %s", e)
            if client is not None:
                await self._force_close(client)

    async def __aenter__(self) -> "ConnectionManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ---- list operations

    async def _list(self, what: str, fetch) -> Any:
        self._require_ready()
        try:
            async with asyncio.timeout(self.timeout_s):
                return await fetch()
        except TimeoutError as e:
            raise McpConnectionError(f"Listing {what} timed out after {self.timeout_s:.1f}s") from e
        except _TRANSPORT_ERRORS as e:
            raise self._mark_failed(e) from e
        except MCPError as e:
            if e.code == CONNECTION_CLOSED:
                raise self._mark_failed(e) from e
            raise McpConnectionError(f"Listing {what} failed: {e.message}") from e

    async def list_tools(self) -> list[ToolDescriptor]:
        if self._tools is not None:
            return list(self._tools)
        client = self._require_ready()
        raw: list[Tool] = await self._list("tools", client.list_tools)
        self._tools = [
            ToolDescriptor.from_json_schema(t.name, t.description, t.input_schema) for t in raw
        ]
        logger.info("Loaded %d MCP tools", len(self._tools))
        for t in self._tools:
            logger.debug("  %s%s", t.name, summarize(t.schema))
        return list(self._tools)

    async def list_resources(self) -> list[Any]:
        if self._resources is None:
            client = self._require_ready()
            if self._session is not None and not self._session.supports_resources:
                logger.debug("Server does not advertise resources")
                self._resources = []
                return []
            self._resources = await self._list("resources", client.list_resources)
        return list(self._resources)

    async def list_prompts(self) -> list[Any]:
        if self._prompts is None:
            client = self._require_ready()
            if self._session is not None and not self._session.supports_prompts:
                logger.debug("Server does not advertise prompts")
                self._prompts = []
                return []
            self._prompts = await self._list("prompts", client.list_prompts)
        return list(self._prompts)

    # ---- tool calls

    async def call_tool(self, name: str, args: dict[str, Any], timeout: Optional[float] = None) -> Any:
        """Invoke ``name`` and return its payload.

        Raises ToolTimeoutError when no response arrives before the deadline,
        ToolExecutionError when the server reports a failure, and
        McpConnectionError when the session is unusable.
        """
        client = self._require_ready()
        deadline = self.timeout_s if timeout is None else timeout

        if self._call_slots is not None:
            async with self._call_slots:
                return await self._call(client, name, args, deadline)
        return await self._call(client, name, args, deadline)

    async def _call(self, client: Client, name: str, args: dict[str, Any], deadline: float) -> Any:
        self._in_flight += 1
        try:
            async with asyncio.timeout(deadline):
                result = await client.call_tool_mcp(name, args, timeout=deadline)
        except (TimeoutError, httpx2.TimeoutException) as e:
            raise ToolTimeoutError(name, deadline) from e
        except _TRANSPORT_ERRORS as e:
            raise self._mark_failed(e) from e
        except MCPError as e:
            if e.code == REQUEST_TIMEOUT:
                raise ToolTimeoutError(name, deadline) from e
            if e.code == CONNECTION_CLOSED:
                raise self._mark_failed(e) from e
            raise ToolExecutionError(name, e.message) from e
        except httpx2.HTTPStatusError as e:
            if not client.is_connected():
                self._set_state(ConnectionState.FAILED)
            raise ToolExecutionError(name, str(e), status_code=e.response.status_code) from e
        except Exception as e:
            if not client.is_connected():
                raise self._mark_failed(e) from e
            raise ToolExecutionError(name, f"{type(e).__name__}: {e}") from e
        finally:
            self._in_flight -= 1

        if result.is_error:
            raise ToolExecutionError(name, _error_text(result))
        return _extract_payload(result)
