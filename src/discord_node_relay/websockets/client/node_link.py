"""
Authenticated WebSocket link to a single remote audio node.

This module owns one node connection: the handshake, flat-interval
reconnection, resumable-session negotiation and the demultiplexing of
inbound node messages to the registry and to playback sessions.
"""

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException
from websockets.protocol import State

from discord_node_relay.config.settings import NodeConfig
from discord_node_relay.core.models import NodeStats
from discord_node_relay.core.types import (
    CLIENT_NAME,
    CLOSE_CODE_NORMAL,
    CLOSE_REASON_DESTROY,
    EVT_DISCONNECT,
    EVT_ERROR,
    EVT_RAW,
    EVT_READY,
    EVT_RECONNECTING,
    HEADER_AUTHORIZATION,
    HEADER_CLIENT_NAME,
    HEADER_NUM_SHARDS,
    HEADER_RESUME_KEY,
    HEADER_USER_ID,
    OP_CONFIGURE_RESUMING,
    OP_STATS,
)
from discord_node_relay.infrastructure import setup_logging
from discord_node_relay.infrastructure.exceptions import (
    NodeRelayError,
    ProtocolError,
    TransportError,
)

from .process_messages import parse_node_message

if TYPE_CHECKING:
    from discord_node_relay.core.session_registry import SessionRegistry

logger = setup_logging(component_name="node_link")


class NodeLink:
    """
    One authenticated WebSocket session to one remote audio node.

    Connecting starts as soon as the link is constructed. Any close other
    than the graceful destroy sequence (code 1000, reason "destroy") is
    retried after a fixed interval until destroy() is called. While a retry
    is pending, further retry requests are ignored (first one wins).
    """

    def __init__(
        self,
        registry: "SessionRegistry",
        config: NodeConfig,
        log: Optional[logging.Logger] = None,
    ) -> None:
        """
        Initialize the node link and start connecting.

        Args:
            registry: Owning session registry (user id, shard count, sessions, events)
            config: Node connection settings
            log: Logger instance (defaults to the module logger)

        Must be called with a running event loop.
        """
        self.registry = registry
        self.config: NodeConfig = config
        self.host: str = config.host
        self.port: int = config.port
        self.address: str = config.address
        self.reconnect_interval: float = config.reconnect_interval
        self.logger: logging.Logger = log or logger

        # Connection state
        self.websocket: Optional[ClientConnection] = None
        self.stats: NodeStats = NodeStats()
        self.resume_key: Optional[str] = None

        self._connect_task: Optional[asyncio.Task[None]] = None
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._destroyed: bool = False
        self._ready_event = asyncio.Event()

        self.open()

    def __repr__(self) -> str:
        return (
            f"<NodeLink host={self.host} port={self.port} "
            f"connected={self.connected} load={self.stats.load:.2f}>"
        )

    @property
    def name(self) -> str:
        return f"node {self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        """Whether the socket handle is present and open."""
        return self.websocket is not None and self.websocket.state is State.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def headers(self) -> Dict[str, str]:
        return self._get_connect_headers()

    def _get_connect_headers(self, show_password: bool = True) -> Dict[str, str]:
        headers = {
            HEADER_AUTHORIZATION: self.config.password
            if show_password
            else "*" * len(self.config.password),
            HEADER_NUM_SHARDS: str(self.registry.shard_count or 1),
            HEADER_USER_ID: str(self.registry.user_id),
            HEADER_CLIENT_NAME: CLIENT_NAME,
        }
        if self.resume_key:
            headers[HEADER_RESUME_KEY] = self.resume_key
        return headers

    def open(self) -> Optional["asyncio.Task[None]"]:
        """
        Start connecting to the node.

        Returns:
            The connection task, or None if already connected
        """
        if self.connected:
            return None
        if self._connect_task is not None and not self._connect_task.done():
            return self._connect_task

        self._destroyed = False
        self._connect_task = asyncio.get_running_loop().create_task(self._connect())
        return self._connect_task

    async def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        """Wait until the link has an open connection."""
        await asyncio.wait_for(self._ready_event.wait(), timeout=timeout)

    async def _connect(self) -> None:
        self.logger.info(
            f"[{self.name}] Connecting to {self.address} with headers "
            f"{self._get_connect_headers(show_password=False)}"
        )
        try:
            websocket = await connect(
                self.address,
                additional_headers=self.headers,
                ping_interval=None,  # liveness comes from close codes
                compression=None,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._on_error(e)
            return

        if self._destroyed:
            # destroy() ran while the handshake was in flight
            await websocket.close(code=CLOSE_CODE_NORMAL, reason=CLOSE_REASON_DESTROY)
            return

        self.websocket = websocket
        self._listener_task = asyncio.create_task(self._listen(websocket))
        self._on_open()

        try:
            await self.configure_resuming()
        except TransportError as e:
            # The listener observes the close and schedules the retry
            self.logger.warning(f"[{self.name}] Could not configure resuming: {e}")

    def _on_open(self) -> None:
        self._cancel_reconnect()
        self._ready_event.set()
        self.logger.info(f"[{self.name}] Connected")
        self.registry.emit(EVT_READY, self)

    async def _listen(self, websocket: ClientConnection) -> None:
        """Process frames in delivery order until the socket closes."""
        try:
            async for frame in websocket:
                await self._on_message(frame)
        except ConnectionClosedError as e:
            self.logger.debug(f"[{self.name}] Connection dropped: {e}")
        except Exception as e:
            self.logger.error(
                f"[{self.name}] Error processing node messages: {e}", exc_info=True
            )
            self._on_error(e)
            return

        self._on_close(websocket, websocket.close_code, websocket.close_reason)

    async def _on_message(self, frame: Any) -> None:
        try:
            message = parse_node_message(frame)
        except ProtocolError as e:
            self.logger.warning(f"[{self.name}] Dropping malformed frame: {e}")
            return

        op = message.get("op")
        self.logger.debug(f"[{self.name}] Received {op}: {message}")

        if op == OP_STATS:
            stats = dict(message)
            stats.pop("op", None)
            try:
                self.stats = NodeStats.from_payload(stats)
            except ProtocolError as e:
                self.logger.warning(f"[{self.name}] Dropping malformed stats frame: {e}")
                return
        elif op is None:
            self.logger.warning(f"[{self.name}] Message without op: {message}")

        guild_id = message.get("guildId")
        if guild_id is not None and op is not None:
            await self._dispatch_to_session(str(guild_id), op, message)

        self.registry.emit(EVT_RAW, self, message)

    async def _dispatch_to_session(
        self, guild_id: str, op: str, message: Dict[str, Any]
    ) -> None:
        session = self.registry.sessions.get(guild_id)
        if session is None:
            return
        if session.node is not self:
            self.logger.debug(
                f"[{self.name}] Ignoring {op} for guild {guild_id} bound to {session.node.name}"
            )
            return

        try:
            await session.handle_node_message(op, message)
        except NodeRelayError as e:
            self.logger.warning(
                f"[{self.name}] Guild {guild_id} failed to handle {op}: {e}"
            )

    def _on_error(self, error: BaseException) -> None:
        if self._destroyed:
            self.logger.debug(f"[{self.name}] Error after destroy: {error}")
            return

        self.logger.error(f"[{self.name}] Transport error: {error}")
        self.registry.emit(EVT_ERROR, self, error)
        self._reconnect()

    def _on_close(
        self,
        websocket: ClientConnection,
        code: Optional[int],
        reason: Optional[str],
    ) -> None:
        if self.websocket is not None and websocket is not self.websocket:
            # Superseded by a newer connection
            return

        self._ready_event.clear()
        self.logger.info(f"[{self.name}] Disconnected (code={code}, reason={reason!r})")
        self.registry.emit(EVT_DISCONNECT, self, code, reason)

        if self._is_intentional_close(code, reason):
            self.logger.info(f"[{self.name}] Closed by destroy, not reconnecting")
            return

        self._reconnect()

    def _is_intentional_close(self, code: Optional[int], reason: Optional[str]) -> bool:
        return self._destroyed or (
            code == CLOSE_CODE_NORMAL and reason == CLOSE_REASON_DESTROY
        )

    def _reconnect(self) -> None:
        """Schedule a single reconnect after the configured interval."""
        if self._destroyed:
            return
        if self._reconnect_handle is not None:
            self.logger.debug(f"[{self.name}] Reconnect already scheduled")
            return

        self.logger.info(
            f"[{self.name}] Reconnecting in {self.reconnect_interval:.1f}s"
        )
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            self.reconnect_interval, self._fire_reconnect
        )

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._destroyed:
            return

        if self._listener_task is not None:
            self._listener_task.cancel()
            self._listener_task = None

        stale = self.websocket
        self.websocket = None
        if stale is not None and stale.state is State.OPEN:
            asyncio.create_task(stale.close())

        self.registry.emit(EVT_RECONNECTING, self)
        self.open()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    async def send(self, message: Dict[str, Any]) -> bool:
        """
        Send a command to the node.

        Args:
            message: Command envelope

        Returns:
            True if the frame was written, False if the link is not connected

        Raises:
            TransportError: If the socket fails while sending
        """
        if not self.connected:
            self.logger.debug(f"[{self.name}] Not connected, dropping {message.get('op')}")
            return False

        payload = json.dumps(message)
        try:
            await self.websocket.send(payload)
        except ConnectionClosed as e:
            raise TransportError(f"[{self.name}] Send failed: {e}") from e

        self.logger.debug(f"[{self.name}] Sent {payload}")
        return True

    async def configure_resuming(
        self, key: Optional[str] = None, timeout: Optional[int] = None
    ) -> bool:
        """
        Ask the node to keep sessions alive across a transient disconnect.

        Args:
            key: Resume key presented on the next handshake (defaults to the
                configured key, then the bot user id)
            timeout: Seconds the node keeps sessions while disconnected

        Returns:
            Whether the command was sent
        """
        key = key or self.config.resume_key or str(self.registry.user_id)
        if timeout is None:
            timeout = self.config.resume_timeout

        self.resume_key = key
        return await self.send({"op": OP_CONFIGURE_RESUMING, "key": key, "timeout": timeout})

    async def destroy(self) -> bool:
        """
        Close the link for good.

        Any pending reconnect is cancelled even when the link is already
        disconnected.

        Returns:
            False if the link was not connected
        """
        self._destroyed = True
        self._cancel_reconnect()

        if not self.connected:
            return False

        websocket = self.websocket
        self.websocket = None
        self._ready_event.clear()
        await websocket.close(code=CLOSE_CODE_NORMAL, reason=CLOSE_REASON_DESTROY)
        self.logger.info(f"[{self.name}] Destroyed")
        return True
