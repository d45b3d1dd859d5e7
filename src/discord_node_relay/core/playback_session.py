"""
Per-guild playback session bound to one audio node.

A session issues playback commands over its node link, mirrors the
player state it knows about, and re-emits node events to application
listeners ("end", "error", "warn", "update").
"""

import asyncio
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from discord_node_relay.infrastructure import setup_logging
from discord_node_relay.infrastructure.exceptions import (
    MigrationError,
    MigrationInProgressError,
    NodeRelayError,
    NotConnectedError,
)
from discord_node_relay.websockets.client.process_messages import create_command_message

from .events import EventEmitter
from .models import EqualizerBand, PlaybackState, VoiceSessionGrant
from .types import (
    EVENT_TRACK_END,
    EVENT_TRACK_EXCEPTION,
    EVENT_TRACK_STUCK,
    EVENT_WEBSOCKET_CLOSED,
    EVT_END,
    EVT_ERROR,
    EVT_UPDATE,
    EVT_WARN,
    MIGRATION_POSITION_OFFSET_MS,
    OP_DESTROY,
    OP_EQUALIZER,
    OP_EVENT,
    OP_PAUSE,
    OP_PLAY,
    OP_PLAYER_UPDATE,
    OP_SEEK,
    OP_STOP,
    OP_VOICE_UPDATE,
    OP_VOLUME,
    TRACK_END_REASON_REPLACED,
)

if TYPE_CHECKING:
    from discord_node_relay.websockets.client import NodeLink

logger = setup_logging(component_name="playback_session")

Band = Union[EqualizerBand, Dict[str, Any]]
Sender = Callable[..., Awaitable[bool]]


def _coerce_bands(bands: Iterable[Band]) -> List[EqualizerBand]:
    return [
        band if isinstance(band, EqualizerBand) else EqualizerBand(band["band"], band["gain"])
        for band in bands
    ]


class PlaybackSession(EventEmitter):
    """
    Logical player for one guild.

    The local state is a cache. Position and time are corrected from the
    node's state syncs; volume and equalizer are updated when the node
    accepts the corresponding command.
    """

    def __init__(self, node: "NodeLink", guild_id: str, channel_id: Optional[str]) -> None:
        """
        Initialize the session.

        Args:
            node: Node link the session is bound to
            guild_id: Guild the session plays in
            channel_id: Voice channel that was joined
        """
        super().__init__()
        self.node = node
        self.guild_id: str = str(guild_id)
        self.channel_id: Optional[str] = str(channel_id) if channel_id is not None else None

        self.state = PlaybackState()
        self.playing: bool = False
        self.paused: bool = False
        self.track: Optional[str] = None
        self.timestamp: Optional[float] = None  # wall clock of the last play command
        self.voice_grant: Optional[VoiceSessionGrant] = None

        self.migrating: bool = False
        self.degraded: bool = False
        self._migration_done: Optional["asyncio.Future[None]"] = None

    def __repr__(self) -> str:
        return (
            f"<PlaybackSession guild={self.guild_id} channel={self.channel_id} "
            f"node={self.node.host} playing={self.playing} paused={self.paused}>"
        )

    @property
    def name(self) -> str:
        return f"guild {self.guild_id}"

    @property
    def estimated_position(self) -> Optional[int]:
        """Last reported position advanced by the time since it was received."""
        if self.state.position is None:
            return None
        if not self.playing or self.paused or self.state.received_at is None:
            return self.state.position
        elapsed_ms = (time.monotonic() - self.state.received_at) * 1000
        return int(self.state.position + elapsed_ms)

    async def _send(self, op: str, **fields: Any) -> bool:
        if self.migrating:
            raise MigrationInProgressError(f"[{self.name}] Session is being migrated")
        return await self._dispatch(op, **fields)

    async def _dispatch(self, op: str, **fields: Any) -> bool:
        if not self.node.connected:
            raise NotConnectedError(
                f"[{self.name}] No available websocket connection for {self.node.name}"
            )

        return await self.node.send(create_command_message(op, self.guild_id, **fields))

    async def play(
        self,
        track: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        no_replace: Optional[bool] = None,
    ) -> bool:
        """
        Play a track on the node.

        Args:
            track: Encoded track identifier
            start_time: Start offset in milliseconds
            end_time: End offset in milliseconds
            no_replace: Ignore the command if a track is already playing

        Returns:
            Whether the node accepted the command
        """
        return await self._play(self._send, track, start_time, end_time, no_replace)

    async def _play(
        self,
        send: Sender,
        track: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        no_replace: Optional[bool] = None,
    ) -> bool:
        fields: Dict[str, Any] = {"track": track}
        if start_time is not None:
            fields["startTime"] = start_time
        if end_time is not None:
            fields["endTime"] = end_time
        if no_replace is not None:
            fields["noReplace"] = no_replace

        sent = await send(OP_PLAY, **fields)
        if sent:
            self.track = track
            self.playing = True
            self.timestamp = time.time()
        return sent

    async def stop(self) -> bool:
        sent = await self._send(OP_STOP)
        if sent:
            self.playing = False
            self.timestamp = None
        return sent

    async def pause(self, pause: bool = True) -> bool:
        sent = await self._send(OP_PAUSE, pause=pause)
        if sent:
            self.paused = pause
        return sent

    async def resume(self) -> bool:
        return await self.pause(False)

    async def set_volume(self, volume: int) -> bool:
        return await self._set_volume(self._send, volume)

    async def _set_volume(self, send: Sender, volume: int) -> bool:
        sent = await send(OP_VOLUME, volume=volume)
        if sent:
            self.state.volume = volume
        return sent

    async def seek(self, position: int) -> bool:
        """Seek to a position in milliseconds; the mirror waits for the next state sync."""
        return await self._send(OP_SEEK, position=position)

    async def set_equalizer(self, bands: Iterable[Band]) -> bool:
        """
        Apply equalizer gains.

        Args:
            bands: EqualizerBand values or {"band", "gain"} dicts
        """
        return await self._set_equalizer(self._send, bands)

    async def _set_equalizer(self, send: Sender, bands: Iterable[Band]) -> bool:
        bands = _coerce_bands(bands)
        sent = await send(OP_EQUALIZER, bands=[band.to_payload() for band in bands])
        if sent:
            self.state.equalizer = bands
        return sent

    async def destroy(self) -> bool:
        """Destroy the player on the node. Local flags are left untouched."""
        return await self._send(OP_DESTROY)

    async def open_voice_session(self, grant: VoiceSessionGrant) -> bool:
        """Hand the joined voice server/state grant to the node."""
        return await self._open_voice_session(self._send, grant)

    async def _open_voice_session(self, send: Sender, grant: VoiceSessionGrant) -> bool:
        self.voice_grant = grant
        return await send(OP_VOICE_UPDATE, **grant.to_payload())

    async def migrate(self, node: "NodeLink") -> "PlaybackSession":
        """
        Move this session to another node, resuming slightly ahead.

        Playback restarts at the last known position plus a fixed offset
        that covers the handshake latency on the new node. Commands issued
        while the move is in progress are rejected.

        Raises:
            MigrationInProgressError: If a migration is already running
            MigrationError: If any step fails; the session is marked degraded
        """
        if self.migrating:
            raise MigrationInProgressError(f"[{self.name}] Session is being migrated")

        track = self.track
        volume = self.state.volume
        equalizer = list(self.state.equalizer)
        position = (self.state.position or 0) + MIGRATION_POSITION_OFFSET_MS
        grant = self.voice_grant
        source = self.node

        logger.info(f"[{self.name}] Migrating from {source.name} to {node.name}")
        self.migrating = True
        self._migration_done = asyncio.get_running_loop().create_future()
        try:
            if source.connected:
                await self._dispatch(OP_DESTROY)
            else:
                logger.warning(f"[{self.name}] {source.name} is down, skipping remote destroy")
            self.node = node
            if grant is not None:
                await self._open_voice_session(self._dispatch, grant)
            await self._set_volume(self._dispatch, volume)
            await self._set_equalizer(self._dispatch, equalizer)
            if track is not None:
                await self._play(self._dispatch, track, start_time=position)
        except NodeRelayError as e:
            self.degraded = True
            logger.error(f"[{self.name}] Migration to {node.name} failed: {e}")
            raise MigrationError(
                f"[{self.name}] Migration from {source.name} to {node.name} failed"
            ) from e
        finally:
            self.migrating = False
            if not self._migration_done.done():
                self._migration_done.set_result(None)
            self._migration_done = None

        self.degraded = False
        logger.info(f"[{self.name}] Migrated to {node.name} at {position}ms")
        return self

    async def wait_for_migration(self) -> None:
        """Wait until an in-flight migration has finished, whether or not it succeeded."""
        while self._migration_done is not None:
            await asyncio.shield(self._migration_done)

    async def handle_node_message(self, op: str, message: Dict[str, Any]) -> None:
        """Route a message the bound node sent for this guild."""
        if op == OP_EVENT:
            await self._on_event(message)
        elif op == OP_PLAYER_UPDATE:
            self._on_player_update(message)
        else:
            logger.debug(f"[{self.name}] Ignoring op {op}")

    async def _on_event(self, data: Dict[str, Any]) -> None:
        event_type = data.get("type")

        if event_type == EVENT_TRACK_END:
            reason = str(data.get("reason") or "")
            if reason.upper() != TRACK_END_REASON_REPLACED:
                self.playing = False
                self.track = None
                self.timestamp = None
            if self.listener_count(EVT_END):
                self.emit(EVT_END, data)

        elif event_type == EVENT_TRACK_EXCEPTION:
            if self.listener_count(EVT_ERROR):
                self.emit(EVT_ERROR, data)

        elif event_type == EVENT_TRACK_STUCK:
            try:
                await self.stop()
            except NodeRelayError as e:
                logger.warning(f"[{self.name}] Could not stop stuck track: {e}")
            if self.listener_count(EVT_END):
                self.emit(EVT_END, data)

        elif event_type == EVENT_WEBSOCKET_CLOSED:
            logger.warning(
                f"[{self.name}] Node voice socket closed: code={data.get('code')} reason={data.get('reason')}"
            )
            if self.listener_count(EVT_ERROR):
                self.emit(EVT_ERROR, data)

        else:
            logger.warning(f"[{self.name}] Unexpected event type: {event_type}")
            if self.listener_count(EVT_WARN):
                self.emit(EVT_WARN, f"Unexpected event type: {event_type}")

    def _on_player_update(self, data: Dict[str, Any]) -> None:
        state = data.get("state")
        if not isinstance(state, dict):
            logger.warning(f"[{self.name}] playerUpdate without state: {data}")
            return

        self.state.sync(state)
        if self.listener_count(EVT_UPDATE):
            self.emit(EVT_UPDATE, self.state)
