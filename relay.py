import asyncio
import uuid
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, Optional

from constants import OUTBOUND_QUEUE_SIZE
from logging_config import get_logger
from registry import RoomRegistry
from schemas.messages import (
    ClientMessage,
    ExistingPeersEvent,
    JoinMessage,
    PeerInfo,
    PeerJoinedEvent,
    PeerLeftEvent,
    RelayedSignal,
    ServerMessage,
    SignalMessage,
    parse_client_message,
)

logger = get_logger(__name__)

SendText = Callable[[str], Awaitable[None]]


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


class Peer:
    """A live connection as seen by the relay.

    Outbound frames go through a bounded queue drained by the peer's own
    writer task, so a receiver that stops reading only ever stalls itself.
    """

    def __init__(self, connection_id: str, send_text: SendText, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.connection_id = connection_id
        self.state = ConnectionState.CONNECTED
        self._send_text = send_text
        self.outbound: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None

    def start(self):
        self._writer = asyncio.create_task(self._write_loop())

    async def _write_loop(self):
        while True:
            text = await self.outbound.get()
            try:
                await self._send_text(text)
            except Exception as e:
                logger.warning(f"Failed to send to {self.connection_id}: {e}")
            finally:
                self.outbound.task_done()

    def enqueue(self, message: ServerMessage) -> bool:
        """Queue a frame without waiting. Returns False if it was dropped."""
        try:
            self.outbound.put_nowait(message.to_json())
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for {self.connection_id}, dropping {message.type}")
            return False
        return True

    async def drain(self):
        """Wait until every queued frame has been handed to the transport."""
        await self.outbound.join()

    async def stop(self):
        if self._writer is None:
            return
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass
        self._writer = None

    def __repr__(self):
        return f"Peer({self.connection_id!r}, {self.state.value})"


class RelayHandler:
    """Routes signaling messages between connections.

    Room membership lives in the registry; the handler only keeps the table of
    live connections so that messages can be addressed by connection id.
    Must be used from a running event loop.
    """

    def __init__(self, registry: RoomRegistry, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.registry = registry
        self.queue_size = queue_size
        # Format: {connection_id: Peer}
        self.peers: Dict[str, Peer] = {}

    def connect(self, send_text: SendText, connection_id: Optional[str] = None) -> Peer:
        connection_id = connection_id or str(uuid.uuid4())
        peer = Peer(connection_id, send_text, queue_size=self.queue_size)
        peer.start()
        self.peers[connection_id] = peer
        logger.info(f"Connection {connection_id} opened ({len(self.peers)} connected)")
        return peer

    async def handle_text(self, peer: Peer, data: str):
        """Validate one inbound frame and dispatch it. Malformed frames are ignored."""
        try:
            message = parse_client_message(data)
        except ValueError as e:
            logger.warning(f"Ignoring malformed message from {peer.connection_id}")
            logger.debug(f"Malformed message from {peer.connection_id}: {e}")
            return
        await self.dispatch(peer, message)

    async def dispatch(self, peer: Peer, message: ClientMessage):
        if peer.state is ConnectionState.DISCONNECTED:
            logger.debug(f"Dropping {message.type} from disconnected {peer.connection_id}")
            return
        if isinstance(message, JoinMessage):
            self._join(peer, message)
        elif isinstance(message, SignalMessage):
            self._relay(peer, message)

    def _join(self, peer: Peer, message: JoinMessage):
        if peer.state is not ConnectionState.CONNECTED:
            session = self.registry.get(peer.connection_id)
            logger.warning(
                f"Ignoring join to {message.room_id} from {peer.connection_id}, "
                f"already in room {session.room_id if session else None}"
            )
            return

        session = self.registry.join(peer.connection_id, message.room_id, message.display_name)
        peer.state = ConnectionState.JOINED
        others = self.registry.list_others(session.room_id, peer.connection_id)
        logger.info(f"{session.display_name} ({peer.connection_id}) joined room {session.room_id}")

        peer.enqueue(
            ExistingPeersEvent(
                peers=[PeerInfo(connection_id=o.connection_id, display_name=o.display_name) for o in others]
            )
        )
        self._broadcast(
            (other.connection_id for other in others),
            PeerJoinedEvent(connection_id=peer.connection_id, display_name=session.display_name),
        )

    def _relay(self, peer: Peer, message: SignalMessage):
        if peer.state is not ConnectionState.JOINED:
            logger.warning(f"Ignoring {message.type} from {peer.connection_id}, not joined to a room")
            return

        target = self.peers.get(message.target_id)
        if target is None:
            logger.debug(f"Dropping {message.type} from {peer.connection_id}: target {message.target_id} not connected")
            return

        logger.debug(f"Relaying {message.type} {peer.connection_id} -> {message.target_id}")
        target.enqueue(RelayedSignal(type=message.type, from_id=peer.connection_id, payload=message.raw_payload))

    async def disconnect(self, peer: Peer):
        if peer.state is ConnectionState.DISCONNECTED:
            return
        peer.state = ConnectionState.DISCONNECTED
        self.peers.pop(peer.connection_id, None)

        session = self.registry.leave(peer.connection_id)
        logger.info(f"Connection {peer.connection_id} closed ({len(self.peers)} connected)")
        if session is not None:
            remaining = self.registry.members(session.room_id)
            logger.info(
                f"{session.display_name} ({peer.connection_id}) left room {session.room_id}, {len(remaining)} remaining"
            )
            self._broadcast(
                (member.connection_id for member in remaining),
                PeerLeftEvent(connection_id=peer.connection_id),
            )

        await peer.stop()

    def _broadcast(self, connection_ids: Iterable[str], message: ServerMessage):
        targets = [self.peers[conn_id] for conn_id in connection_ids if conn_id in self.peers]
        queued = sum(target.enqueue(message) for target in targets)
        if targets:
            logger.debug(f"Queued {message.type} for {queued}/{len(targets)} connections")

    async def drain(self):
        """Wait for every live connection's outbound queue to empty."""
        await asyncio.gather(*(peer.drain() for peer in list(self.peers.values())))
