import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)


class AlreadyJoinedError(ValueError):
    """Raised when a connection that already belongs to a room tries to join again."""

    def __init__(self, connection_id: str, room_id: str):
        super().__init__(f"Connection {connection_id} already joined room {room_id}")
        self.connection_id = connection_id
        self.room_id = room_id


@dataclass(frozen=True)
class Session:
    connection_id: str
    display_name: str
    room_id: str
    joined_at: datetime = field(default_factory=datetime.now)


class RoomRegistry:
    """In-memory room membership, owned by the running application.

    Every method runs under a single lock, so a leave that empties a room and
    a concurrent join to the same room can never lose each other's update.
    """

    def __init__(self):
        # Format: {room_id: {connection_id: Session}}
        self._rooms: Dict[str, Dict[str, Session]] = {}
        # Format: {connection_id: room_id}
        self._memberships: Dict[str, str] = {}
        self._lock = threading.Lock()
        logger.info("Initialized in-memory RoomRegistry")

    def join(self, connection_id: str, room_id: str, display_name: str) -> Session:
        with self._lock:
            current_room = self._memberships.get(connection_id)
            if current_room is not None:
                raise AlreadyJoinedError(connection_id, current_room)

            members = self._rooms.get(room_id)
            if members is None:
                members = self._rooms[room_id] = {}
                logger.info(f"Created room {room_id}")

            session = Session(connection_id=connection_id, display_name=display_name, room_id=room_id)
            members[connection_id] = session
            self._memberships[connection_id] = room_id
            logger.debug(f"Connection {connection_id} joined room {room_id} ({len(members)} members)")
            return session

    def list_others(self, room_id: str, connection_id: str) -> List[Session]:
        """All current members of the room except connection_id."""
        with self._lock:
            members = self._rooms.get(room_id, {})
            return [session for conn_id, session in members.items() if conn_id != connection_id]

    def leave(self, connection_id: str) -> Optional[Session]:
        """Remove the connection from its room, deleting the room if it is now empty.

        Returns the removed session, or None if the connection never joined.
        """
        with self._lock:
            room_id = self._memberships.pop(connection_id, None)
            if room_id is None:
                logger.debug(f"Connection {connection_id} was not in any room")
                return None

            members = self._rooms[room_id]
            session = members.pop(connection_id)
            logger.debug(f"Connection {connection_id} left room {room_id} ({len(members)} members)")
            if not members:
                del self._rooms[room_id]
                logger.info(f"Deleted empty room {room_id}")
            return session

    def members(self, room_id: str) -> List[Session]:
        with self._lock:
            return list(self._rooms.get(room_id, {}).values())

    def get(self, connection_id: str) -> Optional[Session]:
        with self._lock:
            room_id = self._memberships.get(connection_id)
            if room_id is None:
                return None
            return self._rooms[room_id][connection_id]

    def room_ids(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)
