from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import HealthResponse, OnlineUser, RoomDetailsResponse
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


@rooms_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    registry = request.app.state.registry
    relay = request.app.state.relay
    return HealthResponse(status="ok", rooms=len(registry), connections=len(relay.peers))


@rooms_router.get("/rooms/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """
    Get the current members of a room.

    Rooms exist only while someone is in them, so an empty or unknown
    room id is a 404.
    """
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room details request for {room_id} from {client_host}")

    members = request.app.state.registry.members(room_id)
    if not members:
        logger.info(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    online_users = [
        OnlineUser(
            connection_id=session.connection_id,
            display_name=session.display_name,
            connected_at=session.joined_at.isoformat(),
        )
        for session in members
    ]
    logger.debug(f"Room details retrieved for {room_id}: {len(online_users)} users online")

    return RoomDetailsResponse(
        room_id=room_id,
        online_users_count=len(online_users),
        online_users=online_users,
    )
