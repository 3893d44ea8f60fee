from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router
from registry import RoomRegistry
from relay import RelayHandler
from typing import List, Optional
from constants import ALLOWED_ORIGINS, LOG_FILE, LOG_LEVEL, WS_POLICY_VIOLATION
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def origin_allowed(origin: Optional[str], allowed_origins: List[str]) -> bool:
    # Non-browser clients send no Origin header
    if origin is None or "*" in allowed_origins:
        return True
    return origin in allowed_origins


def create_app(allowed_origins: Optional[List[str]] = None) -> FastAPI:
    allowed_origins = list(ALLOWED_ORIGINS if allowed_origins is None else allowed_origins)

    app = FastAPI(title="Meeting signaling relay")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials="*" not in allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Room state lives exactly as long as this app
    registry = RoomRegistry()
    relay = RelayHandler(registry)
    app.state.registry = registry
    app.state.relay = relay

    app.include_router(rooms_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Signaling socket. One JSON text frame per message, see schemas.messages."""
        origin = websocket.headers.get("origin")
        if not origin_allowed(origin, allowed_origins):
            logger.warning(f"WebSocket connection rejected: origin {origin} not allowed")
            await websocket.close(code=WS_POLICY_VIOLATION, reason="Origin not allowed")
            return

        await websocket.accept()
        peer = relay.connect(websocket.send_text)

        try:
            message_count = 0
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info(f"WebSocket disconnected normally for connection {peer.connection_id}")
                    break

                message_count += 1
                data = message.get("text")
                if data is None:
                    logger.warning(f"Ignoring non-text message #{message_count} from connection {peer.connection_id}")
                    continue
                logger.debug(f"Received message #{message_count} from connection {peer.connection_id}")
                await relay.handle_text(peer, data)
        except Exception as e:
            logger.error(f"Error receiving message from connection {peer.connection_id}: {e}", exc_info=True)
        finally:
            await relay.disconnect(peer)
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")

    logger.info(f"FastAPI application initialized, allowed origins: {allowed_origins}")
    return app


app = create_app()
