"""FastAPI WebSocket server for the CardMatch card game."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from game import GamePhase
from handlers import HANDLERS, ConnectionContext, personal_state
from logging_config import connection_id_var, get_logger, setup_logging
from room import Room, RoomManager
from routers.health import router as health_router, set_health_dependencies

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = get_logger(__name__)

room_manager = RoomManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    set_health_dependencies(room_manager=room_manager)
    logger.info(f"CardMatch server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _close_all_websockets()
    logger.info("Shutdown complete")


async def _close_all_websockets():
    """Close all active WebSocket connections gracefully."""
    for room in list(room_manager.rooms.values()):
        for player in room.players.values():
            if player.websocket:
                try:
                    await player.websocket.close(code=1001, reason="Server shutting down")
                except Exception as e:
                    logger.debug(f"Close failed for {player.id}: {e}")
    logger.info("All WebSocket connections closed")


app = FastAPI(
    title="CardMatch",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    connection_id_var.set(connection_id)
    logger.debug("WebSocket connected")

    ctx = ConnectionContext(
        websocket=websocket,
        connection_id=connection_id,
        player_id=connection_id,
    )

    # Shared dependencies passed to every handler
    handler_deps = dict(
        room_manager=room_manager,
        broadcast_game_state=broadcast_game_state,
        handle_player_leave=handle_player_leave,
    )

    try:
        while True:
            data = await websocket.receive_json()
            handler = HANDLERS.get(data.get("type"))
            if handler:
                await handler(data, ctx, **handler_deps)
            else:
                await websocket.send_json({
                    "type": "error",
                    "code": "unknown_message",
                    "message": f"Unknown message type: {data.get('type')}",
                })
    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected")
        if ctx.current_room:
            await handle_player_leave(ctx.current_room, ctx.player_id)


async def broadcast_game_state(room: Room):
    """Send each connected player their own view of the game."""
    engine = room.engine

    for pid in list(room.players):
        await room.send_to(pid, {
            "type": "game_state",
            "game_state": personal_state(room, pid),
        })

        if engine.phase == GamePhase.FINISHED:
            await room.send_to(pid, {
                "type": "game_over",
                "winner_id": engine.winner_id,
                "finishing_order": [entry.to_dict() for entry in engine.finishing_order],
                "scores": dict(engine.scores),
                "round_number": engine.round_number,
            })


async def handle_player_leave(room: Room, player_id: str):
    """Handle a player leaving a room (explicitly or by disconnecting)."""
    room_code = room.code

    async with room.game_lock:
        room_player = room.remove_player(player_id)

        if room.is_empty():
            room_manager.remove_room(room_code)
            return

        if room_player:
            await room.broadcast({
                "type": "player_left",
                "player_id": player_id,
                "player_name": room_player.name,
                "players": room.player_list(),
            })
            if room.engine.phase != GamePhase.WAITING:
                await broadcast_game_state(room)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting CardMatch server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
