"""WebSocket message handlers for the CardMatch game.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py.

Every engine call runs under the room's game_lock. Rule violations raised
by the engine (GameError) are reported to the sender only; the engine is
left untouched and the room carries on.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket

from game import GameError, GamePhase
from logging_config import get_logger, player_id_var, room_code_var
from room import Room

logger = get_logger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_id: str
    current_room: Optional[Room] = None


async def send_error(ctx: ConnectionContext, message: str, code: str = "error") -> None:
    await ctx.websocket.send_json({"type": "error", "code": code, "message": message})


async def send_game_error(ctx: ConnectionContext, error: GameError) -> None:
    logger.debug(
        f"Rejected action: {error.code}",
        extra={"player_id": ctx.player_id, "room_code": ctx.current_room.code if ctx.current_room else None},
    )
    await send_error(ctx, error.message, error.code)


def _enter_room(ctx: ConnectionContext, room: Room) -> None:
    ctx.current_room = room
    room_code_var.set(room.code)
    player_id_var.set(ctx.player_id)


async def _require_host(ctx: ConnectionContext, action: str) -> bool:
    room_player = ctx.current_room.get_player(ctx.player_id)
    if not room_player or not room_player.is_host:
        await send_error(ctx, f"Only the host can {action}", "not_host")
        return False
    return True


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_create_room(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    if room_manager.find_player_room(ctx.player_id):
        await send_error(ctx, "Already in a room", "already_in_room")
        return

    player_name = data.get("player_name") or "Player"
    room = room_manager.create_room()
    room.add_player(ctx.player_id, player_name, ctx.websocket)
    _enter_room(ctx, room)

    await ctx.websocket.send_json({
        "type": "room_created",
        "room_code": room.code,
        "player_id": ctx.player_id,
    })

    await room.broadcast({
        "type": "player_joined",
        "players": room.player_list(),
    })


async def handle_join_room(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    if room_manager.find_player_room(ctx.player_id):
        await send_error(ctx, "Already in a room", "already_in_room")
        return

    room_code = data.get("room_code", "").upper()
    player_name = data.get("player_name") or "Player"

    room = room_manager.get_room(room_code)
    if not room:
        await send_error(ctx, "Room not found", "room_not_found")
        return

    async with room.game_lock:
        try:
            room.add_player(ctx.player_id, player_name, ctx.websocket)
        except GameError as e:
            await send_game_error(ctx, e)
            return
    _enter_room(ctx, room)

    await ctx.websocket.send_json({
        "type": "room_joined",
        "room_code": room.code,
        "player_id": ctx.player_id,
    })

    await room.broadcast({
        "type": "player_joined",
        "players": room.player_list(),
    })


async def handle_start_game(data: dict, ctx: ConnectionContext, **kw) -> None:
    if not ctx.current_room:
        return
    if not await _require_host(ctx, "start the game"):
        return

    room = ctx.current_room
    async with room.game_lock:
        try:
            room.engine.start_game()
        except GameError as e:
            await send_game_error(ctx, e)
            return

        await _send_personal_states(room, "game_started")


async def handle_next_round(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    """Reopen a finished room for another round and deal it straight away."""
    if not ctx.current_room:
        return
    if not await _require_host(ctx, "start the next round"):
        return

    room = ctx.current_room
    async with room.game_lock:
        try:
            room.engine.start_next_round()
            room.engine.start_game()
        except GameError as e:
            await send_game_error(ctx, e)
            await broadcast_game_state(room)
            return

        await _send_personal_states(room, "round_started")


async def _send_personal_states(room: Room, message_type: str) -> None:
    for pid in list(room.players):
        await room.send_to(pid, {
            "type": message_type,
            "game_state": personal_state(room, pid),
        })


def personal_state(room: Room, player_id: str) -> dict:
    """Engine projection plus the recipient's own hand."""
    state = room.engine.get_state()
    player = room.engine.get_player(player_id)
    state["your_hand"] = player.hand_to_dict() if player else []
    state["is_your_turn"] = (
        room.engine.phase == GamePhase.PLAYING
        and state["current_player_id"] == player_id
    )
    state["players_info"] = room.player_list()
    return state


# ---------------------------------------------------------------------------
# Turn action handlers
# ---------------------------------------------------------------------------

async def handle_play_card(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    if not ctx.current_room:
        return

    hand_index = data.get("hand_index")
    if not isinstance(hand_index, int) or isinstance(hand_index, bool):
        hand_index = -1
    declared_color = data.get("declared_color")

    room = ctx.current_room
    async with room.game_lock:
        try:
            result = room.engine.play_card(ctx.player_id, hand_index, declared_color)
        except GameError as e:
            await send_game_error(ctx, e)
            return

        await room.broadcast({
            "type": "card_played",
            "player_id": ctx.player_id,
            **result.to_dict(),
        })
        await broadcast_game_state(room)


async def handle_draw_card(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    if not ctx.current_room:
        return

    room = ctx.current_room
    async with room.game_lock:
        try:
            result = room.engine.draw_card(ctx.player_id)
        except GameError as e:
            await send_game_error(ctx, e)
            return

        drawn = {"type": "card_drawn", "player_id": ctx.player_id, **result.to_dict()}
        await room.broadcast(drawn, exclude=ctx.player_id)
        await room.send_to(ctx.player_id, {**drawn, "cards": [card.to_dict() for card in result.cards]})
        await broadcast_game_state(room)


async def handle_pass_turn(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    if not ctx.current_room:
        return

    room = ctx.current_room
    async with room.game_lock:
        try:
            result = room.engine.pass_turn(ctx.player_id)
        except GameError as e:
            await send_game_error(ctx, e)
            return

        await room.broadcast({
            "type": "turn_passed",
            "player_id": ctx.player_id,
            **result.to_dict(),
        })
        await broadcast_game_state(room)


async def handle_say_card_match(data: dict, ctx: ConnectionContext, **kw) -> None:
    if not ctx.current_room:
        return

    room = ctx.current_room
    async with room.game_lock:
        try:
            declared = room.engine.say_card_match(ctx.player_id)
        except GameError as e:
            await send_game_error(ctx, e)
            return

    if not declared:
        await send_error(ctx, "Can only call card match with two cards", "card_match_not_allowed")
        return

    await room.broadcast({
        "type": "card_match_said",
        "player_id": ctx.player_id,
    })


async def handle_challenge_card_match(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    if not ctx.current_room:
        return

    target_id = data.get("target_id", "")
    room = ctx.current_room
    async with room.game_lock:
        try:
            result = room.engine.challenge_card_match(ctx.player_id, target_id)
        except GameError as e:
            await send_game_error(ctx, e)
            return

        await room.broadcast({
            "type": "card_match_challenged",
            "challenger_id": ctx.player_id,
            "target_id": target_id,
            **result.to_dict(),
        })
        if result.valid:
            await broadcast_game_state(room)


# ---------------------------------------------------------------------------
# Leave handlers
# ---------------------------------------------------------------------------

async def handle_leave_room(data: dict, ctx: ConnectionContext, *, handle_player_leave, **kw) -> None:
    if ctx.current_room:
        await handle_player_leave(ctx.current_room, ctx.player_id)
        ctx.current_room = None
        room_code_var.set(None)


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "create_room": handle_create_room,
    "join_room": handle_join_room,
    "start_game": handle_start_game,
    "play_card": handle_play_card,
    "draw_card": handle_draw_card,
    "pass_turn": handle_pass_turn,
    "say_card_match": handle_say_card_match,
    "challenge_card_match": handle_challenge_card_match,
    "next_round": handle_next_round,
    "leave_room": handle_leave_room,
}
