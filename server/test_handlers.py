"""
Test suite for WebSocket message handlers.

Tests handler flows and validation using a mock WebSocket and real rooms.

Run with: pytest test_handlers.py -v
"""

import pytest
from unittest.mock import AsyncMock

from game import Card, Color, GamePhase
from logging_config import player_id_var, room_code_var
from room import Room, RoomManager
from handlers import (
    HANDLERS,
    ConnectionContext,
    handle_challenge_card_match,
    handle_create_room,
    handle_draw_card,
    handle_join_room,
    handle_leave_room,
    handle_next_round,
    handle_pass_turn,
    handle_play_card,
    handle_say_card_match,
    handle_start_game,
    personal_state,
)


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


def make_ctx(websocket=None, player_id="test_player", room=None):
    """Create a ConnectionContext with sensible defaults."""
    ws = websocket or MockWebSocket()
    return ConnectionContext(
        websocket=ws,
        connection_id="conn_123",
        player_id=player_id,
        current_room=room,
    )


def make_room_with_game(num_players=2):
    """Create a Room in PLAYING phase with p0 to move and a red 3 on top."""
    room = Room(code="TEST01")
    for i in range(num_players):
        room.add_player(f"p{i}", f"Player {i}", MockWebSocket())

    engine = room.engine
    engine.start_game()
    engine.current_player_index = 0
    engine.direction = 1
    engine.skip_next = False
    engine.draw_count = 0
    engine.wild_draw4_pending = False
    engine.declared_color = None
    engine.deck.discard_pile.append(Card(Color.RED, 3))
    return room


def ctx_for(room, player_id):
    return make_ctx(websocket=room.players[player_id].websocket, player_id=player_id, room=room)


# =============================================================================
# Lobby handlers
# =============================================================================

class TestHandleCreateRoom:

    @pytest.mark.asyncio
    async def test_creates_room(self):
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws)
        rm = RoomManager()

        await handle_create_room({"player_name": "Alice"}, ctx, room_manager=rm)

        assert ctx.current_room is not None
        assert len(rm.rooms) == 1
        created = ws.messages_of_type("room_created")[0]
        assert created["room_code"] == ctx.current_room.code
        assert ctx.current_room.get_player("test_player").is_host
        assert room_code_var.get() == ctx.current_room.code
        assert player_id_var.get() == "test_player"

    @pytest.mark.asyncio
    async def test_already_in_room(self):
        rm = RoomManager()
        room = rm.create_room()
        ws = MockWebSocket()
        room.add_player("test_player", "Alice", ws)
        ctx = make_ctx(websocket=ws)

        await handle_create_room({"player_name": "Alice"}, ctx, room_manager=rm)

        assert len(rm.rooms) == 1
        assert ws.last_message()["code"] == "already_in_room"
        assert ctx.current_room is None

    @pytest.mark.asyncio
    async def test_join_while_seated_elsewhere(self):
        rm = RoomManager()
        first = rm.create_room()
        second = rm.create_room()
        ws = MockWebSocket()
        first.add_player("test_player", "Alice", ws)
        ctx = make_ctx(websocket=ws)

        await handle_join_room({"room_code": second.code}, ctx, room_manager=rm)

        assert ws.last_message()["code"] == "already_in_room"
        assert second.get_player("test_player") is None


class TestHandleJoinRoom:

    @pytest.mark.asyncio
    async def test_join_existing_room(self):
        rm = RoomManager()
        room = rm.create_room()
        room.add_player("host", "Host", MockWebSocket())
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws)

        await handle_join_room({"room_code": room.code.lower(), "player_name": "Bob"}, ctx, room_manager=rm)

        assert ctx.current_room is room
        assert ws.messages_of_type("room_joined")
        assert room_code_var.get() == room.code
        assert len(ws.messages_of_type("player_joined")[0]["players"]) == 2

    @pytest.mark.asyncio
    async def test_room_not_found(self):
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws)

        await handle_join_room({"room_code": "NOPE00"}, ctx, room_manager=RoomManager())

        assert ctx.current_room is None
        assert ws.last_message() == {"type": "error", "code": "room_not_found", "message": "Room not found"}

    @pytest.mark.asyncio
    async def test_room_full(self):
        rm = RoomManager(max_players=2)
        room = rm.create_room()
        room.add_player("a", "A")
        room.add_player("b", "B")
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws)

        await handle_join_room({"room_code": room.code}, ctx, room_manager=rm)

        assert ctx.current_room is None
        assert ws.last_message()["code"] == "room_full"

    @pytest.mark.asyncio
    async def test_game_in_progress(self):
        rm = RoomManager()
        room = rm.create_room()
        room.add_player("a", "A")
        room.add_player("b", "B")
        room.engine.start_game()
        ws = MockWebSocket()
        ctx = make_ctx(websocket=ws)

        await handle_join_room({"room_code": room.code}, ctx, room_manager=rm)

        assert ws.last_message()["code"] == "game_already_started"


class TestHandleStartGame:

    @pytest.mark.asyncio
    async def test_host_starts(self):
        room = Room(code="TEST01")
        ws0, ws1 = MockWebSocket(), MockWebSocket()
        room.add_player("p0", "A", ws0)
        room.add_player("p1", "B", ws1)

        await handle_start_game({}, make_ctx(websocket=ws0, player_id="p0", room=room))

        assert room.engine.phase == GamePhase.PLAYING
        started = ws1.messages_of_type("game_started")[0]["game_state"]
        assert len(started["your_hand"]) == 7
        assert started["players_info"][0]["is_host"]

    @pytest.mark.asyncio
    async def test_non_host_rejected(self):
        room = Room(code="TEST01")
        room.add_player("p0", "A", MockWebSocket())
        ws1 = MockWebSocket()
        room.add_player("p1", "B", ws1)

        await handle_start_game({}, make_ctx(websocket=ws1, player_id="p1", room=room))

        assert room.engine.phase == GamePhase.WAITING
        assert ws1.last_message()["code"] == "not_host"

    @pytest.mark.asyncio
    async def test_not_enough_players(self):
        room = Room(code="TEST01")
        ws = MockWebSocket()
        room.add_player("p0", "A", ws)

        await handle_start_game({}, make_ctx(websocket=ws, player_id="p0", room=room))

        assert ws.last_message()["code"] == "not_enough_players"

    @pytest.mark.asyncio
    async def test_no_room_is_noop(self):
        ws = MockWebSocket()
        await handle_start_game({}, make_ctx(websocket=ws))
        assert ws.messages == []


# =============================================================================
# Turn action handlers
# =============================================================================

class TestHandlePlayCard:

    @pytest.mark.asyncio
    async def test_play_broadcasts(self):
        room = make_room_with_game()
        room.engine.players["p0"].hand = [Card(Color.RED, 5), Card(Color.BLUE, 1), Card(Color.GREEN, 2)]
        broadcast = AsyncMock()

        await handle_play_card({"hand_index": 0}, ctx_for(room, "p0"), broadcast_game_state=broadcast)

        played = room.players["p1"].websocket.messages_of_type("card_played")[0]
        assert played["player_id"] == "p0"
        assert played["card"]["id"] == "red_5"
        assert played["next_player_id"] == "p1"
        broadcast.assert_awaited_once_with(room)

    @pytest.mark.asyncio
    async def test_not_your_turn(self):
        room = make_room_with_game()
        ctx = ctx_for(room, "p1")
        broadcast = AsyncMock()

        await handle_play_card({"hand_index": 0}, ctx, broadcast_game_state=broadcast)

        assert ctx.websocket.last_message()["code"] == "not_your_turn"
        broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_index(self):
        room = make_room_with_game()
        ctx = ctx_for(room, "p0")

        await handle_play_card({"hand_index": "zero"}, ctx, broadcast_game_state=AsyncMock())

        assert ctx.websocket.last_message()["code"] == "invalid_card_play"

    @pytest.mark.asyncio
    async def test_wild_without_color(self):
        room = make_room_with_game()
        room.engine.players["p0"].hand = [Card(None, "wild"), Card(Color.BLUE, 1), Card(Color.GREEN, 2)]
        ctx = ctx_for(room, "p0")

        await handle_play_card({"hand_index": 0}, ctx, broadcast_game_state=AsyncMock())

        assert ctx.websocket.last_message()["code"] == "must_declare_color"
        assert room.engine.players["p0"].hand_size == 3

    @pytest.mark.asyncio
    async def test_wild_with_color(self):
        room = make_room_with_game()
        room.engine.players["p0"].hand = [Card(None, "wild"), Card(Color.BLUE, 1), Card(Color.GREEN, 2)]

        await handle_play_card(
            {"hand_index": 0, "declared_color": "green"},
            ctx_for(room, "p0"),
            broadcast_game_state=AsyncMock(),
        )

        assert room.engine.declared_color == Color.GREEN


class TestHandleDrawAndPass:

    @pytest.mark.asyncio
    async def test_draw(self):
        room = make_room_with_game()
        broadcast = AsyncMock()

        await handle_draw_card({}, ctx_for(room, "p0"), broadcast_game_state=broadcast)

        drawn = room.players["p1"].websocket.messages_of_type("card_drawn")[0]
        own = room.players["p0"].websocket.messages_of_type("card_drawn")[0]
        assert drawn == {
            "type": "card_drawn",
            "player_id": "p0",
            "forced": False,
            "cards_drawn": 1,
            "has_playable_card": drawn["has_playable_card"],
        }
        assert own["cards"] == [room.engine.players["p0"].hand[-1].to_dict()]
        assert own["cards_drawn"] == 1
        assert room.engine.players["p0"].hand_size == 8
        broadcast.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pass_without_draw(self):
        room = make_room_with_game()
        ctx = ctx_for(room, "p0")

        await handle_pass_turn({}, ctx, broadcast_game_state=AsyncMock())

        assert ctx.websocket.last_message()["code"] == "must_draw_before_passing"

    @pytest.mark.asyncio
    async def test_draw_then_pass(self):
        room = make_room_with_game()
        ctx = ctx_for(room, "p0")

        await handle_draw_card({}, ctx, broadcast_game_state=AsyncMock())
        await handle_pass_turn({}, ctx, broadcast_game_state=AsyncMock())

        passed = ctx.websocket.messages_of_type("turn_passed")[0]
        assert passed["next_player_id"] == "p1"
        assert room.engine.get_current_player().id == "p1"


class TestHandleCardMatch:

    @pytest.mark.asyncio
    async def test_say_with_two_cards(self):
        room = make_room_with_game()
        room.engine.players["p1"].hand = [Card(Color.RED, 1), Card(Color.RED, 2)]

        await handle_say_card_match({}, ctx_for(room, "p1"))

        said = room.players["p0"].websocket.messages_of_type("card_match_said")
        assert said == [{"type": "card_match_said", "player_id": "p1"}]

    @pytest.mark.asyncio
    async def test_say_with_wrong_hand_size(self):
        room = make_room_with_game()
        ctx = ctx_for(room, "p1")

        await handle_say_card_match({}, ctx)

        assert ctx.websocket.last_message()["code"] == "card_match_not_allowed"
        assert not room.players["p0"].websocket.messages_of_type("card_match_said")

    @pytest.mark.asyncio
    async def test_valid_challenge(self):
        room = make_room_with_game()
        room.engine.players["p1"].hand = [Card(Color.RED, 1)]
        broadcast = AsyncMock()

        await handle_challenge_card_match({"target_id": "p1"}, ctx_for(room, "p0"), broadcast_game_state=broadcast)

        challenged = room.players["p1"].websocket.messages_of_type("card_match_challenged")[0]
        assert challenged["valid"]
        assert challenged["penalty"] == 2
        broadcast.assert_awaited_once_with(room)

    @pytest.mark.asyncio
    async def test_challenge_unknown_target(self):
        room = make_room_with_game()
        ctx = ctx_for(room, "p0")

        await handle_challenge_card_match({"target_id": "ghost"}, ctx, broadcast_game_state=AsyncMock())

        assert ctx.websocket.last_message()["code"] == "player_not_found"


# =============================================================================
# Round flow / leaving
# =============================================================================

class TestHandleNextRound:

    @pytest.mark.asyncio
    async def test_next_round_deals_again(self):
        room = make_room_with_game()
        room.engine.players["p0"].hand = [Card(Color.RED, 5)]
        room.engine.play_card("p0", 0)
        assert room.engine.phase == GamePhase.FINISHED

        await handle_next_round({}, ctx_for(room, "p0"), broadcast_game_state=AsyncMock())

        assert room.engine.phase == GamePhase.PLAYING
        assert room.engine.round_number == 2
        assert room.players["p1"].websocket.messages_of_type("round_started")

    @pytest.mark.asyncio
    async def test_next_round_while_playing(self):
        room = make_room_with_game()
        ctx = ctx_for(room, "p0")
        broadcast = AsyncMock()

        await handle_next_round({}, ctx, broadcast_game_state=broadcast)

        assert ctx.websocket.last_message()["code"] == "game_already_started"
        assert room.engine.round_number == 1


class TestHandleLeave:

    @pytest.mark.asyncio
    async def test_leave_room(self):
        room = make_room_with_game()
        ctx = ctx_for(room, "p1")
        leave = AsyncMock()
        room_code_var.set(room.code)

        await handle_leave_room({}, ctx, handle_player_leave=leave)

        leave.assert_awaited_once_with(room, "p1")
        assert ctx.current_room is None
        assert room_code_var.get() is None


class TestPersonalState:

    def test_includes_own_hand_only(self):
        room = make_room_with_game()
        state = personal_state(room, "p1")
        assert len(state["your_hand"]) == 7
        assert not state["is_your_turn"]
        assert personal_state(room, "p0")["is_your_turn"]

    def test_dispatch_table(self):
        assert set(HANDLERS) == {
            "create_room", "join_room", "start_game", "play_card", "draw_card",
            "pass_turn", "say_card_match", "challenge_card_match", "next_round",
            "leave_room",
        }
