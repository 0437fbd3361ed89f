"""
Test suite for the health endpoints and app wiring.

Run with: pytest test_health.py -v
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from room import RoomManager
from routers.health import router, set_health_dependencies


def make_client(room_manager=None) -> TestClient:
    app = FastAPI()
    app.include_router(router)
    set_health_dependencies(room_manager=room_manager)
    return TestClient(app)


class TestHealth:

    def test_liveness(self):
        response = make_client().get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_not_ready_without_room_manager(self):
        response = make_client().get("/ready")
        assert response.status_code == 503
        assert response.json()["checks"]["rooms"]["status"] == "not_configured"

    def test_ready_with_room_manager(self):
        rm = RoomManager()
        rm.create_room()
        response = make_client(rm).get("/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["rooms"] == {"status": "ok", "active": 1}

    def test_metrics(self):
        rm = RoomManager()
        room = rm.create_room()
        room.add_player("a", "A")
        room.add_player("b", "B")
        room.engine.start_game()

        data = make_client(rm).get("/metrics").json()

        assert data["active_rooms"] == 1
        assert data["total_players"] == 2
        assert data["games_in_progress"] == 1


class TestAppWiring:

    def test_lifespan_registers_room_manager(self):
        from main import app, room_manager

        with TestClient(app) as client:
            response = client.get("/ready")
            assert response.status_code == 200
            assert response.json()["checks"]["rooms"]["active"] == len(room_manager.rooms)

    def test_websocket_round_trip(self):
        from main import app

        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "create_room", "player_name": "Alice"})
                created = ws.receive_json()
                assert created["type"] == "room_created"
                joined = ws.receive_json()
                assert joined["type"] == "player_joined"

                ws.send_json({"type": "bogus"})
                assert ws.receive_json()["code"] == "unknown_message"

                ws.send_json({"type": "leave_room"})


class BrokenWebSocket:
    """WebSocket whose peer has already gone away."""

    async def send_json(self, data: dict):
        raise RuntimeError("Cannot call send once a close message has been sent")


class TestBroadcastGameState:

    @pytest.mark.asyncio
    async def test_dead_socket_does_not_stop_the_others(self):
        from main import broadcast_game_state
        from test_handlers import make_room_with_game

        room = make_room_with_game(3)
        room.players["p0"].websocket = BrokenWebSocket()

        await broadcast_game_state(room)

        for pid in ("p1", "p2"):
            states = room.players[pid].websocket.messages_of_type("game_state")
            assert len(states) == 1
            assert len(states[0]["game_state"]["your_hand"]) == 7

    @pytest.mark.asyncio
    async def test_game_over_reaches_survivors(self):
        from main import broadcast_game_state
        from test_handlers import make_room_with_game

        room = make_room_with_game(2)
        room.players["p0"].websocket = BrokenWebSocket()
        room.engine.remove_player("p0")

        await broadcast_game_state(room)

        over = room.players["p1"].websocket.messages_of_type("game_over")
        assert over[0]["winner_id"] == "p1"
