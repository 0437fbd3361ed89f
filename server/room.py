"""
Room management for multiplayer CardMatch games.

This module handles room creation, player management, and WebSocket
communication for multiplayer game sessions.

A Room contains:
    - A unique alphanumeric code for joining
    - A collection of RoomPlayers (connection-level info)
    - A GameEngine instance with the actual game state
    - A lock that serializes every engine mutation
"""

import asyncio
import random
import string
from dataclasses import dataclass, field
from typing import Optional

from fastapi import WebSocket

from constants import MAX_PLAYERS, ROOM_CODE_LENGTH
from game import GameEngine
from logging_config import get_logger

logger = get_logger(__name__)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class RoomPlayer:
    """
    A player in a game room (lobby-level representation).

    This is separate from game.Player - RoomPlayer tracks room-level info
    like the WebSocket connection and host status, while game.Player
    tracks the hand and turn flags.

    Attributes:
        id: Unique player identifier (the connection id).
        name: Display name.
        websocket: WebSocket connection (None once disconnected).
        is_host: Whether this player may start rounds.
    """

    id: str
    name: str
    websocket: Optional[WebSocket] = None
    is_host: bool = False


@dataclass
class Room:
    """
    A game room/lobby that hosts one CardMatch engine.

    Attributes:
        code: Room code for joining (e.g., "K3X9QZ").
        players: Dict mapping player IDs to RoomPlayer objects.
        engine: The GameEngine holding the rules state.
        game_lock: asyncio.Lock serializing engine mutations.
    """

    code: str
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    engine: Optional[GameEngine] = None
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        if self.engine is None:
            self.engine = GameEngine(room_code=self.code)

    def add_player(
        self,
        player_id: str,
        name: str,
        websocket: Optional[WebSocket] = None,
    ) -> RoomPlayer:
        """
        Add a player to the room and its engine.

        The first player to join becomes the host.

        Raises:
            RoomFull, GameAlreadyStarted: From the engine; the room is
                left unchanged.
        """
        self.engine.add_player(player_id, name, connection=websocket)

        room_player = RoomPlayer(
            id=player_id,
            name=name,
            websocket=websocket,
            is_host=len(self.players) == 0,
        )
        self.players[player_id] = room_player
        return room_player

    def remove_player(self, player_id: str) -> Optional[RoomPlayer]:
        """
        Remove a player from the room.

        Hands the host role to the longest-standing remaining player.

        Returns:
            The removed RoomPlayer, or None if not found.
        """
        if player_id not in self.players:
            return None

        room_player = self.players.pop(player_id)
        self.engine.remove_player(player_id)

        if room_player.is_host and self.players:
            next_host = next(iter(self.players.values()))
            next_host.is_host = True

        return room_player

    def get_player(self, player_id: str) -> Optional[RoomPlayer]:
        return self.players.get(player_id)

    def is_empty(self) -> bool:
        return len(self.players) == 0

    def player_list(self) -> list[dict]:
        """Get list of players for the lobby display."""
        return [
            {"id": p.id, "name": p.name, "is_host": p.is_host}
            for p in self.players.values()
        ]

    async def broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        """
        Send a message to every connected player in the room.

        Args:
            message: JSON-serializable message dict.
            exclude: Optional player ID to skip.
        """
        for player_id, player in self.players.items():
            if player_id != exclude and player.websocket:
                try:
                    await player.websocket.send_json(message)
                except Exception as e:
                    logger.debug(f"Broadcast to {player_id} failed: {e}", extra={"room_code": self.code})

    async def send_to(self, player_id: str, message: dict) -> None:
        """Send a message to a specific player."""
        player = self.players.get(player_id)
        if player and player.websocket:
            try:
                await player.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Send to {player_id} failed: {e}", extra={"room_code": self.code})


class RoomManager:
    """
    Manages all active game rooms.

    Provides room creation with unique codes, lookup, and cleanup.
    A single RoomManager instance is used by the server.
    """

    def __init__(self, max_players: int = MAX_PLAYERS) -> None:
        self.rooms: dict[str, Room] = {}
        self.max_players = max_players

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique room code of ROOM_CODE_LENGTH characters."""
        for _ in range(max_attempts):
            code = "".join(random.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def create_room(self, rng: Optional[random.Random] = None) -> Room:
        """
        Create a new room with a unique code.

        Args:
            rng: Random source for the room's engine (deterministic tests).

        Returns:
            The newly created Room.
        """
        code = self._generate_code()
        engine = GameEngine(room_code=code, max_players=self.max_players)
        if rng is not None:
            engine.rng = rng
        room = Room(code=code, engine=engine)
        self.rooms[code] = room
        logger.info(f"Room created ({len(self.rooms)} active)", extra={"room_code": code})
        return room

    def get_room(self, code: str) -> Optional[Room]:
        """Get a room by its code (case-insensitive)."""
        return self.rooms.get(code.upper())

    def remove_room(self, code: str) -> None:
        if code in self.rooms:
            del self.rooms[code]
            logger.info("Room removed", extra={"room_code": code})

    def find_player_room(self, player_id: str) -> Optional[Room]:
        """
        Find which room a player is in.

        Args:
            player_id: The player ID to search for.

        Returns:
            The Room containing the player, or None.
        """
        for room in self.rooms.values():
            if player_id in room.players:
                return room
        return None

    def stats(self) -> dict:
        """Room counts by engine phase, for health reporting."""
        counts: dict[str, int] = {}
        for room in self.rooms.values():
            phase = room.engine.phase.value
            counts[phase] = counts.get(phase, 0) + 1
        return {
            "rooms": len(self.rooms),
            "players": sum(len(room.players) for room in self.rooms.values()),
            "by_phase": counts,
        }
