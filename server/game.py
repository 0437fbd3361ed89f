"""
Game logic for CardMatch.

This module implements the core game mechanics for CardMatch, a shedding
card game in the UNO family: card/deck management, player hands, turn
order, special-card resolution, the card-match call, finishing order and
round scoring.

CardMatch Rules Summary:
    - Each player is dealt 7 cards; one card opens the discard pile
    - On your turn: play a card matching the top card by color or value,
      or draw one card (then play it or pass)
    - Wild cards can be played on anything and nominate a color
    - draw2 / wild_draw4 stack: the next player must stack another draw
      card or draw the whole pending total
    - A wild_draw4 can be countered by a skip or reverse of the declared
      color, which forwards the pending draw instead of taking it
    - Say "card match" when holding 2 cards, or draw 2 when you reach 1
    - You cannot go out on an action or wild card
    - Players finish one by one; the last player left is the loser
    - The first finisher scores the points left in everyone else's hand

Turn order is a list of active player ids. Finished and disconnected
players are spliced out of it; the current index is corrected so the
turn lands on the next player in the current direction.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Union

from constants import (
    CARD_MATCH_HAND_SIZE,
    COUNTER_VALUES,
    HAND_SIZE,
    MAX_DEALT_CARDS,
    MAX_PLAYERS,
    MIN_ACTIVE_PLAYERS,
    MIN_PLAYERS,
    NON_WINNING_VALUES,
    NUMBER_VALUES,
    PENALTY_CARDS,
    SPECIAL_CARD_POINTS,
    SPECIAL_VALUES,
    STACKING_VALUES,
    WILD_CARD_POINTS,
    WILD_VALUES,
)
from logging_config import get_logger

logger = get_logger(__name__)


class Color(str, Enum):
    """Card colors."""

    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"


class CardType(str, Enum):
    """Card categories, which decide scoring and legality shortcuts."""

    NUMBER = "number"
    SPECIAL = "special"
    WILD = "wild"


class Direction(int, Enum):
    CLOCKWISE = 1
    COUNTERCLOCKWISE = -1


class GamePhase(Enum):
    """
    Lifecycle of a CardMatch room.

    Flow: WAITING -> STARTING -> PLAYING -> FINISHED
    start_next_round() takes FINISHED back to WAITING.
    """

    WAITING = "waiting"      # Lobby, accepting players
    STARTING = "starting"    # Dealing (transient)
    PLAYING = "playing"      # Turns in progress
    FINISHED = "finished"    # Round over, scores updated


# =============================================================================
# Errors
# =============================================================================

class GameError(Exception):
    """
    Base class for recoverable rule violations.

    Every guard raises before touching state, so a caller can report the
    error and carry on with the same engine.

    Attributes:
        code: Stable identifier the transport sends to clients.
        message: Human-readable explanation.
    """

    code = "game_error"
    default_message = "Invalid game action"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class PlayerNotFound(GameError):
    code = "player_not_found"
    default_message = "Player not found"


class RoomFull(GameError):
    code = "room_full"
    default_message = "Room is full"


class GameAlreadyStarted(GameError):
    code = "game_already_started"
    default_message = "Game already in progress"


class GameNotInProgress(GameError):
    code = "game_not_in_progress"
    default_message = "Game not in progress"


class NotEnoughPlayers(GameError):
    code = "not_enough_players"
    default_message = f"Need at least {MIN_PLAYERS} players to start"


class NotYourTurn(GameError):
    code = "not_your_turn"
    default_message = "Not your turn"


class InvalidCardPlay(GameError):
    code = "invalid_card_play"
    default_message = "Invalid card play"


class MustDeclareColor(InvalidCardPlay):
    code = "must_declare_color"
    default_message = "Must declare a color for wild card"


class MustDrawOrStack(GameError):
    code = "must_draw_or_stack"
    default_message = "Must draw cards or play a draw card"


class AlreadyDrewThisTurn(GameError):
    code = "already_drew"
    default_message = "Already drew a card this turn"


class MustDrawBeforePassing(GameError):
    code = "must_draw_before_passing"
    default_message = "Must draw a card before passing turn"


# =============================================================================
# Cards
# =============================================================================

CardValue = Union[int, str]


@dataclass(frozen=True)
class Card:
    """
    An immutable CardMatch card.

    For number cards value is 0-9; for special cards it is "skip",
    "reverse" or "draw2". Wild cards ("wild", "wild_draw4") have no color.
    The category is derived from the value.

    Attributes:
        color: Card color, or None for wild cards. Plain strings are
            accepted and converted to Color.
        value: Face value.
        card_type: NUMBER, SPECIAL or WILD.
    """

    color: Optional[Color]
    value: CardValue
    card_type: CardType = field(init=False)

    def __post_init__(self) -> None:
        if self.value in WILD_VALUES:
            card_type = CardType.WILD
        elif self.value in SPECIAL_VALUES:
            card_type = CardType.SPECIAL
        elif isinstance(self.value, int) and self.value in NUMBER_VALUES:
            card_type = CardType.NUMBER
        else:
            raise ValueError(f"Invalid card value: {self.value!r}")

        if card_type == CardType.WILD:
            if self.color is not None:
                raise ValueError("Wild cards must have color=None")
        else:
            if self.color is None:
                raise ValueError("Non-wild cards must have a color")
            object.__setattr__(self, "color", Color(self.color))

        object.__setattr__(self, "card_type", card_type)

    @property
    def id(self) -> str:
        if self.color is None:
            return str(self.value)
        return f"{self.color.value}_{self.value}"

    @property
    def is_wild(self) -> bool:
        return self.card_type == CardType.WILD

    @property
    def is_stacking(self) -> bool:
        """Whether this card can be played onto a pending draw."""
        return self.value in STACKING_VALUES

    @property
    def can_win_with(self) -> bool:
        """Whether a hand may be emptied by playing this card."""
        return self.value not in NON_WINNING_VALUES

    def can_play_on(self, top_card: Optional["Card"], declared_color: Optional[Color] = None) -> bool:
        """
        Check whether this card may be played on top of another.

        Args:
            top_card: Current top of the discard pile.
            declared_color: Color nominated by the last wild, if any.

        Returns:
            True if the play is legal by color/value.
        """
        if self.is_wild:
            return True
        if top_card is None:
            return True

        if top_card.is_wild and declared_color is not None:
            return self.color == declared_color

        return self.color == top_card.color or self.value == top_card.value

    def points(self) -> int:
        """Get end-of-round point value."""
        if self.card_type == CardType.NUMBER:
            return int(self.value)
        if self.card_type == CardType.SPECIAL:
            return SPECIAL_CARD_POINTS
        return WILD_CARD_POINTS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "color": self.color.value if self.color else None,
            "value": self.value,
            "type": self.card_type.value,
        }

    def __str__(self) -> str:
        return self.id


def create_standard_cards() -> list[Card]:
    """
    Build an unshuffled 108-card deck.

    - 4 colors x (one 0 + two each of 1-9): 76 number cards
    - 4 colors x two each of skip, reverse, draw2: 24 special cards
    - 4 wild + 4 wild_draw4: 8 wild cards
    """
    cards: list[Card] = []

    for color in Color:
        cards.append(Card(color, 0))
        for number in NUMBER_VALUES[1:]:
            cards.append(Card(color, number))
            cards.append(Card(color, number))
        for special in SPECIAL_VALUES:
            cards.append(Card(color, special))
            cards.append(Card(color, special))

    for _ in range(4):
        cards.append(Card(None, "wild"))
        cards.append(Card(None, "wild_draw4"))

    return cards


class Deck:
    """
    Draw pile plus discard pile.

    The top of each pile is the end of its list. When the draw pile runs
    dry, everything under the top discard is shuffled back in.

    Randomness comes from an injectable random.Random so tests and replays
    can be made deterministic.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
    ) -> None:
        """
        Initialize and shuffle a standard deck.

        Args:
            rng: Random source shared with the engine. Takes precedence
                over seed.
            seed: Seed for a private random source when rng is not given.
        """
        self.rng: random.Random = rng if rng is not None else random.Random(seed)
        self.cards: list[Card] = create_standard_cards()
        self.discard_pile: list[Card] = []
        self.shuffle()

    def shuffle(self) -> None:
        """Uniformly permute the draw pile (Fisher-Yates)."""
        self.rng.shuffle(self.cards)

    def draw_card(self) -> Optional[Card]:
        """
        Draw the top card, recovering from the discard pile if needed.

        Returns:
            The drawn Card, or None if both piles are exhausted.
        """
        if not self.cards:
            self._reshuffle_discard_pile()
        if self.cards:
            return self.cards.pop()
        return None

    def draw_cards(self, count: int) -> list[Card]:
        """
        Draw up to `count` cards.

        Returns fewer than requested when the deck is exhausted.
        """
        drawn: list[Card] = []
        for _ in range(count):
            card = self.draw_card()
            if card is None:
                break
            drawn.append(card)
        return drawn

    def _reshuffle_discard_pile(self) -> bool:
        """
        Move all but the top discard back into the draw pile and shuffle.

        Returns:
            True if any cards were recovered.
        """
        if len(self.discard_pile) <= 1:
            logger.warning("Cannot reshuffle - not enough cards in discard pile")
            return False

        top_card = self.discard_pile[-1]
        self.cards.extend(self.discard_pile[:-1])
        self.discard_pile = [top_card]
        self.shuffle()
        return True

    def put_on_bottom(self, card: Card) -> None:
        """Return a card to the bottom of the draw pile."""
        self.cards.insert(0, card)

    def add_to_discard(self, card: Card) -> None:
        self.discard_pile.append(card)

    def pop_discard(self) -> Optional[Card]:
        """Take back the top discard (used to undo a play)."""
        if self.discard_pile:
            return self.discard_pile.pop()
        return None

    def top_card(self) -> Optional[Card]:
        if self.discard_pile:
            return self.discard_pile[-1]
        return None

    def cards_remaining(self) -> int:
        """Return the number of cards left in the draw pile."""
        return len(self.cards)


# =============================================================================
# Players
# =============================================================================

@dataclass
class Player:
    """
    A player in a CardMatch round.

    Hand order is significant: moves refer to cards by hand index.

    Attributes:
        id: Unique identifier for the player.
        name: Display name.
        connection: Transport handle owned by the session layer (opaque here).
        hand: Cards held, in dealt/drawn order.
        has_drawn_card: Whether the player drew during the current turn.
        declared_card_match: Latched by say_card_match at two cards and
            consumed when the hand next drops from two cards to one.
        called_at_one: The player reached one card on an honoured call;
            cleared as soon as the hand grows again.
    """

    id: str
    name: str
    connection: Any = field(default=None, repr=False, compare=False)
    hand: list[Card] = field(default_factory=list)
    has_drawn_card: bool = False
    declared_card_match: bool = False
    called_at_one: bool = False

    @property
    def hand_size(self) -> int:
        return len(self.hand)

    def add_cards(self, cards: list[Card]) -> None:
        """Add cards to the end of the hand."""
        self.hand.extend(cards)
        if cards:
            self.called_at_one = False

    def remove_card(self, index: int) -> Optional[Card]:
        """
        Remove and return the card at a hand position.

        Returns:
            The card, or None if the index is out of range.
        """
        if 0 <= index < len(self.hand):
            return self.hand.pop(index)
        return None

    def can_play_card(self, index: int, top_card: Optional[Card], declared_color: Optional[Color] = None) -> bool:
        if not (0 <= index < len(self.hand)):
            return False
        return self.hand[index].can_play_on(top_card, declared_color)

    def has_playable_card(self, top_card: Optional[Card], declared_color: Optional[Color] = None) -> bool:
        return any(card.can_play_on(top_card, declared_color) for card in self.hand)

    def score(self) -> int:
        """Sum of point values left in hand."""
        return sum(card.points() for card in self.hand)

    def reset(self) -> None:
        """Clear hand and turn-scoped flags for a new round."""
        self.hand = []
        self.has_drawn_card = False
        self.declared_card_match = False
        self.called_at_one = False

    def hand_to_dict(self) -> list[dict]:
        return [card.to_dict() for card in self.hand]


# =============================================================================
# Results
# =============================================================================

@dataclass
class FinishEntry:
    """A slot in the finishing order (position 1 is the round winner)."""

    player_id: str
    name: str
    position: int
    is_loser: bool = False

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "position": self.position,
            "is_loser": self.is_loser,
        }


@dataclass
class PlayResult:
    """
    Outcome of play_card.

    invalid_win is an in-band outcome, not an error: the play was rolled
    back and two penalty cards were drawn.
    """

    card: Card
    declared_color: Optional[Color] = None
    game_ended: bool = False
    invalid_win: bool = False
    card_match_penalty: bool = False
    player_finished: Optional[str] = None
    finishing_order: list[FinishEntry] = field(default_factory=list)
    remaining_players: Optional[int] = None
    winner_id: Optional[str] = None
    next_player_id: Optional[str] = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "card": self.card.to_dict(),
            "declared_color": self.declared_color.value if self.declared_color else None,
            "game_ended": self.game_ended,
            "invalid_win": self.invalid_win,
            "card_match_penalty": self.card_match_penalty,
            "player_finished": self.player_finished,
            "finishing_order": [entry.to_dict() for entry in self.finishing_order],
            "remaining_players": self.remaining_players,
            "winner_id": self.winner_id,
            "next_player_id": self.next_player_id,
            "message": self.message,
        }


@dataclass
class DrawResult:
    """
    Outcome of draw_card.

    forced draws take the whole pending total; voluntary draws take one
    card (cards_drawn is 0 if the deck is exhausted). The drawn cards are
    private to the drawer and left out of to_dict().
    """

    forced: bool
    cards_drawn: int
    has_playable_card: bool
    cards: list[Card] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        return {
            "forced": self.forced,
            "cards_drawn": self.cards_drawn,
            "has_playable_card": self.has_playable_card,
        }


@dataclass
class PassResult:
    next_player_id: Optional[str]

    def to_dict(self) -> dict:
        return {"next_player_id": self.next_player_id}


@dataclass
class ChallengeResult:
    valid: bool
    penalty: int = 0

    def to_dict(self) -> dict:
        return {"valid": self.valid, "penalty": self.penalty}


# =============================================================================
# Engine
# =============================================================================

@dataclass
class GameEngine:
    """
    Main game state and rules controller for one CardMatch room.

    Every command validates all of its guards before mutating anything, so
    a raised GameError leaves the engine exactly as it was. Methods are
    synchronous; callers serialize access per room.

    Attributes:
        room_code: Room this engine belongs to (used for logging).
        max_players: Registry capacity.
        rng: Random source for shuffles and the opening wild's color.
        players: Registry of player id -> Player, in join order.
        turn_order: Ids of players still taking turns.
        current_player_index: Index into turn_order.
        direction: +1 clockwise, -1 counter-clockwise.
        declared_color: Color nominated by the top wild, if any.
        draw_count: Pending draw obligation from stacked draw cards.
        wild_draw4_pending: Last draw card played was a wild_draw4 that
            has not been answered yet (enables skip/reverse counters).
        skip_next: The next turn advance skips one player.
        active_players: Ids still holding cards this round.
        finishing_order: Players in the order they went out.
        winner_id: First finisher once the round is over.
        phase: Lifecycle phase.
        scores: Cumulative score per player id, kept across rounds.
        round_number: 1-indexed round counter.
    """

    room_code: str = ""
    max_players: int = MAX_PLAYERS
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)
    players: dict[str, Player] = field(default_factory=dict)
    turn_order: list[str] = field(default_factory=list)
    current_player_index: int = 0
    direction: int = Direction.CLOCKWISE
    deck: Optional[Deck] = None
    declared_color: Optional[Color] = None
    draw_count: int = 0
    wild_draw4_pending: bool = False
    skip_next: bool = False
    active_players: set[str] = field(default_factory=set)
    finishing_order: list[FinishEntry] = field(default_factory=list)
    winner_id: Optional[str] = None
    phase: GamePhase = GamePhase.WAITING
    scores: dict[str, int] = field(default_factory=dict)
    round_number: int = 1

    def __post_init__(self) -> None:
        if HAND_SIZE * self.max_players > MAX_DEALT_CARDS:
            raise ValueError(
                f"{self.max_players} players x {HAND_SIZE} cards leaves too few cards "
                f"to open the discard pile (at most {MAX_DEALT_CARDS} may be dealt)"
            )
        self._log = logger.with_context(room_code=self.room_code)

    # -------------------------------------------------------------------------
    # Player Management
    # -------------------------------------------------------------------------

    def add_player(self, player_id: str, name: str, connection: Any = None) -> Player:
        """
        Add a player to the room.

        Args:
            player_id: Unique identifier for the player.
            name: Display name.
            connection: Opaque transport handle.

        Returns:
            The new Player (or the existing one if the id already joined).

        Raises:
            GameAlreadyStarted: The room is not accepting players.
            RoomFull: The registry is at capacity.
        """
        if self.phase != GamePhase.WAITING:
            raise GameAlreadyStarted()

        existing = self.players.get(player_id)
        if existing is not None:
            return existing

        if len(self.players) >= self.max_players:
            raise RoomFull()

        player = Player(id=player_id, name=name, connection=connection)
        self.players[player_id] = player
        self.turn_order.append(player_id)
        self.scores.setdefault(player_id, 0)

        self._log.info(f"Player {name} joined ({len(self.players)}/{self.max_players})", extra={"player_id": player_id})
        return player

    def remove_player(self, player_id: str) -> bool:
        """
        Remove a player (disconnect or leave).

        No finishing entry is recorded. If a round in progress drops below
        two active players it is wound up: the remaining player is placed
        in the finishing order and scoring runs as for a normal finish.

        Returns:
            True if the player was registered.
        """
        player = self.players.pop(player_id, None)
        if player is None:
            return False

        self.active_players.discard(player_id)
        if player_id in self.turn_order:
            self._remove_from_turn_order(player_id)

        self._log.info(f"Player {player.name} left", extra={"player_id": player_id})

        if self.phase == GamePhase.PLAYING and len(self.active_players) < MIN_ACTIVE_PLAYERS:
            self._log.info("Not enough active players, ending round")
            self._end_round()

        return True

    def get_player(self, player_id: str) -> Optional[Player]:
        return self.players.get(player_id)

    def get_current_player(self) -> Optional[Player]:
        """Get the player whose turn it currently is."""
        if not self.turn_order:
            return None
        return self.players.get(self.turn_order[self.current_player_index])

    def get_player_hand(self, player_id: str) -> list[Card]:
        player = self.players.get(player_id)
        return list(player.hand) if player else []

    def _require_player(self, player_id: str) -> Player:
        player = self.players.get(player_id)
        if player is None:
            raise PlayerNotFound()
        return player

    def _require_turn(self, player_id: str) -> Player:
        """Guard shared by every turn action."""
        player = self._require_player(player_id)
        if self.phase != GamePhase.PLAYING:
            raise GameNotInProgress()
        current = self.get_current_player()
        if current is None or current.id != player_id:
            raise NotYourTurn()
        return player

    # -------------------------------------------------------------------------
    # Game Lifecycle
    # -------------------------------------------------------------------------

    def start_game(self) -> None:
        """
        Deal a new round.

        Creates a fresh deck, deals to every player in turn order, opens
        the discard pile (never on a wild_draw4) and applies the opening
        card's effect before the first turn, without advancing the turn.

        Raises:
            GameAlreadyStarted: Not in WAITING.
            NotEnoughPlayers: Fewer than two players registered.
        """
        if self.phase != GamePhase.WAITING:
            raise GameAlreadyStarted()
        if len(self.players) < MIN_PLAYERS:
            raise NotEnoughPlayers()

        self.phase = GamePhase.STARTING

        self.finishing_order = []
        self.active_players = set(self.turn_order)
        self.winner_id = None

        for player in self.players.values():
            player.reset()

        self.deck = Deck(rng=self.rng)

        for player_id in self.turn_order:
            self.players[player_id].add_cards(self.deck.draw_cards(HAND_SIZE))

        # wild_draw4 can never open a round
        first_card = self.deck.draw_card()
        while first_card is not None and first_card.value == "wild_draw4":
            self.deck.put_on_bottom(first_card)
            first_card = self.deck.draw_card()
        self.deck.add_to_discard(first_card)

        self.current_player_index = 0
        self.direction = Direction.CLOCKWISE
        self.skip_next = False
        self.draw_count = 0
        self.wild_draw4_pending = False
        self.declared_color = None

        if first_card.value == "wild":
            self.declared_color = self.rng.choice(list(Color))

        self.phase = GamePhase.PLAYING
        self._resolve_special(first_card, countering=False)

        self._log.info(
            f"Round {self.round_number} started with {len(self.turn_order)} players, "
            f"opening card {first_card}"
        )

    def start_next_round(self) -> None:
        """
        Reopen the room after a finished round.

        Players stay registered and cumulative scores are kept; the room
        returns to WAITING so new players may join before start_game().

        Raises:
            GameAlreadyStarted: The current round has not finished.
        """
        if self.phase != GamePhase.FINISHED:
            raise GameAlreadyStarted("Round still in progress")

        for player in self.players.values():
            player.reset()

        self.turn_order = list(self.players)
        self.current_player_index = 0
        self.active_players = set()
        self.draw_count = 0
        self.wild_draw4_pending = False
        self.skip_next = False
        self.declared_color = None
        self.deck = None
        self.round_number += 1
        self.phase = GamePhase.WAITING

    # -------------------------------------------------------------------------
    # Turn Actions
    # -------------------------------------------------------------------------

    def play_card(
        self,
        player_id: str,
        hand_index: int,
        declared_color: Optional[Union[Color, str]] = None,
    ) -> PlayResult:
        """
        Play the card at a hand position.

        Args:
            player_id: ID of the acting player.
            hand_index: Position of the card in the player's hand.
            declared_color: Color nominated for a wild card (ignored otherwise).

        Returns:
            PlayResult describing the outcome, including an in-band
            invalid_win when the last card was an action or wild card.

        Raises:
            PlayerNotFound, GameNotInProgress, NotYourTurn: Turn guards.
            InvalidCardPlay: No such card, or it does not match the top card.
            MustDrawOrStack: A draw is pending and the card neither stacks
                nor counters.
            MustDeclareColor: Wild card without a valid color.
        """
        player = self._require_turn(player_id)

        if not (0 <= hand_index < player.hand_size):
            raise InvalidCardPlay("No card at that position")

        card = player.hand[hand_index]
        if not card.can_play_on(self.deck.top_card(), self.declared_color):
            raise InvalidCardPlay()

        countering = self._is_counter(card)
        if self.draw_count > 0 and not (card.is_stacking or countering):
            raise MustDrawOrStack()

        new_color = self._parse_declared_color(declared_color) if card.is_wild else None

        previous_color = self.declared_color
        previous_has_drawn = player.has_drawn_card

        player.remove_card(hand_index)
        self.deck.add_to_discard(card)
        self.declared_color = new_color
        player.has_drawn_card = False

        card_match_penalty = False
        if player.hand_size == 1:
            if player.declared_card_match:
                player.declared_card_match = False
                player.called_at_one = True
            else:
                player.add_cards(self.deck.draw_cards(PENALTY_CARDS))
                card_match_penalty = True
                self._log.info(f"{player.name} did not call card match, drew penalty", extra={"player_id": player_id})

        if player.hand_size == 0:
            if not card.can_win_with:
                # Undo the play before drawing so a reshuffle keeps the real top card
                self.deck.pop_discard()
                self.declared_color = previous_color
                player.has_drawn_card = previous_has_drawn
                player.add_cards([card])
                player.add_cards(self.deck.draw_cards(PENALTY_CARDS))
                self._log.info(f"{player.name} tried to go out on {card}", extra={"player_id": player_id})
                return PlayResult(
                    card=card,
                    invalid_win=True,
                    message="Cannot win with action cards! Draw 2 penalty cards.",
                )
            return self._finish_player(player, card)

        self._resolve_special(card, countering)
        self._next_turn()

        return PlayResult(
            card=card,
            declared_color=new_color,
            card_match_penalty=card_match_penalty,
            next_player_id=self._current_player_id(),
        )

    def draw_card(self, player_id: str) -> DrawResult:
        """
        Draw for the current player.

        With a pending draw the whole total is taken at once (forced draw).
        Otherwise exactly one card is drawn, once per turn. The turn does
        not advance either way: the player may play or must pass.

        Returns:
            DrawResult with the number drawn and whether a drawn card is
            playable.

        Raises:
            PlayerNotFound, GameNotInProgress, NotYourTurn: Turn guards.
            AlreadyDrewThisTurn: Voluntary draw already taken.
        """
        player = self._require_turn(player_id)

        if self.draw_count > 0:
            cards = self.deck.draw_cards(self.draw_count)
            player.add_cards(cards)
            self._log.debug(
                f"{player.name} took forced draw of {len(cards)}/{self.draw_count}",
                extra={"player_id": player_id},
            )
            self.draw_count = 0
            self.wild_draw4_pending = False
            player.has_drawn_card = True
            top = self.deck.top_card()
            return DrawResult(
                forced=True,
                cards_drawn=len(cards),
                has_playable_card=any(c.can_play_on(top, self.declared_color) for c in cards),
                cards=cards,
            )

        if player.has_drawn_card:
            raise AlreadyDrewThisTurn()

        card = self.deck.draw_card()
        player.has_drawn_card = True
        if card is None:
            return DrawResult(forced=False, cards_drawn=0, has_playable_card=False)

        player.add_cards([card])
        return DrawResult(
            forced=False,
            cards_drawn=1,
            has_playable_card=card.can_play_on(self.deck.top_card(), self.declared_color),
            cards=[card],
        )

    def pass_turn(self, player_id: str) -> PassResult:
        """
        End the turn after drawing.

        Raises:
            MustDrawBeforePassing: The player has not drawn this turn.
        """
        player = self._require_turn(player_id)
        if not player.has_drawn_card:
            raise MustDrawBeforePassing()

        player.has_drawn_card = False
        self._next_turn()
        return PassResult(next_player_id=self._current_player_id())

    def say_card_match(self, player_id: str) -> bool:
        """
        Declare card match (allowed only while holding exactly two cards).

        Returns:
            True if the declaration was latched.
        """
        player = self._require_player(player_id)
        if player.hand_size == CARD_MATCH_HAND_SIZE:
            player.declared_card_match = True
            return True
        return False

    def challenge_card_match(self, challenger_id: str, challenged_id: str) -> ChallengeResult:
        """
        Challenge a player sitting on one card without having declared.

        A valid challenge makes the challenged player draw the penalty;
        an invalid one changes nothing.

        Raises:
            PlayerNotFound: Either player is unknown.
        """
        self._require_player(challenger_id)
        challenged = self._require_player(challenged_id)

        if (
            self.phase == GamePhase.PLAYING
            and challenged.hand_size == 1
            and not challenged.called_at_one
        ):
            penalty_cards = self.deck.draw_cards(PENALTY_CARDS)
            challenged.add_cards(penalty_cards)
            self._log.info(
                f"Card match challenge against {challenged.name} succeeded",
                extra={"player_id": challenger_id},
            )
            return ChallengeResult(valid=True, penalty=len(penalty_cards))

        return ChallengeResult(valid=False, penalty=0)

    # -------------------------------------------------------------------------
    # Special Cards (Internal)
    # -------------------------------------------------------------------------

    def _is_counter(self, card: Card) -> bool:
        """A skip/reverse of the declared color answering a wild_draw4."""
        return (
            self.wild_draw4_pending
            and self.draw_count > 0
            and self.declared_color is not None
            and card.value in COUNTER_VALUES
            and card.color == self.declared_color
        )

    def _parse_declared_color(self, declared_color: Optional[Union[Color, str]]) -> Color:
        if declared_color is None:
            raise MustDeclareColor()
        try:
            return Color(declared_color)
        except ValueError:
            raise MustDeclareColor(f"Unknown color: {declared_color!r}") from None

    def _effect_skip(self, countering: bool) -> None:
        # As a counter the pending draw is forwarded past the skipped player
        self.skip_next = True
        self.wild_draw4_pending = False

    def _effect_reverse(self, countering: bool) -> None:
        self.direction = -self.direction
        self.wild_draw4_pending = False
        if not countering and len(self.turn_order) == 2:
            self.skip_next = True

    def _effect_draw2(self, countering: bool) -> None:
        self.draw_count += 2

    def _effect_wild_draw4(self, countering: bool) -> None:
        self.draw_count += 4
        self.wild_draw4_pending = True

    def _effect_plain(self, countering: bool) -> None:
        self.wild_draw4_pending = False

    _SPECIAL_EFFECTS: ClassVar[dict[CardValue, Callable[["GameEngine", bool], None]]] = {
        "skip": _effect_skip,
        "reverse": _effect_reverse,
        "draw2": _effect_draw2,
        "wild_draw4": _effect_wild_draw4,
    }

    def _resolve_special(self, card: Card, countering: bool) -> None:
        effect = self._SPECIAL_EFFECTS.get(card.value, GameEngine._effect_plain)
        effect(self, countering)

    # -------------------------------------------------------------------------
    # Turn & Round Flow (Internal)
    # -------------------------------------------------------------------------

    def _current_player_id(self) -> Optional[str]:
        current = self.get_current_player()
        return current.id if current else None

    def _step(self) -> None:
        self.current_player_index = (self.current_player_index + self.direction) % len(self.turn_order)

    def _next_turn(self) -> None:
        """Advance one player in the current direction, plus one if skipping."""
        if not self.turn_order:
            return
        self._step()
        if self.skip_next:
            self.skip_next = False
            self._step()

    def _remove_from_turn_order(self, player_id: str) -> None:
        """
        Splice a player out of the turn order and fix the current index.

        If the removed player held the turn, it passes to whoever is next
        in the current direction.
        """
        index = self.turn_order.index(player_id)
        self.turn_order.pop(index)

        if not self.turn_order:
            self.current_player_index = 0
            return

        if index < self.current_player_index:
            self.current_player_index -= 1
        elif index == self.current_player_index and self.direction == Direction.COUNTERCLOCKWISE:
            self.current_player_index = index - 1

        self.current_player_index %= len(self.turn_order)

    def _finish_player(self, player: Player, card: Card) -> PlayResult:
        """Record a legal finish and end the round if one player is left."""
        self.finishing_order.append(FinishEntry(
            player_id=player.id,
            name=player.name,
            position=len(self.finishing_order) + 1,
        ))
        self.active_players.discard(player.id)
        self._remove_from_turn_order(player.id)

        self._log.info(
            f"{player.name} finished in position {len(self.finishing_order)}",
            extra={"player_id": player.id},
        )

        if len(self.active_players) <= 1:
            self._end_round()
            return PlayResult(
                card=card,
                game_ended=True,
                player_finished=player.id,
                finishing_order=list(self.finishing_order),
                remaining_players=len(self.active_players),
                winner_id=self.winner_id,
            )

        return PlayResult(
            card=card,
            player_finished=player.id,
            finishing_order=list(self.finishing_order),
            remaining_players=len(self.active_players),
            next_player_id=self._current_player_id(),
        )

    def _end_round(self) -> None:
        """
        Close the round: place any remaining player, pick the winner, score.

        The last active player is normally the loser. When a disconnect
        leaves a sole survivor before anybody finished, that player takes
        position 1 instead.
        """
        for player_id in [pid for pid in self.turn_order if pid in self.active_players]:
            player = self.players[player_id]
            self.finishing_order.append(FinishEntry(
                player_id=player.id,
                name=player.name,
                position=len(self.finishing_order) + 1,
                is_loser=bool(self.finishing_order),
            ))

        self.winner_id = self.finishing_order[0].player_id if self.finishing_order else None
        self.phase = GamePhase.FINISHED
        self._calculate_scores()

        self._log.info(f"Round {self.round_number} over, winner={self.winner_id}")

    def _calculate_scores(self) -> None:
        """Winner banks the points left in every other player's hand."""
        if self.winner_id is None:
            return

        round_points = sum(
            player.score()
            for player_id, player in self.players.items()
            if player_id != self.winner_id
        )
        self.scores[self.winner_id] = self.scores.get(self.winner_id, 0) + round_points

    # -------------------------------------------------------------------------
    # State Queries
    # -------------------------------------------------------------------------

    def discard_top(self) -> Optional[Card]:
        """Get the top card of the discard pile (if any)."""
        return self.deck.top_card() if self.deck else None

    def get_state(self) -> dict:
        """
        Public snapshot of the room for broadcasting.

        Contains no private hands; the session layer adds the recipient's
        own hand via get_player_hand().
        """
        current = self.get_current_player()
        finished_ids = {entry.player_id for entry in self.finishing_order}
        top = self.discard_top()

        return {
            "room_code": self.room_code,
            "phase": self.phase.value,
            "round_number": self.round_number,
            "players": [
                {
                    "id": player.id,
                    "name": player.name,
                    "hand_size": player.hand_size,
                    "score": self.scores.get(player.id, 0),
                    "is_finished": player.id in finished_ids,
                }
                for player in self.players.values()
            ],
            "turn_order": list(self.turn_order),
            "current_player_id": current.id if current else None,
            "current_player_index": self.current_player_index,
            "current_player_has_drawn": current.has_drawn_card if current else False,
            "direction": int(self.direction),
            "draw_count": self.draw_count,
            "wild_draw4_pending": self.wild_draw4_pending,
            "top_card": top.to_dict() if top else None,
            "declared_color": self.declared_color.value if self.declared_color else None,
            "finishing_order": [entry.to_dict() for entry in self.finishing_order],
            "winner_id": self.winner_id,
            "active_players": [pid for pid in self.turn_order if pid in self.active_players],
            "deck_remaining": self.deck.cards_remaining() if self.deck else 0,
        }
