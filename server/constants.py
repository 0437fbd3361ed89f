"""
Rule constants for CardMatch.

This module is the single source of truth for card groupings and the
numbers that shape a round (hand size, penalties, player caps).

Tunable values come from config.py (environment-aware); see config.py for
the variables that override them.

Standard CardMatch Scoring:
    - Number cards (0-9): Face value
    - Special cards (skip, reverse, draw2): 20 points
    - Wild cards (wild, wild_draw4): 50 points
"""

from config import config


# =============================================================================
# Card Groupings
# =============================================================================

NUMBER_VALUES: tuple[int, ...] = tuple(range(10))
SPECIAL_VALUES: tuple[str, ...] = ("skip", "reverse", "draw2")
WILD_VALUES: tuple[str, ...] = ("wild", "wild_draw4")

# Cards that may be played on top of a pending draw obligation
STACKING_VALUES: frozenset[str] = frozenset({"draw2", "wild_draw4"})

# Cards that may forward a pending wild_draw4 when they match the declared color
COUNTER_VALUES: frozenset[str] = frozenset({"skip", "reverse"})

# A hand cannot be emptied with any of these
NON_WINNING_VALUES: frozenset[str] = frozenset(SPECIAL_VALUES + WILD_VALUES)

STANDARD_DECK_SIZE = 108
WILD_DRAW4_COUNT = 4

# The undealt pile must hold at least one card that can open the discard pile
MAX_DEALT_CARDS = STANDARD_DECK_SIZE - WILD_DRAW4_COUNT - 1


# =============================================================================
# Points
# =============================================================================

SPECIAL_CARD_POINTS: int = config.card_points.SPECIAL
WILD_CARD_POINTS: int = config.card_points.WILD


# =============================================================================
# Game Constants
# =============================================================================

MAX_PLAYERS = config.MAX_PLAYERS_PER_ROOM
MIN_PLAYERS = config.MIN_PLAYERS_TO_START
ROOM_CODE_LENGTH = config.ROOM_CODE_LENGTH
HAND_SIZE = config.game_defaults.hand_size
PENALTY_CARDS = config.game_defaults.penalty_cards
CARD_MATCH_HAND_SIZE = 2

# A round in progress ends once fewer than this many players still hold cards
MIN_ACTIVE_PLAYERS = 2
