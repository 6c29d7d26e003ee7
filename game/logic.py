"""Game state, line evaluation and the move validator/applier.

Every transition is a pure function: it takes a GameState and returns a new
one. Boards are tuples, so an accepted move rebuilds only the sub-board it
touched and shares the other eight with the previous state.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import NamedTuple, Optional, Tuple

from . import errors
from .errors import InvariantViolation
from .settings import Config

log = logging.getLogger(__name__)

WIN_LINES = (
    (0,1,2),(3,4,5),(6,7,8),
    (0,3,6),(1,4,7),(2,5,8),
    (0,4,8),(2,4,6),
)

PLAYERS = ('X', 'O')
DRAW    = 'D'

INIT, PLAYING, PAUSED, OVER = 'init', 'playing', 'paused', 'over'
PHASES = (INIT, PLAYING, PAUSED, OVER)

EMPTY_BOARD  = (None,) * 9
EMPTY_BOARDS = (EMPTY_BOARD,) * 9

# Notices for sound/animation collaborators
N_MOVE, N_BOARD_WON, N_BOARD_DRAWN = 'move', 'board_won', 'board_drawn'
N_GAME_OVER, N_CONFETTI = 'game_over', 'confetti'


def opponent(player):
    return 'O' if player == 'X' else 'X'


def evaluate_line(cells):
    """Winner of a 3x3 grid: 'X', 'O', 'D' (full, no line) or None (open).

    Works for sub-board cells and for the meta-board of statuses alike: a
    'D' entry fills a square but never completes a line.
    """
    for a, b, c in WIN_LINES:
        if cells[a] in PLAYERS and cells[a] == cells[b] == cells[c]:
            return cells[a]
    if all(cells):
        return DRAW
    return None


def empty_cells(board):
    return [i for i, v in enumerate(board) if v is None]


class Move(NamedTuple):
    board:  int
    cell:   int
    player: str


@dataclass(frozen=True)
class GameState:
    boards:         Tuple[tuple, ...] = EMPTY_BOARDS
    statuses:       tuple = (None,) * 9
    current_player: str = 'X'
    constraint:     Optional[int] = None
    phase:          str = INIT
    winner:         Optional[str] = None
    history:        Tuple[Move, ...] = ()
    cursor:         int = -1
    limit:          int = Config.time_limit
    remaining:      int = Config.time_limit
    config:         Config = field(default_factory=Config)

    @classmethod
    def new(cls, config=None):
        config = config or Config()
        return cls(limit=config.time_limit, remaining=config.time_limit, config=config)

    def legal_boards(self):
        if self.constraint is not None and self.statuses[self.constraint] is None:
            return [self.constraint]
        return [b for b in range(9) if self.statuses[b] is None]

    def valid_moves(self):
        if self.phase != PLAYING:
            return []
        return [(b, c) for b in self.legal_boards() for c in empty_cells(self.boards[b])]


class MoveOutcome(NamedTuple):
    state:   GameState
    reason:  Optional[str] = None
    notices: tuple = ()

    @property
    def accepted(self):
        return self.reason is None


# ── Validation ────────────────────────────────────────────────────────────────
def validate_move(state, b, c, player=None):
    """First rejection reason for playing cell `c` of board `b`, or None."""
    if not (isinstance(b, int) and isinstance(c, int) and 0 <= b < 9 and 0 <= c < 9):
        return errors.OUT_OF_RANGE
    if state.phase != PLAYING:
        return errors.NOT_PLAYING
    if player is not None and player != state.current_player:
        return errors.NOT_YOUR_TURN
    if state.constraint is not None and b != state.constraint:
        return errors.WRONG_BOARD
    if state.statuses[b] is not None:
        return errors.BOARD_DECIDED
    if state.boards[b][c] is not None:
        return errors.CELL_OCCUPIED
    return None


# ── Placement (shared with history replay) ───────────────────────────────────
def place(state, move):
    """Put `move.player` on the board and derive statuses, constraint, winner.

    No validation and no history bookkeeping; returns (state, notices).
    """
    b, c, p = move
    board  = state.boards[b][:c] + (p,) + state.boards[b][c+1:]
    boards = state.boards[:b] + (board,) + state.boards[b+1:]

    notices  = [N_MOVE]
    statuses = state.statuses
    if statuses[b] is None:
        result = evaluate_line(board)
        if result is not None:
            statuses = statuses[:b] + (result,) + statuses[b+1:]
            notices.append(N_BOARD_DRAWN if result == DRAW else N_BOARD_WON)

    constraint = c if statuses[c] is None else None

    winner = evaluate_line(statuses)
    phase  = state.phase
    if winner is not None:
        phase = OVER
        notices.append(N_GAME_OVER)
        if winner != DRAW:
            notices.append(N_CONFETTI)

    return replace(state, boards=boards, statuses=statuses, constraint=constraint,
                   winner=winner, phase=phase, current_player=opponent(p)), tuple(notices)


def check_invariants(before, after):
    """Raise InvariantViolation when an accepted move broke the rules."""
    changed = [i for i in range(9) if before.statuses[i] != after.statuses[i]]
    problem = None
    if len(changed) > 1:
        problem = f"{len(changed)} board statuses changed in one move: {changed}"
    elif changed and before.statuses[changed[0]] is not None:
        problem = f"decided board {changed[0]} changed {before.statuses[changed[0]]} -> {after.statuses[changed[0]]}"
    elif after.constraint is not None and after.statuses[after.constraint] is not None:
        problem = f"constraint points at decided board {after.constraint}"
    else:
        meta = [p for p in PLAYERS
                if any(all(after.statuses[i] == p for i in line) for line in WIN_LINES)]
        if len(meta) > 1:
            problem = "both players hold a meta line"
    if problem:
        log.critical("invariant violated: %s", problem)
        raise InvariantViolation(problem)


def attempt_move(state, b, c, player=None):
    """Validate and apply a move for the side to play.

    `player`, when given, is the side the caller owns; a mismatch with
    `current_player` is rejected as not_your_turn. Returns a MoveOutcome whose
    state is the input state unchanged on rejection.
    """
    reason = validate_move(state, b, c, player)
    if reason is not None:
        return MoveOutcome(state, reason)

    move = Move(b, c, state.current_player)
    after, notices = place(state, move)
    check_invariants(state, after)

    history = state.history[:state.cursor + 1] + (move,)
    after = replace(after, history=history, cursor=len(history) - 1,
                    limit=state.config.time_limit, remaining=state.config.time_limit)
    log.debug("%s played board %d cell %d -> constraint %s", move.player, b, c, after.constraint)
    if after.phase == OVER:
        log.info("game over after %d moves, winner %s", len(history), after.winner)
    return MoveOutcome(after, None, notices)


def start(state):
    if state.phase != INIT:
        return state
    return replace(state, phase=PLAYING)

def pause(state):
    return replace(state, phase=PAUSED) if state.phase == PLAYING else state

def resume(state):
    return replace(state, phase=PLAYING) if state.phase == PAUSED else state

def restart(state):
    """Fresh game in the init phase, keeping only the settings."""
    return GameState.new(state.config)
