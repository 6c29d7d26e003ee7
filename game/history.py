"""Linear undo/redo over the recorded moves.

Only (board, cell, player) is stored per move. Stepping back or forward
rebuilds the position by replaying the prefix of the history from an empty
board, so phase, winner, constraint and side to move are always derived from
the replayed statuses rather than carried over.
"""
import logging
from dataclasses import replace

from .logic import EMPTY_BOARDS, OVER, PLAYING, opponent, place

log = logging.getLogger(__name__)


def replay(state, cursor):
    """Position after history[:cursor+1], keeping history, config and timer limit."""
    pos = replace(state, boards=EMPTY_BOARDS, statuses=(None,) * 9, constraint=None,
                  winner=None, phase=PLAYING, current_player='X')
    for move in state.history[:cursor + 1]:
        pos, _ = place(pos, move)
    if cursor >= 0:
        pos = replace(pos, current_player=opponent(state.history[cursor].player))
    limit = state.config.time_limit
    return replace(pos, cursor=cursor, limit=limit, remaining=limit,
                   phase=OVER if pos.winner is not None else PLAYING)


def can_undo(state, enabled=True, when_over=True):
    if not enabled or state.cursor <= 0:
        return False
    return when_over or state.phase != OVER

def can_redo(state, enabled=True):
    return enabled and state.cursor < len(state.history) - 1


def undo(state, enabled=True, when_over=True):
    if not can_undo(state, enabled, when_over):
        return state
    log.debug("undo to move %d", state.cursor - 1)
    return replay(state, state.cursor - 1)

def redo(state, enabled=True):
    if not can_redo(state, enabled):
        return state
    log.debug("redo to move %d", state.cursor + 1)
    return replay(state, state.cursor + 1)
