"""Per-turn countdown and forfeiture.

One countdown per turn, one tick per elapsed second while the game is being
played. When it runs out the turn is forfeited: the other side moves next,
nothing is added to the history and the active board does not change.
"""
import logging
from dataclasses import replace
from typing import NamedTuple

from .logic import PLAYING, GameState, opponent

log = logging.getLogger(__name__)

WARNING_AT = 5

# A forfeiture is not a move, so it does not redirect play.
PRESERVE_CONSTRAINT_ON_FORFEIT = True

N_TICK, N_TIME_WARNING, N_FORFEIT = 'tick', 'time_warning', 'forfeit'


class TickOutcome(NamedTuple):
    state:   GameState
    notices: tuple = ()

    @property
    def forfeited(self):
        return N_FORFEIT in self.notices


def running(state):
    return state.phase == PLAYING and state.config.timer_enabled


def reset(state):
    """Start-of-turn reset. A changed time limit takes effect here."""
    limit = state.config.time_limit
    return replace(state, limit=limit, remaining=limit)


def forfeit(state):
    log.info("%s ran out of time", state.current_player)
    after = reset(replace(state, current_player=opponent(state.current_player)))
    if not PRESERVE_CONSTRAINT_ON_FORFEIT:
        after = replace(after, constraint=None)
    return after


def tick(state):
    if not running(state) or state.remaining <= 0:
        return TickOutcome(state)
    remaining = state.remaining - 1
    if remaining <= 0:
        return TickOutcome(forfeit(state), (N_TICK, N_FORFEIT))
    notices = (N_TICK, N_TIME_WARNING) if remaining <= WARNING_AT else (N_TICK,)
    return TickOutcome(replace(state, remaining=remaining), notices)
