"""GameState <-> plain record (JSON-compatible dict).

The record uses the same camelCase keys that clients receive, so a stored
game and a live `state` message look alike.
"""
from .errors import ValidationError
from .logic import DRAW, PHASES, PLAYERS, GameState, Move
from .settings import config_from_record

_CELL_VALUES   = (None,) + PLAYERS
_STATUS_VALUES = (None, DRAW) + PLAYERS


def to_record(state):
    return {
        'boards':      [list(b) for b in state.boards],
        'winners':     list(state.statuses),
        'player':      state.current_player,
        'forced':      state.constraint,
        'phase':       state.phase,
        'gameWinner':  state.winner,
        'moveHistory': [{'board': m.board, 'cell': m.cell, 'player': m.player}
                        for m in state.history],
        'cursor':      state.cursor,
        'timeLimit':   state.limit,
        'remaining':   state.remaining,
        'config':      state.config.to_record(),
    }


def _require(record, key):
    try:
        return record[key]
    except (KeyError, TypeError):
        raise ValidationError('bad_snapshot', f'missing {key}') from None

def _index(value, what, allow_none=False):
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < 9:
        raise ValidationError('bad_snapshot', f'{what} {value!r} is not 0..8')
    return value

def _grid(values, allowed, what):
    if not isinstance(values, (list, tuple)) or len(values) != 9:
        raise ValidationError('bad_snapshot', f'{what} must have 9 entries')
    for v in values:
        if v not in allowed:
            raise ValidationError('bad_snapshot', f'{what} holds {v!r}')
    return tuple(values)


def from_record(record):
    """Rebuild a GameState; raises ValidationError on a malformed record."""
    boards = _require(record, 'boards')
    if not isinstance(boards, (list, tuple)) or len(boards) != 9:
        raise ValidationError('bad_snapshot', 'boards must have 9 entries')
    boards = tuple(_grid(b, _CELL_VALUES, 'board') for b in boards)
    statuses = _grid(_require(record, 'winners'), _STATUS_VALUES, 'winners')

    player = _require(record, 'player')
    if player not in PLAYERS:
        raise ValidationError('bad_snapshot', f'player {player!r}')
    phase = _require(record, 'phase')
    if phase not in PHASES:
        raise ValidationError('bad_snapshot', f'phase {phase!r}')
    winner = record.get('gameWinner')
    if winner not in _STATUS_VALUES:
        raise ValidationError('bad_snapshot', f'gameWinner {winner!r}')

    moves = []
    for m in _require(record, 'moveHistory'):
        try:
            moves.append(Move(_index(m['board'], 'board'), _index(m['cell'], 'cell'), m['player']))
        except (KeyError, TypeError):
            raise ValidationError('bad_snapshot', f'move {m!r}') from None
        if moves[-1].player not in PLAYERS:
            raise ValidationError('bad_snapshot', f'move {m!r}')

    cursor = _require(record, 'cursor')
    if isinstance(cursor, bool) or not isinstance(cursor, int) or not -1 <= cursor < len(moves):
        raise ValidationError('bad_snapshot', f'cursor {cursor!r}')

    config = config_from_record(record.get('config') or {})
    try:
        limit, remaining = int(_require(record, 'timeLimit')), int(_require(record, 'remaining'))
    except (TypeError, ValueError):
        raise ValidationError('bad_snapshot', 'timer fields') from None

    return GameState(boards=boards, statuses=statuses, current_player=player,
                     constraint=_index(record.get('forced'), 'forced', allow_none=True),
                     phase=phase, winner=winner, history=tuple(moves), cursor=cursor,
                     limit=limit, remaining=remaining, config=config)
