import os
import random
from dataclasses import replace

import pytest

# The host module reads these at import time.
os.environ['SOCKETIO_ASYNC_MODE'] = 'threading'
os.environ['DATABASE_URL'] = 'sqlite://'

from game import logic
from game.session import GameSession, ManualScheduler
from game.settings import Config


def playing(**fields):
    """A GameState in the playing phase with the given fields replaced."""
    return replace(logic.GameState.new(), **{"phase": logic.PLAYING, **fields})


def with_board(boards, b, cells):
    return boards[:b] + (tuple(cells),) + boards[b+1:]


def play_moves(state, moves):
    for b, c in moves:
        outcome = logic.attempt_move(state, b, c)
        assert outcome.accepted, (b, c, outcome.reason)
        state = outcome.state
    return state


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def make_session(scheduler, rng):
    def make(**kwargs):
        config = Config(**kwargs.pop('config', {}))
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("rng", rng)
        return GameSession(config=config, **kwargs)
    return make


@pytest.fixture
def host(monkeypatch, scheduler):
    import app as host_app
    monkeypatch.setattr(host_app, 'make_scheduler', lambda: scheduler)
    host_app.rooms.clear()
    with host_app.app.app_context():
        host_app.SavedGame.query.delete()
        host_app.db.session.commit()
    yield host_app
    for room_data in host_app.rooms.values():
        for session in room_data["instances"].values():
            session.close()
    host_app.rooms.clear()
