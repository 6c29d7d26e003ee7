import json

from game import logic
from game.session import (ACCEPTED, E_FORFEIT, E_MOVE, E_REJECTED, E_RELAY, E_RESTART,
                          E_STATE, E_TIME_WARNING, GameSession, Handle, ManualScheduler)


def collect(session, kinds=None):
    seen = []
    session.events.subscribe(seen.append, kinds)
    return seen


def kinds_of(events):
    return [e.kind for e in events]


class LeakyScheduler(ManualScheduler):
    """Ignores cancellation, so stale callbacks still fire."""

    def call_later(self, delay, fn):
        super().call_later(delay, fn)
        return Handle()


# ── Moves ────────────────────────────────────────────────────────────────────
def test_hot_seat_moves(make_session):
    session = make_session()
    events = collect(session)
    session.start()
    assert session.submit_move(4, 4) == ACCEPTED
    assert session.submit_move(4, 0) == ACCEPTED
    assert session.state.constraint == 0
    assert kinds_of(events).count(E_STATE) == 3
    assert events[-1].payload['moveHistory'][-1] == {'board': 4, 'cell': 0, 'player': 'O'}


def test_rejection_is_reported_and_changes_nothing(make_session):
    session = make_session()
    session.start()
    before = session.state
    events = collect(session)
    result = session.submit_move(9, 0)
    assert not result.accepted
    assert result.reason == 'out_of_range'
    assert session.state is before
    assert kinds_of(events) == [E_REJECTED]
    assert events[0].payload['reason'] == 'out_of_range'


def test_move_before_start(make_session):
    assert make_session().submit_move(0, 0).reason == 'not_playing'


def test_bot_side_is_not_local(make_session, scheduler):
    session = make_session(config={'bot_enabled': True, 'timer_enabled': False})
    session.start()
    session.submit_move(4, 4)
    assert session.submit_move(4, 0).reason == 'not_your_turn'
    assert session.bot_pending


# ── Bot scheduling ───────────────────────────────────────────────────────────
def test_bot_answers_after_its_delay(make_session, scheduler):
    session = make_session(config={'bot_enabled': True, 'timer_enabled': False,
                                   'difficulty': 'hard'})
    session.start()
    session.submit_move(4, 4)
    scheduler.advance(0.5)
    assert len(session.state.history) == 1
    scheduler.advance(0.5)
    assert len(session.state.history) == 2
    assert session.state.history[-1].board == 4
    assert session.state.current_player == 'X'
    assert not session.bot_pending


def test_pause_defers_the_bot(make_session, scheduler):
    session = make_session(config={'bot_enabled': True, 'timer_enabled': False})
    session.start()
    session.submit_move(4, 4)
    session.pause()
    assert not session.bot_pending
    scheduler.advance(10)
    assert len(session.state.history) == 1
    session.resume()
    scheduler.advance(1)
    assert len(session.state.history) == 2


def test_restart_invalidates_late_callbacks(make_session):
    scheduler = LeakyScheduler()
    session = make_session(config={'bot_enabled': True, 'timer_enabled': False},
                           scheduler=scheduler)
    session.start()
    session.submit_move(4, 4)
    events = collect(session)
    session.restart()
    assert session.state.phase == logic.INIT
    assert session.state.config.bot_enabled
    session.start()
    scheduler.advance(5)
    assert session.state.history == ()
    assert session.state.current_player == 'X'
    assert events[0].kind == E_RESTART
    assert events[0].payload == {'epoch': 1}


def test_bot_plays_a_whole_game(make_session, scheduler):
    session = make_session(config={'bot_enabled': True, 'timer_enabled': False,
                                   'difficulty': 'impossible'})
    session.start()
    while session.state.phase == logic.PLAYING:
        b, c = session.state.valid_moves()[0]
        session.submit_move(b, c)
        scheduler.advance(1)
    assert session.state.phase == logic.OVER
    assert session.state.winner in ('X', 'O', 'D')
    assert not session.bot_pending


# ── Timer ─────────────────────────────────────────────────────────────────────
def test_timer_forfeits_the_turn(make_session, scheduler):
    session = make_session(config={'time_limit': 5})
    session.start()
    session.submit_move(4, 4)
    events = collect(session)
    scheduler.advance(5)
    assert session.state.current_player == 'X'
    assert session.state.constraint == 4
    assert len(session.state.history) == 1
    assert kinds_of(events).count(E_FORFEIT) == 1
    assert E_TIME_WARNING in kinds_of(events)
    assert session.state.remaining == 5


def test_pause_freezes_the_clock(make_session, scheduler):
    session = make_session()
    session.start()
    scheduler.advance(3)
    assert session.state.remaining == 27
    session.pause()
    assert not session.timer_running
    scheduler.advance(10)
    assert session.state.remaining == 27
    session.resume()
    scheduler.advance(1)
    assert session.state.remaining == 26


def test_time_limit_change_waits_for_the_next_turn(make_session, scheduler):
    session = make_session()
    session.start()
    config = session.update_settings({'time_limit': 10})
    assert config.time_limit == 10
    assert session.state.limit == 30
    session.submit_move(0, 0)
    assert session.state.limit == session.state.remaining == 10


def test_settings_before_start_apply_at_once(make_session):
    session = make_session()
    session.update_settings({'time_limit': 100, 'symbols': {'O': ' zz '}})
    assert session.state.limit == 60
    assert session.state.config.symbols == {'X': 'X', 'O': 'zz'}


def test_disabling_the_timer_stops_ticks(make_session, scheduler):
    session = make_session()
    session.start()
    session.update_settings({'timer_enabled': False})
    scheduler.advance(5)
    assert session.state.remaining == 30


# ── Undo / redo ──────────────────────────────────────────────────────────────
def test_undo_redo_through_the_session(make_session):
    session = make_session()
    session.start()
    for b, c in [(4, 0), (0, 4), (4, 8)]:
        session.submit_move(b, c)
    after = session.state
    assert session.undo()
    assert session.can_redo()
    assert session.redo()
    assert session.state == after
    assert not session.redo()


def test_remote_sessions_cannot_undo(make_session):
    session = make_session(local_side='X')
    session.start()
    session.submit_move(4, 0)
    session.apply_opponent_move(0, 4)
    assert not session.can_undo()
    assert not session.undo()
    assert len(session.state.history) == 2


# ── Two instances ────────────────────────────────────────────────────────────
def linked_pair(make_session):
    x, o = make_session(local_side='X'), make_session(local_side='O')
    x.events.subscribe(lambda e: o.apply_opponent_move(e.payload['board'], e.payload['cell']),
                       {E_RELAY})
    o.events.subscribe(lambda e: x.apply_opponent_move(e.payload['board'], e.payload['cell']),
                       {E_RELAY})
    x.start()
    o.start()
    return x, o


def test_relayed_moves_keep_both_instances_in_step(make_session):
    x, o = linked_pair(make_session)
    assert x.submit_move(4, 4).accepted
    assert o.submit_move(4, 0).accepted
    assert x.submit_move(0, 8).accepted
    assert x.state.boards == o.state.boards
    assert x.state.history == o.state.history
    assert x.state.current_player == o.state.current_player == 'O'


def test_opponent_moves_are_ownership_checked(make_session):
    x, o = linked_pair(make_session)
    assert o.submit_move(4, 4).reason == 'not_your_turn'
    x.submit_move(4, 4)
    assert o.apply_opponent_move(4, 4).reason == 'not_your_turn'
    assert len(o.state.history) == 1
    assert x.apply_opponent_move(9, 9).reason == 'out_of_range'


# ── Event channel and dispatch ───────────────────────────────────────────────
def test_unsubscribe(make_session):
    session = make_session()
    seen = []
    unsubscribe = session.events.subscribe(seen.append)
    assert len(session.events) == 1
    unsubscribe()
    unsubscribe()
    session.start()
    assert seen == []
    assert len(session.events) == 0


def test_kind_filter(make_session):
    session = make_session()
    moves = collect(session, {E_MOVE})
    session.start()
    session.submit_move(2, 2)
    assert kinds_of(moves) == [E_MOVE]
    assert moves[0].payload == {'board': 2, 'cell': 2, 'player': 'X'}


def test_intents_from_handlers_are_queued(make_session):
    session = make_session()
    results = []

    def answer(event):
        if len(session.state.history) == 1:
            results.append(session.submit_move(event.payload['cell'], 0))

    session.events.subscribe(answer, {E_MOVE})
    session.start()
    assert session.submit_move(4, 6) == ACCEPTED
    assert results == [None]
    assert [tuple(m) for m in session.state.history] == [(4, 6, 'X'), (6, 0, 'O')]


# ── Persistence ──────────────────────────────────────────────────────────────
def test_snapshot_restores_a_live_session(make_session):
    session = make_session(config={'bot_enabled': True, 'timer_enabled': False})
    session.start()
    session.submit_move(4, 4)
    record = json.loads(json.dumps(session.snapshot()))

    scheduler = ManualScheduler()
    restored = GameSession.from_snapshot(record, scheduler=scheduler)
    assert restored.state == session.state
    assert restored.bot_pending
    scheduler.advance(1)
    assert len(restored.state.history) == 2


def test_close_cancels_pending_work(make_session, scheduler):
    session = make_session(config={'bot_enabled': True})
    session.start()
    session.submit_move(4, 4)
    remaining = session.state.remaining
    session.close()
    scheduler.advance(5)
    assert len(session.state.history) == 1
    assert session.state.remaining == remaining


def test_a_move_gets_a_full_first_second(make_session, scheduler):
    session = make_session(config={'time_limit': 10})
    session.start()
    scheduler.advance(0.5)
    session.submit_move(4, 4)
    scheduler.advance(0.75)
    assert session.state.remaining == 10
    scheduler.advance(0.25)
    assert session.state.remaining == 9


def test_forfeit_restarts_the_clock(make_session, scheduler):
    session = make_session(config={'time_limit': 5})
    session.start()
    scheduler.advance(5)
    assert session.state.current_player == 'O'
    scheduler.advance(0.5)
    assert session.state.remaining == 5
    scheduler.advance(0.5)
    assert session.state.remaining == 4
