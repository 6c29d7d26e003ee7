from dataclasses import replace

from game import history, logic
from game.logic import Move

from conftest import play_moves, playing

OPENING = [(4, 0), (0, 4), (4, 8), (8, 4)]


def test_undo_then_redo_restores_the_position():
    state = play_moves(playing(), OPENING)
    back = history.undo(state)
    assert back.cursor == 2
    assert back.current_player == 'O'
    assert back.constraint == 8
    assert back.boards[8] == logic.EMPTY_BOARD
    assert history.redo(back) == state


def test_redo_then_undo_restores_the_position():
    state = history.undo(history.undo(play_moves(playing(), OPENING)))
    assert history.undo(history.redo(state)) == state


def test_undo_matches_playing_the_prefix():
    full = play_moves(playing(), OPENING)
    prefix = play_moves(playing(), OPENING[:2])
    back = history.undo(history.undo(full))
    assert back.boards == prefix.boards
    assert back.statuses == prefix.statuses
    assert back.constraint == prefix.constraint
    assert back.current_player == prefix.current_player
    assert back.history == full.history


def test_no_ops_at_the_bounds():
    one = play_moves(playing(), OPENING[:1])
    assert not history.can_undo(one)
    assert history.undo(one) is one
    assert not history.can_redo(one)
    assert history.redo(one) is one


def test_capability_switch():
    state = play_moves(playing(), OPENING)
    assert history.undo(state, enabled=False) is state
    back = history.undo(state)
    assert history.redo(back, enabled=False) is back


def _won_by_x():
    moves = tuple(Move(b, c, 'X') for b in (0, 1, 2) for c in (0, 1, 2))
    state = replace(logic.GameState.new(), history=moves)
    return history.replay(state, len(moves) - 1)


def test_replay_derives_game_over():
    over = _won_by_x()
    assert over.phase == logic.OVER
    assert over.winner == 'X'
    assert over.statuses[:3] == ('X', 'X', 'X')


def test_undo_out_of_a_finished_game():
    over = _won_by_x()
    back = history.undo(over)
    assert back.phase == logic.PLAYING
    assert back.winner is None
    assert back.statuses[2] is None
    assert history.undo(over, when_over=False) is over


def test_replay_resets_the_timer_to_the_configured_limit():
    state = play_moves(playing(), OPENING)
    state = replace(state, remaining=3, config=replace(state.config, time_limit=12))
    back = history.undo(state)
    assert back.limit == back.remaining == 12
