"""Game session: the one object a host talks to.

A GameSession owns a single GameState and turns host intents (moves, undo,
timer ticks, opponent moves, lifecycle) into transitions. Transitions run one
at a time through a serialized dispatch loop; an intent issued while another
is running (for instance from an event handler) is queued behind it.

Timed work (the per-second tick and the bot's thinking delay) is handed to a
Scheduler, which returns cancellable handles. Restarting bumps the session
epoch, so a callback that was scheduled for the previous game cancels itself
even if it slips through.
"""
import heapq
import itertools
import logging
from collections import deque
from dataclasses import replace
from typing import NamedTuple, Optional

from . import history, logic, timer
from .ai import get_ai_move
from .settings import Config, normalize_settings
from .snapshot import from_record, to_record

log = logging.getLogger(__name__)

BOT_PLAYER = 'O'
BOT_DELAY  = 1.0
TICK_EVERY = 1.0

# Event kinds
E_STATE, E_MOVE, E_REJECTED, E_RELAY, E_RESTART = 'state', 'move', 'rejected', 'relay', 'restart'
E_BOARD_WON, E_BOARD_DRAWN = logic.N_BOARD_WON, logic.N_BOARD_DRAWN
E_GAME_OVER, E_CONFETTI    = logic.N_GAME_OVER, logic.N_CONFETTI
E_TICK, E_TIME_WARNING, E_FORFEIT = timer.N_TICK, timer.N_TIME_WARNING, timer.N_FORFEIT


class GameEvent(NamedTuple):
    kind:    str
    payload: dict


class MoveResult(NamedTuple):
    accepted: bool
    reason:   Optional[str] = None


ACCEPTED = MoveResult(True)


# ── Event channel ─────────────────────────────────────────────────────────────
class EventChannel:
    """Typed publish/subscribe. subscribe() returns the unsubscribe callable."""

    def __init__(self):
        self._subs = []

    def subscribe(self, handler, kinds=None):
        entry = (handler, frozenset(kinds) if kinds is not None else None)
        self._subs.append(entry)
        def unsubscribe():
            if entry in self._subs:
                self._subs.remove(entry)
        return unsubscribe

    def publish(self, event):
        for handler, kinds in list(self._subs):
            if kinds is None or event.kind in kinds:
                handler(event)

    def __len__(self):
        return len(self._subs)


# ── Scheduling ────────────────────────────────────────────────────────────────
class Handle:
    __slots__ = ('cancelled', 'done')

    def __init__(self):
        self.cancelled = False
        self.done = False

    def cancel(self):
        self.cancelled = True

    @property
    def active(self):
        return not (self.cancelled or self.done)


class Scheduler:
    """Runs callbacks later. Subclasses decide what "later" means."""

    def call_later(self, delay, fn):
        raise NotImplementedError

    def call_every(self, interval, fn):
        """Repeat `fn` every `interval` seconds until the handle is cancelled."""
        handle = Handle()
        def step():
            if handle.cancelled:
                return
            fn()
            if not handle.cancelled:
                self.call_later(interval, step)
        self.call_later(interval, step)
        return handle


class ManualScheduler(Scheduler):
    """Virtual clock: nothing runs until advance() moves time forward."""

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay, fn):
        handle = Handle()
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), handle, fn))
        return handle

    def advance(self, seconds):
        until = self.now + seconds
        while self._queue and self._queue[0][0] <= until:
            when, _, handle, fn = heapq.heappop(self._queue)
            self.now = when
            if handle.cancelled:
                continue
            handle.done = True
            fn()
        self.now = until


class Capabilities(NamedTuple):
    can_undo:       bool = True
    undo_when_over: bool = True


# ── Session ───────────────────────────────────────────────────────────────────
class GameSession:
    def __init__(self, config=None, scheduler=None, local_side=None,
                 capabilities=None, bot_delay=BOT_DELAY, rng=None, state=None):
        if local_side not in (None, 'X', 'O'):
            raise ValueError(f"local_side must be None, 'X' or 'O', not {local_side!r}")
        self.state        = state or logic.GameState.new(config or Config())
        self.scheduler    = scheduler or ManualScheduler()
        self.local_side   = local_side
        self.capabilities = capabilities or Capabilities(can_undo=local_side is None)
        self.bot_delay    = bot_delay
        self.rng          = rng
        self.events       = EventChannel()
        self.epoch        = 0
        self._queue       = deque()
        self._busy        = False
        self._tick_handle = None
        self._bot_handle  = None

    # ── Ownership ────────────────────────────────────────────────────────────
    @property
    def remote_side(self):
        return logic.opponent(self.local_side) if self.local_side else None

    @property
    def bot_side(self):
        if self.local_side is None and self.state.config.bot_enabled:
            return BOT_PLAYER
        return None

    def _owner(self, origin):
        """Side an intent of `origin` ('local', 'remote', 'bot') may move for.

        When that side is not the one to play, the opposite side is returned
        so the validator reports not_your_turn in its usual order.
        """
        cur = self.state.current_player
        if origin == 'bot':
            allowed = cur == self.bot_side
        elif origin == 'remote':
            allowed = cur == self.remote_side
        else:
            allowed = cur != self.bot_side and self.local_side in (None, cur)
        return cur if allowed else logic.opponent(cur)

    # ── Dispatch loop ────────────────────────────────────────────────────────
    def _dispatch(self, intent, *args):
        """Run `intent` now, or queue it behind the transition in progress."""
        if self._busy:
            self._queue.append((intent, args))
            return None
        self._busy = True
        try:
            result = self._run(intent, args)
            while self._queue:
                queued, qargs = self._queue.popleft()
                self._run(queued, qargs)
        finally:
            self._busy = False
        return result

    def _run(self, intent, args):
        before = self.state
        result, events = intent(*args)
        self._sync_schedules()
        for event in events:
            self.events.publish(event)
        if self.state is not before:
            self.events.publish(GameEvent(E_STATE, self.snapshot()))
        return result

    def _notices(self, notices, **payload):
        return [GameEvent(n, dict(payload)) for n in notices]

    # ── Intents ──────────────────────────────────────────────────────────────
    def _move(self, b, c, origin):
        outcome = logic.attempt_move(self.state, b, c, self._owner(origin))
        if not outcome.accepted:
            return MoveResult(False, outcome.reason), [
                GameEvent(E_REJECTED, {'board': b, 'cell': c, 'reason': outcome.reason,
                                       'origin': origin})]
        self.state = outcome.state
        self._rearm_clock()
        move = self.state.history[self.state.cursor]
        payload = {'board': move.board, 'cell': move.cell, 'player': move.player}
        events = self._notices(outcome.notices, **payload)
        if origin == 'local' and self.local_side is not None:
            events.append(GameEvent(E_RELAY, payload))
        return ACCEPTED, events

    def submit_move(self, b, c):
        """Local player's move. Rejected when the side to play is not local."""
        return self._dispatch(self._move, b, c, 'local')

    def apply_opponent_move(self, b, c):
        """Move delivered by the transport for the remote side."""
        result = self._dispatch(self._move, b, c, 'remote')
        if result is not None and not result.accepted:
            log.warning("remote move (%s, %s) rejected: %s", b, c, result.reason)
        return result

    def _bot_move(self, epoch):
        if epoch != self.epoch:
            return None, []
        self._bot_handle = None
        if self.state.phase != logic.PLAYING or self.state.current_player != self.bot_side:
            return None, []
        choice = get_ai_move(self.state, rng=self.rng)
        if choice is None:
            log.error("bot found no legal move in a live game")
            return None, []
        return self._move(choice[0], choice[1], 'bot')

    def _tick(self, epoch):
        if epoch != self.epoch:
            return None, []
        outcome = timer.tick(self.state)
        self.state = outcome.state
        if outcome.forfeited:
            self._rearm_clock()
        return outcome.forfeited, self._notices(
            outcome.notices, player=self.state.current_player, remaining=self.state.remaining)

    def tick(self):
        """One elapsed second. Returns True when the turn was forfeited."""
        return self._dispatch(self._tick, self.epoch)

    def _history(self, step):
        before = self.state
        caps = self.capabilities
        if step < 0:
            self.state = history.undo(before, caps.can_undo, caps.undo_when_over)
        else:
            self.state = history.redo(before, caps.can_undo)
        if self.state is not before:
            self._rearm_clock()
        return self.state is not before, []

    def undo(self):
        return bool(self._dispatch(self._history, -1))

    def redo(self):
        return bool(self._dispatch(self._history, +1))

    def can_undo(self):
        caps = self.capabilities
        return history.can_undo(self.state, caps.can_undo, caps.undo_when_over)

    def can_redo(self):
        return history.can_redo(self.state, self.capabilities.can_undo)

    def _lifecycle(self, transition):
        before = self.state
        self.state = transition(before)
        return self.state is not before, []

    def start(self):
        return bool(self._dispatch(self._lifecycle, logic.start))

    def pause(self):
        return bool(self._dispatch(self._lifecycle, logic.pause))

    def resume(self):
        return bool(self._dispatch(self._lifecycle, logic.resume))

    def _restart(self):
        self.epoch += 1
        self._cancel_all()
        self.state = logic.restart(self.state)
        log.info("game restarted (epoch %d)", self.epoch)
        return True, [GameEvent(E_RESTART, {'epoch': self.epoch})]

    def restart(self):
        return bool(self._dispatch(self._restart))

    def _settings(self, partial):
        config = normalize_settings(self.state.config, partial)
        if config == self.state.config:
            return False, []
        st = self.state
        if st.phase == logic.INIT:
            # no turn in progress yet, so the new limit shows at once
            self.state = replace(st, config=config, limit=config.time_limit,
                                 remaining=config.time_limit)
        else:
            self.state = replace(st, config=config)
        return True, []

    def update_settings(self, partial):
        """Apply a partial settings mapping atomically. Returns the new Config."""
        self._dispatch(self._settings, partial)
        return self.state.config

    # ── Scheduling ───────────────────────────────────────────────────────────
    def _cancel_all(self):
        for handle in (self._tick_handle, self._bot_handle):
            if handle is not None:
                handle.cancel()
        self._tick_handle = self._bot_handle = None

    def _rearm_clock(self):
        """A fresh turn gets a full first second: drop the running interval."""
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _sync_schedules(self):
        st = self.state
        playing = st.phase == logic.PLAYING

        if playing and timer.running(st):
            if self._tick_handle is None:
                epoch = self.epoch
                self._tick_handle = self.scheduler.call_every(
                    TICK_EVERY, lambda: self._dispatch(self._tick, epoch))
        elif self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

        bot_turn = playing and self.bot_side is not None and st.current_player == self.bot_side
        if bot_turn:
            if self._bot_handle is None:
                epoch = self.epoch
                log.debug("bot move scheduled in %.2fs", self.bot_delay)
                self._bot_handle = self.scheduler.call_later(
                    self.bot_delay, lambda: self._dispatch(self._bot_move, epoch))
        elif self._bot_handle is not None:
            self._bot_handle.cancel()
            self._bot_handle = None

    @property
    def bot_pending(self):
        return self._bot_handle is not None and self._bot_handle.active

    @property
    def timer_running(self):
        return self._tick_handle is not None and self._tick_handle.active

    def close(self):
        """Cancel everything scheduled; the session stays readable."""
        self.epoch += 1
        self._cancel_all()

    # ── Persistence ──────────────────────────────────────────────────────────
    def snapshot(self):
        return to_record(self.state)

    @classmethod
    def from_snapshot(cls, record, **kwargs):
        session = cls(state=from_record(record), **kwargs)
        session._sync_schedules()
        return session
