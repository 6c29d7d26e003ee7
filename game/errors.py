"""Rejection reasons and the error taxonomy of the engine.

Ordinary gameplay never raises: the validator and the session hand back one
of the reason codes below. Exceptions are reserved for untrusted input
(ValidationError), settings coercion (ConfigError, always caught and turned
into a clamp/default) and broken invariants (InvariantViolation).
"""

# ── Rejection reasons ─────────────────────────────────────────────────────────
OUT_OF_RANGE  = 'out_of_range'
NOT_PLAYING   = 'not_playing'
NOT_YOUR_TURN = 'not_your_turn'
WRONG_BOARD   = 'wrong_board'
BOARD_DECIDED = 'board_decided'
CELL_OCCUPIED = 'cell_occupied'


class GameError(Exception):
    """Base class for engine errors."""


class ValidationError(GameError):
    """Untrusted input could not be decoded into engine values."""

    def __init__(self, reason, detail=None):
        self.reason = reason
        self.detail = detail
        msg = reason if detail is None else f"{reason}: {detail}"
        super().__init__(msg)


class ConfigError(GameError, ValueError):
    """A settings value could not be coerced."""

    def __init__(self, field, value, detail=''):
        self.field = field
        self.value = value
        super().__init__(f"bad {field}={value!r} {detail}".rstrip())


class InvariantViolation(GameError, AssertionError):
    """The state machine reached a state it must never reach."""
