"""Session settings: the part of a game that survives a restart."""
import logging
from dataclasses import dataclass, replace

from .errors import ConfigError

log = logging.getLogger(__name__)

DIFFICULTIES = ('easy', 'medium', 'hard', 'impossible')

DEFAULT_TIME_LIMIT = 30
MIN_TIME_LIMIT     = 5
MAX_TIME_LIMIT     = 60
MAX_SYMBOL_LEN     = 2
DEFAULT_SYMBOLS    = {'X': 'X', 'O': 'O'}


@dataclass(frozen=True)
class Config:
    time_limit:    int  = DEFAULT_TIME_LIMIT
    timer_enabled: bool = True
    symbol_x:      str  = 'X'
    symbol_o:      str  = 'O'
    difficulty:    str  = 'medium'
    bot_enabled:   bool = False
    muted:         bool = False

    @property
    def symbols(self):
        return {'X': self.symbol_x, 'O': self.symbol_o}

    def label(self, player):
        """Display label for 'X' / 'O'."""
        return self.symbols.get(player, player)

    def to_record(self):
        return {
            'time_limit':    self.time_limit,
            'timer_enabled': self.timer_enabled,
            'symbols':       self.symbols,
            'difficulty':    self.difficulty,
            'bot_enabled':   self.bot_enabled,
            'muted':         self.muted,
        }


# ── Coercers: raise ConfigError, never clamp ─────────────────────────────────
def _coerce_time_limit(value):
    if isinstance(value, bool):
        raise ConfigError('time_limit', value, 'is not a number')
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        raise ConfigError('time_limit', value, 'is not a number') from None
    if not MIN_TIME_LIMIT <= seconds <= MAX_TIME_LIMIT:
        raise ConfigError('time_limit', value,
                          f'outside {MIN_TIME_LIMIT}..{MAX_TIME_LIMIT}')
    return seconds

def _coerce_bool(field, value):
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.lower() in ('true', 'false', 'on', 'off', '1', '0'):
        return value.lower() in ('true', 'on', '1')
    raise ConfigError(field, value, 'is not a boolean')

def _coerce_symbol(player, value):
    label = str(value if value is not None else '').strip()[:MAX_SYMBOL_LEN]
    if not label:
        raise ConfigError(f'symbols.{player}', value, 'is empty')
    return label

def _coerce_difficulty(value):
    diff = str(value).lower()
    if diff not in DIFFICULTIES:
        raise ConfigError('difficulty', value, f'not one of {DIFFICULTIES}')
    return diff


# ── Public API ───────────────────────────────────────────────────────────────
def normalize_settings(current, partial):
    """Merge a partial settings mapping into `current` and return a new Config.

    Bad values are clamped (time limit) or defaulted (symbols, difficulty,
    flags) with a warning; this never raises for user input. Unknown keys are
    ignored.
    """
    changes = {}
    partial = partial or {}

    if 'time_limit' in partial:
        raw = partial['time_limit']
        try:
            changes['time_limit'] = _coerce_time_limit(raw)
        except ConfigError as e:
            changes['time_limit'] = _clamp_time_limit(raw, current.time_limit)
            log.warning("%s; using %s", e, changes['time_limit'])

    for field in ('timer_enabled', 'bot_enabled', 'muted'):
        if field in partial:
            try:
                changes[field] = _coerce_bool(field, partial[field])
            except ConfigError as e:
                log.warning("%s; keeping %s", e, getattr(current, field))

    if 'symbols' in partial:
        symbols = partial['symbols'] or {}
        for player, attr in (('X', 'symbol_x'), ('O', 'symbol_o')):
            if player not in symbols:
                continue
            try:
                changes[attr] = _coerce_symbol(player, symbols[player])
            except ConfigError as e:
                changes[attr] = DEFAULT_SYMBOLS[player]
                log.warning("%s; using default %r", e, changes[attr])

    if 'difficulty' in partial:
        try:
            changes['difficulty'] = _coerce_difficulty(partial['difficulty'])
        except ConfigError as e:
            log.warning("%s; keeping %s", e, current.difficulty)

    return replace(current, **changes) if changes else current

def _clamp_time_limit(raw, fallback):
    try:
        seconds = int(raw)
    except (TypeError, ValueError):
        return fallback
    return max(MIN_TIME_LIMIT, min(MAX_TIME_LIMIT, seconds))

def config_from_record(record):
    """Inverse of Config.to_record, tolerant like normalize_settings."""
    return normalize_settings(Config(), record)
