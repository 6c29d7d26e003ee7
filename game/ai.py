"""Bot move selection for Ultimate Tic Tac Toe: easy / medium / hard / impossible.

TIERS (each falls back to the one before it)
────────────────────────────────────────────
easy        random legal board, random empty cell in it.
medium      + take a sub-board win, else block the opponent's sub-board win.
hard        + a sub-board win that also wins the game comes first; never
            send the opponent to a board they can win at once when a
            safe cell exists; play own forks, block the opponent's forks,
            otherwise pick the strongest board and play centre > corner > edge.
impossible  + one-ply strategic score over every safe cell: board strength,
            cell value, denial (send the opponent to a decided board or one we
            lead), penalty for handing over a sub-board.

No game-tree search: every tier looks at the current position plus one
trial placement. Randomness is only used to break ties.
"""
import logging
import random

from .logic import PLAYERS, WIN_LINES, empty_cells, evaluate_line, opponent

log = logging.getLogger(__name__)


# ── Board geometry ────────────────────────────────────────────────────────────
_CENTER_CELL  = 4
_CORNER_CELLS = frozenset({0, 2, 6, 8})

# Cell weight within a mini-board: centre > corners > edges
_CELL_VALUE = (3, 2, 3, 2, 4, 2, 3, 2, 3)

# Impossible-tier weights
_DENY_DECIDED     = 6    # opponent is sent to a decided board
_DENY_LEAD        = 3    # opponent is sent to a board we lead in
_BLOCKS_FORK      = 4    # cell is one of the opponent's fork cells
_HANDS_OVER_WIN   = 50   # opponent gets an immediate sub-board win
_WINS_GAME        = 1000


# ── Shared helpers ────────────────────────────────────────────────────────────
def legal_boards(statuses, constraint):
    if constraint is not None and statuses[constraint] is None:
        return [constraint]
    return [b for b in range(9) if statuses[b] is None]

def legal_cells(boards, statuses, constraint):
    return [(b, c) for b in legal_boards(statuses, constraint) for c in empty_cells(boards[b])]

def winning_cells(board, player):
    """Empty cells that complete a line of `player` (two theirs + one empty)."""
    cells = set()
    for line in WIN_LINES:
        values = [board[i] for i in line]
        if values.count(player) == 2 and values.count(None) == 1:
            cells.add(line[values.index(None)])
    return sorted(cells)

def _open_twos(board, player):
    n = 0
    for line in WIN_LINES:
        values = [board[i] for i in line]
        if values.count(player) == 2 and values.count(None) == 1:
            n += 1
    return n

def fork_cells(board, player):
    """Cells where `player` would create two or more open two-in-a-lines."""
    forks = []
    for c in empty_cells(board):
        trial = board[:c] + (player,) + board[c+1:]
        if _open_twos(trial, player) >= 2:
            forks.append(c)
    return forks

def score_board(board, player):
    opp = opponent(player)
    return board.count(None) + 2 * board.count(player) - board.count(opp)

def preferred_cell(cells, rng=random):
    """Centre, then a corner, then an edge out of `cells`."""
    if _CENTER_CELL in cells:
        return _CENTER_CELL
    corners = [c for c in cells if c in _CORNER_CELLS]
    if corners:
        return rng.choice(corners)
    return rng.choice(list(cells))

def play(boards, statuses, b, c, player):
    """Boards and statuses after `player` takes (b, c)."""
    board  = boards[b][:c] + (player,) + boards[b][c+1:]
    boards = boards[:b] + (board,) + boards[b+1:]
    if statuses[b] is None:
        result = evaluate_line(board)
        if result is not None:
            statuses = statuses[:b] + (result,) + statuses[b+1:]
    return boards, statuses

def hands_opponent_win(boards, statuses, b, c, player):
    """Would (b, c) let the opponent win a sub-board on their very next move?"""
    nb, ns = play(boards, statuses, b, c, player)
    if evaluate_line(ns) is not None:
        return False
    opp = opponent(player)
    return any(winning_cells(nb[d], opp) for d in legal_boards(ns, c))


# ── Selection context ─────────────────────────────────────────────────────────
class _Context:
    __slots__ = ('boards', 'statuses', 'player', 'opp', 'rng', 'legal', '_safe')

    def __init__(self, boards, statuses, constraint, player, rng):
        self.boards   = tuple(tuple(b) for b in boards)
        self.statuses = tuple(statuses)
        self.player   = player
        self.opp      = opponent(player)
        self.rng      = rng
        self.legal    = legal_cells(self.boards, self.statuses, constraint)
        self._safe    = None

    @property
    def safe(self):
        if self._safe is None:
            self._safe = [(b, c) for b, c in self.legal
                          if not hands_opponent_win(self.boards, self.statuses, b, c, self.player)]
        return self._safe

    @property
    def pool(self):
        """Safe cells, or every legal cell when none is safe."""
        return self.safe or self.legal

    def pick(self, moves):
        return self.rng.choice(moves) if moves else None

    def wins(self, pool=None):
        pool = self.legal if pool is None else pool
        return [(b, c) for b, c in pool if c in winning_cells(self.boards[b], self.player)]

    def blocks(self, pool):
        return [(b, c) for b, c in pool if c in winning_cells(self.boards[b], self.opp)]

    def forks(self, pool, player):
        return [(b, c) for b, c in pool if c in fork_cells(self.boards[b], player)]

    def game_wins(self, moves):
        return [(b, c) for b, c in moves
                if evaluate_line(play(self.boards, self.statuses, b, c, self.player)[1]) == self.player]


# ── Tiers ─────────────────────────────────────────────────────────────────────
def _easy(ctx):
    boards = sorted({b for b, _ in ctx.legal})
    b = ctx.rng.choice(boards)
    return b, ctx.rng.choice(empty_cells(ctx.boards[b]))

def _medium(ctx):
    wins = ctx.wins()
    if wins: return wins[0]
    blocks = ctx.blocks(ctx.legal)
    if blocks: return blocks[0]
    return _easy(ctx)

def _take_win(ctx):
    """A sub-board win: one that ends the game, else one that does not hand a win back."""
    wins = ctx.wins()
    if not wins: return None
    safe = [m for m in wins if m in ctx.safe]
    return ctx.pick(ctx.game_wins(wins) or safe or wins)

def _positional(ctx, pool):
    by_board = {}
    for b, c in pool:
        by_board.setdefault(b, []).append(c)
    scores = {b: score_board(ctx.boards[b], ctx.player) for b in by_board}
    top = max(scores.values())
    b = ctx.pick(sorted(b for b, s in scores.items() if s == top))
    return b, preferred_cell(by_board[b], ctx.rng)

def _hard(ctx):
    move = _take_win(ctx)
    if move: return move
    pool = ctx.pool
    return (ctx.pick(ctx.blocks(pool))
            or ctx.pick(ctx.forks(pool, ctx.player))
            or ctx.pick(ctx.forks(pool, ctx.opp))
            or _positional(ctx, pool))

def strategic_score(ctx, b, c):
    board = ctx.boards[b]
    score = score_board(board, ctx.player) + _CELL_VALUE[c]
    if c in fork_cells(board, ctx.opp):
        score += _BLOCKS_FORK
    nb, ns = play(ctx.boards, ctx.statuses, b, c, ctx.player)
    if evaluate_line(ns) == ctx.player:
        return score + _WINS_GAME
    if ns[c] is not None:
        score += _DENY_DECIDED
    elif nb[c].count(ctx.player) > nb[c].count(ctx.opp):
        score += _DENY_LEAD
    if hands_opponent_win(ctx.boards, ctx.statuses, b, c, ctx.player):
        score -= _HANDS_OVER_WIN
    return score

def _best(ctx, moves):
    scored = [(strategic_score(ctx, b, c), (b, c)) for b, c in moves]
    top = max(s for s, _ in scored)
    return ctx.pick([m for s, m in scored if s == top])

def _impossible(ctx):
    wins = ctx.wins()
    if wins:
        return _best(ctx, [m for m in wins if m in ctx.safe] or wins)
    pool = ctx.pool
    for candidates in (ctx.blocks(pool), ctx.forks(pool, ctx.player)):
        if candidates:
            return _best(ctx, candidates)
    return _best(ctx, pool)


STRATEGIES = {
    'easy':       _easy,
    'medium':     _medium,
    'hard':       _hard,
    'impossible': _impossible,
}


# ── Public API ────────────────────────────────────────────────────────────────
def select_move(boards, statuses, constraint, difficulty='medium', player='O', rng=None):
    """(board, cell) for `player`, or None when there is no legal cell."""
    if player not in PLAYERS:
        raise ValueError(f"bot must play X or O, not {player!r}")
    ctx = _Context(boards, statuses, constraint, player, rng or random)
    if not ctx.legal:
        log.warning("bot asked to move with no legal cell")
        return None
    strategy = STRATEGIES.get(difficulty)
    if strategy is None:
        log.warning("unknown difficulty %r, playing medium", difficulty)
        strategy = _medium
    move = strategy(ctx)
    log.debug("%s bot (%s) picks %s", player, difficulty, move)
    return move

def get_ai_move(state, difficulty=None, rng=None):
    """select_move for the side to play in a GameState."""
    return select_move(state.boards, state.statuses, state.constraint,
                       difficulty or state.config.difficulty, state.current_player, rng)
