from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union
import logging
import random

logger = logging.getLogger("minefield")

MIN_SIDE = 5
MAX_SIDE = 15

# actions
DIG = "dig"
FLAG = "flag"
UNFLAG = "unflag"
DIG_ANYWAY = "dig_anyway"
KEEP_FLAGGED = "keep_flagged"
ACTIONS = (DIG, FLAG, UNFLAG, DIG_ANYWAY, KEEP_FLAGGED)

# session status
AWAITING_FIRST_MOVE = "awaiting_first_move"
IN_PROGRESS = "in_progress"
WON = "won"
LOST = "lost"
TERMINAL = (WON, LOST)


class EngineError(ValueError):
    code = "engine_error"

    def __init__(self, row: Optional[int] = None, col: Optional[int] = None) -> None:
        super().__init__(self.code)
        self.row = row
        self.col = col


class InvalidCoordinate(EngineError):
    code = "out_of_bounds"


class CellAlreadyRevealed(EngineError):
    code = "cell_already_revealed"


class SessionTerminated(EngineError):
    code = "session_terminated"


class IllegalActionForState(EngineError):
    code = "illegal_action_for_state"


class CellFlagged(IllegalActionForState):
    """A plain dig hit a flag; resolve with dig_anyway, keep_flagged or unflag."""

    code = "cell_flagged"


@dataclass(frozen=True)
class Mine:
    pass


@dataclass(frozen=True)
class Count:
    n: int


@dataclass(frozen=True)
class Blank:
    """A revealed zero whose neighbourhood has already been opened."""


@dataclass(frozen=True)
class Hidden:
    pass


@dataclass(frozen=True)
class Flagged:
    pass


MINE = Mine()
BLANK = Blank()
HIDDEN = Hidden()
FLAGGED = Flagged()

Cell = Union[Mine, Count]


@dataclass(frozen=True)
class Revealed:
    value: Union[Mine, Count, Blank]


OverlayCell = Union[Hidden, Flagged, Revealed]
Layout = List[List[Cell]]
Overlay = List[List[OverlayCell]]


def _half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def mine_bounds(rows: int, cols: int) -> Tuple[int, int]:
    """Inclusive (min, max) mine count for a board, 10% and 80% rounded half up."""
    total = rows * cols
    return _half_up(total, 10), _half_up(8 * total, 10)


def _neighbors(r: int, c: int, rows: int, cols: int) -> Iterator[Tuple[int, int]]:
    for nr in range(max(0, r - 1), min(rows, r + 2)):
        for nc in range(max(0, c - 1), min(cols, c + 2)):
            if nr == r and nc == c:
                continue
            yield nr, nc


def generate(rows: int, cols: int, num_mines: int, rng: Optional[random.Random] = None) -> Layout:
    if num_mines >= rows * cols:
        raise ValueError("too_many_mines_for_board")
    rng = rng or random.Random()
    mines = set()
    while len(mines) < num_mines:
        # redraw on collision
        mines.add((rng.randrange(rows), rng.randrange(cols)))
    layout: Layout = []
    for r in range(rows):
        row: List[Cell] = []
        for c in range(cols):
            if (r, c) in mines:
                row.append(MINE)
            else:
                row.append(Count(sum(1 for nb in _neighbors(r, c, rows, cols) if nb in mines)))
        layout.append(row)
    return layout


def layout_to_text(layout: Layout) -> str:
    return "\n".join(
        " ".join("X" if isinstance(cell, Mine) else str(cell.n) for cell in row)
        for row in layout
    )


def pending_zeros(overlay: Overlay) -> List[Tuple[int, int]]:
    """Revealed zero cells whose neighbours were never opened."""
    return [
        (r, c)
        for r, row in enumerate(overlay)
        for c, cell in enumerate(row)
        if cell == Revealed(Count(0))
    ]


def reveal_cascade(overlay: Overlay, layout: Layout, row: int, col: int) -> int:
    rows, cols = len(layout), len(layout[0])
    if layout[row][col] != Count(0) or isinstance(overlay[row][col], Flagged):
        return 0
    cleared = 0
    q = deque()
    q.append((row, col))
    while q:
        r, c = q.popleft()
        if overlay[r][c] == Revealed(BLANK):
            continue
        if isinstance(overlay[r][c], Hidden):
            cleared += 1
        overlay[r][c] = Revealed(BLANK)
        for nr, nc in _neighbors(r, c, rows, cols):
            current = overlay[nr][nc]
            if isinstance(current, Hidden):
                overlay[nr][nc] = Revealed(layout[nr][nc])
                cleared += 1
                current = overlay[nr][nc]
            if current == Revealed(Count(0)):
                q.append((nr, nc))
    return cleared


@dataclass
class Session:
    rows: int
    cols: int
    num_mines: int
    layout: Layout
    overlay: Overlay
    flags_remaining: int
    rng: random.Random = field(repr=False)
    status: str = AWAITING_FIRST_MOVE
    first_move_resolved: bool = False
    regenerations: int = 0
    moves_count: int = 0

    @property
    def total_cells(self) -> int:
        return self.rows * self.cols

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL


def new_session(rows: int, cols: int, num_mines: int, rng_seed: Optional[int] = None) -> Session:
    if not (MIN_SIDE <= rows <= MAX_SIDE and MIN_SIDE <= cols <= MAX_SIDE):
        raise ValueError("invalid_dimensions")
    lo, hi = mine_bounds(rows, cols)
    if not (lo <= num_mines <= hi):
        raise ValueError("mine_count_out_of_range")
    rng = random.Random(rng_seed)
    layout = generate(rows, cols, num_mines, rng)
    overlay: Overlay = [[HIDDEN] * cols for _ in range(rows)]
    logger.debug(f"[minefield] new_session rows={rows} cols={cols} mines={num_mines}\n{layout_to_text(layout)}")
    return Session(rows, cols, num_mines, layout, overlay, num_mines, rng)


def _ensure_first_dig_safe(s: Session, row: int, col: int) -> int:
    regenerated = 0
    while isinstance(s.layout[row][col], Mine):
        s.layout = generate(s.rows, s.cols, s.num_mines, s.rng)
        regenerated += 1
    if regenerated:
        s.regenerations += regenerated
        logger.debug(
            f"[minefield] first dig at row={row} col={col} was a mine; regenerated={regenerated}\n"
            f"{layout_to_text(s.layout)}"
        )
    s.first_move_resolved = True
    return regenerated


def revealed_total(s: Session) -> int:
    return sum(1 for row in s.overlay for cell in row if isinstance(cell, Revealed))


def evaluate(s: Session) -> str:
    safe_revealed = 0
    for r, row in enumerate(s.overlay):
        for c, cell in enumerate(row):
            if not isinstance(cell, Revealed):
                continue
            if isinstance(s.layout[r][c], Mine):
                return LOST
            safe_revealed += 1
    if safe_revealed == s.total_cells - s.num_mines:
        return WON
    return IN_PROGRESS if s.first_move_resolved else AWAITING_FIRST_MOVE


def apply_action(s: Session, row: int, col: int, action: str):
    if action not in ACTIONS:
        raise IllegalActionForState(row, col)
    if s.is_terminal:
        raise SessionTerminated(row, col)
    if not (0 <= row < s.rows and 0 <= col < s.cols):
        raise InvalidCoordinate(row, col)
    current = s.overlay[row][col]
    if isinstance(current, Revealed):
        raise CellAlreadyRevealed(row, col)

    if action == DIG and isinstance(current, Flagged):
        raise CellFlagged(row, col)
    if action in (UNFLAG, KEEP_FLAGGED, DIG_ANYWAY) and not isinstance(current, Flagged):
        raise IllegalActionForState(row, col)
    if action == FLAG and not isinstance(current, Hidden):
        raise IllegalActionForState(row, col)

    result = {
        "outcome": None,
        "row": row,
        "col": col,
        "value": None,
        "hit_mine": False,
        "cleared_cells": 0,
        "regenerations": 0,
    }
    if action == KEEP_FLAGGED:
        result["outcome"] = "kept_flagged"
    elif action == FLAG:
        s.overlay[row][col] = FLAGGED
        s.flags_remaining -= 1
        result["outcome"] = "flagged"
    elif action == UNFLAG:
        s.overlay[row][col] = HIDDEN
        s.flags_remaining += 1
        result["outcome"] = "unflagged"
    else:
        if action == DIG_ANYWAY:
            s.flags_remaining += 1
        if not s.first_move_resolved:
            result["regenerations"] = _ensure_first_dig_safe(s, row, col)
        value = s.layout[row][col]
        s.overlay[row][col] = Revealed(value)
        cleared = 1
        if value == Count(0):
            cleared += reveal_cascade(s.overlay, s.layout, row, col)
        result.update(outcome="dug", value=value, hit_mine=isinstance(value, Mine), cleared_cells=cleared)

    if action != KEEP_FLAGGED:
        s.moves_count += 1
        previous = s.status
        s.status = evaluate(s)
        if s.status != previous and s.is_terminal:
            logger.info(
                f"[minefield] game over status={s.status} rows={s.rows} cols={s.cols} "
                f"mines={s.num_mines} moves={s.moves_count}"
            )
    result["status_after"] = s.status
    result["flags_remaining"] = s.flags_remaining
    result["revealed_total"] = revealed_total(s)
    return result


def to_client_view(s: Session) -> List[List[str]]:
    board: List[List[str]] = []
    for r in range(s.rows):
        row: List[str] = []
        for c in range(s.cols):
            cell = s.overlay[r][c]
            if s.status == LOST and isinstance(s.layout[r][c], Mine):
                ch = "X"
            elif isinstance(cell, Hidden):
                ch = "_"
            elif isinstance(cell, Flagged):
                ch = "M"
            elif isinstance(cell.value, Blank):
                ch = " "
            elif isinstance(cell.value, Mine):
                ch = "X"
            else:
                ch = str(cell.value.n)
            row.append(ch)
        board.append(row)
    return board
