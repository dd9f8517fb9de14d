import os
import logging
from pathlib import Path
from typing import Annotated, Callable, List, Optional, Tuple

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator
from dotenv import load_dotenv

from minefield.game_engine import (
    DIG,
    DIG_ANYWAY,
    FLAG,
    KEEP_FLAGGED,
    LOST,
    MAX_SIDE,
    MIN_SIDE,
    UNFLAG,
    WON,
    Count,
    EngineError,
    Flagged,
    Revealed,
    Session,
    apply_action,
    mine_bounds,
    new_session,
    to_client_view,
)
from minefield.persistence import (
    FileStatsLedger,
    InMemoryStatsLedger,
    StatsRecord,
    StatsRecordNotFound,
    apply_outcome,
)

load_dotenv(dotenv_path=Path('.env.local'))

logger = logging.getLogger("minefield")

WELCOME = "Welcome to ICS Minesweeper"

Side = Annotated[int, Field(ge=MIN_SIDE, le=MAX_SIDE)]


def _truthy(value: Optional[str]) -> bool:
    return (value or "0").lower() in ("1", "true", "yes")


def choose_ledger():
    if _truthy(os.getenv("USE_INMEMORY")):
        return InMemoryStatsLedger()
    return FileStatsLedger(os.getenv("MINEFIELD_STATS_DIR") or None)


def choose_seed() -> Optional[int]:
    raw = os.getenv("MINEFIELD_SEED")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"[minefield] ignoring non-integer MINEFIELD_SEED={raw!r}")
        return None


class GameOptions(BaseModel):
    rows: Side
    cols: Side
    mines: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _mines_within_bounds(self):
        lo, hi = mine_bounds(self.rows, self.cols)
        if not lo <= self.mines <= hi:
            raise ValueError("mine_count_out_of_range")
        return self


class MoveBody(BaseModel):
    """A cell choice in the 1-based coordinates shown on screen."""

    row: int = Field(..., ge=1)
    col: int = Field(..., ge=1)

    def to_engine(self) -> Tuple[int, int]:
        return self.row - 1, self.col - 1


def _int_range(lo: int, hi: int) -> TypeAdapter:
    return TypeAdapter(Annotated[int, Field(ge=lo, le=hi)])


def render_board(view: List[List[str]]) -> str:
    cols = len(view[0]) if view else 0
    rule = "   " + "----" * cols + "-"
    lines = ["   " + "".join(f"  {i:<2d}" for i in range(1, cols + 1)), rule]
    for i, row in enumerate(view):
        lines.append(f"{i + 1:<3d}| " + "".join(f"{ch} | " for ch in row))
    lines.append(rule)
    return "\n".join(lines)


def format_stats(record: StatsRecord) -> str:
    return "\n".join([
        f"Wins:  {record.wins}",
        f"Losses:  {record.losses}",
        f"Win rate:  {record.win_rate:.2f}%",
        f"Size of most recent win:  {record.last_win_rows}x{record.last_win_cols}",
        f"Mines in most recent win:  {record.last_win_mines}",
    ])


class TerminalApp:
    def __init__(self, ledger, input_fn: Callable[[str], str], output_fn: Callable[[str], None],
                 rng_seed: Optional[int] = None) -> None:
        self.ledger = ledger
        self.input = input_fn
        self.out = output_fn
        self.rng_seed = rng_seed
        self.user_id = ""
        self.stats = StatsRecord()

    def ask(self, prompt: str, adapter: TypeAdapter, error: str):
        while True:
            raw = self.input(prompt).strip()
            try:
                return adapter.validate_python(raw)
            except ValidationError:
                self.out(error)

    def sign_in(self) -> None:
        choice = _int_range(1, 2)
        while True:
            username = self.input("Hi there! What's your username?\n").strip()
            kind = self.ask(
                "\nAre you a [1] new player or a [2] returning player?\n",
                choice,
                "Please enter only one of the integer options provided.\n",
            )
            try:
                if kind == 1:
                    if self.ledger.exists(username):
                        self.out("A player with that username already exists. "
                                 "Please choose [2] returning player or a different username.\n")
                        continue
                    try:
                        self.stats = self.ledger.create(username)
                    except OSError as e:
                        self.out(f"IO exception {e}")
                        self.stats = StatsRecord()
                else:
                    self.stats = self.ledger.load(username)
                    self.out(f"\nWelcome back {username}!")
                    self.out(format_stats(self.stats))
            except StatsRecordNotFound:
                self.out("Sorry, the username you entered does not exist.")
                self.out("Are you sure you are a returning player? Please enter your username again.\n")
                continue
            except ValueError as e:
                if str(e) == "invalid_username":
                    self.out("Please choose a username without path separators.\n")
                else:
                    self.out(f"Your stats file could not be read ({e}). Please try again.\n")
                continue
            self.user_id = username
            logger.info(f"[minefield] sign_in user_id={username} new_player={int(kind == 1)}")
            return

    def ask_options(self) -> GameOptions:
        side = _int_range(MIN_SIDE, MAX_SIDE)
        side_error = f"Invalid input. Please enter an integer between {MIN_SIDE} and {MAX_SIDE} (inclusive)"
        rows = self.ask("\nHow many rows do you want?  ", side, side_error)
        cols = self.ask("\nHow many columns do you want?  ", side, side_error)
        lo, hi = mine_bounds(rows, cols)
        while True:
            self.out(f"\nYour game board allows for a number of mines between {lo} and {hi}.")
            mines = self.ask(
                "How many mines do you want?  ",
                TypeAdapter(int),
                "Invalid input. Please enter an integer in the specified range.",
            )
            try:
                return GameOptions(rows=rows, cols=cols, mines=mines)
            except ValidationError:
                self.out("Invalid input. Please enter an integer in the specified range.")

    def ask_cell(self, s: Session) -> MoveBody:
        row = self.ask(
            "Choose a row:  ",
            _int_range(1, s.rows),
            f"Invalid input. Please enter an integer between 1 and {s.rows} (inclusive)",
        )
        col = self.ask(
            "Choose a column:  ",
            _int_range(1, s.cols),
            f"Invalid input. Please enter an integer between 1 and {s.cols} (inclusive)",
        )
        return MoveBody(row=row, col=col)

    def take_turn(self, s: Session) -> dict:
        three = _int_range(1, 3)
        two = _int_range(1, 2)
        while True:
            move = self.ask_cell(s)
            row, col = move.to_engine()
            cell = s.overlay[row][col]
            if isinstance(cell, Revealed):
                self.out("You have already dug this square. Please try again.\n")
                continue
            if isinstance(cell, Flagged):
                code = self.ask(
                    "You have already flagged this square. Would you like to "
                    "[1] DIG ANYWAYS, [2] KEEP FLAGGED, or [3] UNFLAG?  ",
                    three,
                    "Invalid input. Please enter either 1, 2, or 3",
                )
                action = {1: DIG_ANYWAY, 2: KEEP_FLAGGED, 3: UNFLAG}[code]
            else:
                code = self.ask(
                    "Would you like to [1] DIG or [2] FLAG?  ",
                    two,
                    "Invalid input. Please enter either 1 or 2.",
                )
                action = {1: DIG, 2: FLAG}[code]
            try:
                result = apply_action(s, row, col, action)
            except EngineError as e:
                logger.debug(f"[minefield] rejected action={action} row={row} col={col} error={e}")
                self.out("That move is not allowed right now. Please try again.\n")
                continue
            if result["outcome"] == "kept_flagged":
                self.out("Got it, then you will have to select a different square.\n")
                continue
            if result["outcome"] == "unflagged":
                self.out(f"Alright, unflagged {move.row}-{move.col}. Here is the updated board:")
            return result

    def describe(self, s: Session, result: dict) -> str:
        where = f"{result['row'] + 1}-{result['col'] + 1}"
        if result["outcome"] == "flagged":
            return f"Flagged {where}."
        if result["outcome"] == "unflagged":
            return f"Unflagged {where}."
        value = s.layout[result["row"]][result["col"]]
        n = value.n if isinstance(value, Count) else 0
        return f"{where} is surrounded by {n} mines!"

    def record(self, s: Session) -> None:
        self.stats = apply_outcome(self.stats, s)
        try:
            self.ledger.save(self.user_id, self.stats)
        except OSError as e:
            logger.warning(f"[minefield] stats save failed user_id={self.user_id} error={e}")
            self.out(f"IO Exception {e} while saving stats for {self.user_id}")
        self.out(format_stats(self.stats))

    def play_round(self, s: Session) -> str:
        self.out("The mines have been planted!")
        self.out(render_board(to_client_view(s)))
        result = None
        while True:
            if s.status == LOST:
                self.out(" *** BOOOOOOOOOM! ***  X_x")
                self.out("You hit a mine and lost. Better luck next time!")
                self.out("\nYour stats are now...")
                break
            if s.status == WON:
                self.out("You cleared the field! YOU WIN!! \\o/")
                self.out("Your stats are now...")
                break
            if result is not None:
                self.out(self.describe(s, result))
            self.out(f"Flags Remaining: {s.flags_remaining}\n")
            result = self.take_turn(s)
            self.out(render_board(to_client_view(s)))
        self.record(s)
        return s.status

    def run(self) -> None:
        self.out("========================================")
        self.out(f"|{WELCOME:>32}{'|':>8}")
        self.out("========================================")
        self.sign_in()
        again = _int_range(1, 2)
        while True:
            opts = self.ask_options()
            s = new_session(opts.rows, opts.cols, opts.mines, rng_seed=self.rng_seed)
            self.play_round(s)
            choice = self.ask(
                "\nWould you like to [1] Play Again or [2] Quit?  ",
                again,
                "Invalid input. Please enter either 1 or 2.",
            )
            if choice == 2:
                break
        self.out("Thanks for playing!")


def create_app(ledger=None, input_fn: Callable[[str], str] = input,
               output_fn: Callable[[str], None] = print, rng_seed: Optional[int] = None) -> TerminalApp:
    app = TerminalApp(ledger or choose_ledger(), input_fn, output_fn, rng_seed)
    logger.info(
        f"[minefield] Ledger={app.ledger.__class__.__name__} "
        f"USE_INMEMORY={int(_truthy(os.getenv('USE_INMEMORY')))} "
        f"MINEFIELD_STATS_DIR={os.getenv('MINEFIELD_STATS_DIR') or '-'}"
    )
    return app


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    app = create_app(rng_seed=choose_seed())
    try:
        app.run()
    except (EOFError, KeyboardInterrupt):
        app.out("\nThanks for playing!")


if __name__ == "__main__":
    main()
