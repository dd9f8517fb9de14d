from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging
import os

from .game_engine import Session, WON, LOST

logger = logging.getLogger("minefield")

RECORD_SUFFIX = ".txt"


class StatsRecordNotFound(KeyError):
    pass


@dataclass(frozen=True)
class StatsRecord:
    wins: int = 0
    losses: int = 0
    last_win_rows: int = 0
    last_win_cols: int = 0
    last_win_mines: int = 0

    @property
    def played(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        """Win percentage in [0, 100]; 0.0 before any game is finished."""
        if self.played == 0:
            return 0.0
        return self.wins / self.played * 100

    def to_lines(self) -> List[str]:
        return [
            str(self.wins),
            str(self.losses),
            str(self.last_win_rows),
            str(self.last_win_cols),
            str(self.last_win_mines),
        ]

    @classmethod
    def from_text(cls, text: str) -> "StatsRecord":
        parts = text.split()
        if len(parts) < 5:
            raise ValueError("corrupt_stats_record")
        try:
            values = [int(p) for p in parts[:5]]
        except ValueError:
            raise ValueError("corrupt_stats_record") from None
        return cls(*values)


def apply_outcome(record: StatsRecord, s: Session) -> StatsRecord:
    if s.status == WON:
        return replace(
            record,
            wins=record.wins + 1,
            last_win_rows=s.rows,
            last_win_cols=s.cols,
            last_win_mines=s.num_mines,
        )
    if s.status == LOST:
        return replace(record, losses=record.losses + 1)
    raise ValueError("game_not_finished")


def _check_user_id(user_id: str) -> str:
    uid = user_id.strip()
    if not uid or os.sep in uid or (os.altsep and os.altsep in uid) or uid in (".", ".."):
        raise ValueError("invalid_username")
    return uid


class InMemoryStatsLedger:
    """Simple in-memory ledger for tests and local dev."""

    def __init__(self) -> None:
        self.records: Dict[str, StatsRecord] = {}

    def exists(self, user_id: str) -> bool:
        return _check_user_id(user_id) in self.records

    def create(self, user_id: str) -> StatsRecord:
        record = StatsRecord()
        self.save(user_id, record)
        return record

    def load(self, user_id: str) -> StatsRecord:
        uid = _check_user_id(user_id)
        if uid not in self.records:
            raise StatsRecordNotFound(uid)
        return self.records[uid]

    def save(self, user_id: str, record: StatsRecord) -> None:
        self.records[_check_user_id(user_id)] = record


class FileStatsLedger:
    """One ``<username>.txt`` per player holding five integers, one per line:
    wins, losses, then rows, columns and mines of the most recent win.

    The file is rewritten in full on every save.
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None) -> None:
        self.directory = Path(directory) if directory is not None else Path.cwd()

    def path_for(self, user_id: str) -> Path:
        return self.directory / f"{_check_user_id(user_id)}{RECORD_SUFFIX}"

    def exists(self, user_id: str) -> bool:
        return self.path_for(user_id).is_file()

    def create(self, user_id: str) -> StatsRecord:
        record = StatsRecord()
        self.save(user_id, record)
        return record

    def load(self, user_id: str) -> StatsRecord:
        path = self.path_for(user_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise StatsRecordNotFound(str(path)) from None
        return StatsRecord.from_text(text)

    def save(self, user_id: str, record: StatsRecord) -> None:
        path = self.path_for(user_id)
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(record.to_lines()) + "\n", encoding="utf-8")
        logger.debug(f"[minefield] stats saved path={path} wins={record.wins} losses={record.losses}")
