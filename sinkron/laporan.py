"""Ringkasan hasil run dan log aksi."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import openpyxl
from sqlalchemy.exc import SQLAlchemyError

from .errors import DatasetError, DuplicateKeyError, FetchError, LookupFailure, SinkronError

logger = logging.getLogger(__name__)

# Kategori error sesuai taksonomi
ERROR_INPUT = "input"
ERROR_LOOKUP = "lookup"
ERROR_PERSISTENCE = "persistence"
ERROR_FETCH = "fetch"
ERROR_FILESYSTEM = "filesystem"


def error_category(exc: BaseException) -> str:
    if isinstance(exc, FetchError):
        return ERROR_FETCH
    if isinstance(exc, (LookupFailure, DuplicateKeyError)):
        return ERROR_LOOKUP
    if isinstance(exc, DatasetError):
        return ERROR_INPUT
    if isinstance(exc, OSError):
        return ERROR_FILESYSTEM
    if isinstance(exc, (SinkronError, SQLAlchemyError)):
        return ERROR_PERSISTENCE
    # TypeError, ValueError, AttributeError: data masukan yang bentuknya tak terduga
    return ERROR_INPUT


@dataclass
class Action:
    kind: str
    key: str
    detail: str
    executed: bool

    def describe(self) -> str:
        return f"{self.kind} {self.key}: {self.detail}"


@dataclass
class _GroupBuffer:
    counters: Counter = field(default_factory=Counter)
    actions: List[Action] = field(default_factory=list)


@dataclass
class RunSummary:
    """Penghitung, error per kategori, dan log aksi satu run.

    Selama satu grup transaksi terbuka (``begin_group``), penghitung dan aksi
    ditahan dan baru masuk ringkasan setelah ``commit_group``. Grup yang
    di-rollback tidak meninggalkan jejak selain error-nya.
    """

    title: str
    dry_run: bool = True
    counters: Counter = field(default_factory=Counter)
    errors: Counter = field(default_factory=Counter)
    error_details: List[tuple[str, str, str]] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    _group: Optional[_GroupBuffer] = field(default=None, repr=False)

    def count(self, name: str, amount: int = 1) -> None:
        target = self._group.counters if self._group is not None else self.counters
        target[name] += amount

    def _log_action(self, action: Action) -> None:
        if self.dry_run:
            logger.info("[DRY-RUN] %s", action.describe())
        else:
            logger.info("[%s] %s", action.kind, action.describe())

    def record_action(self, kind: str, key: str, detail: str) -> Action:
        action = Action(kind=kind, key=key, detail=detail, executed=not self.dry_run)
        if self._group is not None:
            self._group.actions.append(action)
        else:
            self.actions.append(action)
            self._log_action(action)
        return action

    def begin_group(self) -> None:
        self._group = _GroupBuffer()

    def commit_group(self) -> None:
        group, self._group = self._group, None
        if group is None:
            return
        self.counters.update(group.counters)
        for action in group.actions:
            self.actions.append(action)
            self._log_action(action)

    def discard_group(self) -> None:
        group, self._group = self._group, None
        if group is not None and group.actions:
            logger.info("[ROLLBACK] %d aksi dibatalkan.", len(group.actions))

    def record_error(self, category: str, key: str, message: str, log: bool = True) -> None:
        self.errors[category] += 1
        self.error_details.append((category, key, message))
        if log:
            logger.error("[FAIL] %s (%s): %s", key, category, message)

    @property
    def error_count(self) -> int:
        return sum(self.errors.values())

    @property
    def exit_code(self) -> int:
        return 1 if self.error_count else 0

    def action_kinds(self) -> List[tuple[str, str]]:
        return [(action.kind, action.key) for action in self.actions]

    def lines(self) -> List[str]:
        lines = [f"--- Ringkasan {self.title} (dry-run={'ya' if self.dry_run else 'tidak'}) ---"]
        for name, value in sorted(self.counters.items()):
            lines.append(f"{name}: {value}")
        lines.append(f"Aksi {'(akan dijalankan)' if self.dry_run else 'dijalankan'}: {len(self.actions)}")
        lines.append(f"Error: {self.error_count}")
        for category, value in sorted(self.errors.items()):
            lines.append(f"  - {category}: {value}")
        return lines

    def log(self) -> None:
        for line in self.lines():
            logger.info(line)

    def write_excel(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        workbook = openpyxl.Workbook()

        sheet = workbook.active
        sheet.title = "Ringkasan"
        sheet.append(["Run", self.title])
        sheet.append(["Dibuat", datetime.now().strftime("%Y-%m-%d %H:%M:%S")])
        sheet.append(["Dry-run", "Ya" if self.dry_run else "Tidak"])
        sheet.append([])
        sheet.append(["Penghitung", "Nilai"])
        for name, value in sorted(self.counters.items()):
            sheet.append([name, value])
        for category, value in sorted(self.errors.items()):
            sheet.append([f"error.{category}", value])

        aksi = workbook.create_sheet("Aksi")
        aksi.append(["Jenis", "Kunci", "Detail", "Dijalankan"])
        for action in self.actions:
            aksi.append([action.kind, action.key, action.detail, "Ya" if action.executed else "Tidak"])

        errors = workbook.create_sheet("Error")
        errors.append(["Kategori", "Kunci", "Pesan"])
        for row in self.error_details:
            errors.append(list(row))

        workbook.save(path)
        logger.info("[REPORT] Laporan disimpan ke %s", path)
