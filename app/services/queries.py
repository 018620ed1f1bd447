# file: app/services/queries.py
"""Pending / historic query files used by Discover (one query per line)."""
from __future__ import annotations
import logging
from pathlib import Path
from typing import List

log = logging.getLogger("hunter")


class QueryBook:
    def __init__(self, pending_path: str | Path, historic_path: str | Path):
        self.pending_path = Path(pending_path)
        self.historic_path = Path(historic_path)

    @staticmethod
    def _read(path: Path) -> List[str]:
        if not path.exists():
            return []
        with open(path, encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip()]

    @staticmethod
    def _write(path: Path, lines: List[str]):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + ("\n" if lines else ""))

    def pending(self) -> List[str]:
        return self._read(self.pending_path)

    def historic(self) -> List[str]:
        return self._read(self.historic_path)

    def mark_done(self, query: str):
        """Remove the query from the pending file and put it on top of the historic file."""
        self._write(self.pending_path, [q for q in self.pending() if q != query])
        self._write(self.historic_path, [query, *self.historic()])
        log.info("query moved to historic: %r", query)
