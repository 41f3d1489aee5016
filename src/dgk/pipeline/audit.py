"""Append-only audit log of pipeline outcomes (one JSON object per line)."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from dgk.core.models import Outcome

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class OutcomeLog:
    """Append :class:`Outcome` records to a JSON Lines file.

    Records are only ever appended; nothing in this class rewrites or
    truncates the file.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, outcome: Outcome) -> None:
        line = outcome.model_dump_json()
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        logger.debug("Recorded outcome %s (%s) in %s", outcome.run_id, outcome.state.value, self._path)

    def read(self) -> list[Outcome]:
        """Return every recorded outcome, oldest first."""
        if not self._path.exists():
            return []
        outcomes: list[Outcome] = []
        with self._path.open(encoding="utf-8") as fh:
            for line in fh:
                if line.strip():
                    outcomes.append(Outcome.model_validate_json(line))
        return outcomes
