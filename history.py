from __future__ import annotations

import logging
from dataclasses import dataclass

from state import GameState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a ledger operation; refusals carry an advisory message."""

    ok: bool
    message: str = ""


class History:
    """Append-only log of GameStates with undo, checkpoints and rewind.

    The ledger only moves its own cursor and checkpoint list; recorded states
    are never edited.
    """

    def __init__(self, initial: GameState):
        self.reset(initial)

    def reset(self, initial: GameState) -> None:
        self._log: list[GameState] = [initial]
        self._checkpoints: list[int] = []
        self._current = 0

    @property
    def current(self) -> GameState:
        return self._log[self._current]

    @property
    def current_step(self) -> int:
        return self._current

    @property
    def checkpoints(self) -> tuple[int, ...]:
        return tuple(self._checkpoints)

    def __len__(self) -> int:
        return len(self._log)

    def state_at(self, step: int) -> GameState:
        return self._log[step]

    def record(self, new_state: GameState) -> None:
        if self._current < len(self._log) - 1:
            # Recording after an undo abandons the undone branch.
            del self._log[self._current + 1:]
            self._checkpoints = [cp for cp in self._checkpoints if cp <= self._current]
        self._log.append(new_state)
        self._current += 1

    def can_undo(self) -> bool:
        return self._current > 0 and not self.current.is_revival_point

    def undo(self) -> LedgerResult:
        if self._current <= 0:
            return LedgerResult(False, "Nothing to undo.")
        if self.current.is_revival_point:
            return LedgerResult(False, "Cannot undo past a revival point.")
        self._current -= 1
        return LedgerResult(True)

    def save(self) -> LedgerResult:
        last = self._checkpoints[-1] if self._checkpoints else -1
        if self._current <= last:
            return LedgerResult(False, "Move before saving again.")
        self._checkpoints.append(self._current)
        logger.debug(f"Checkpoint at step {self._current}")
        return LedgerResult(True, f"Checkpoint saved at step {self._current}.")

    def rewind(self) -> LedgerResult:
        earlier = [cp for cp in self._checkpoints if cp < self._current]
        if not earlier:
            return LedgerResult(False, "No earlier checkpoint to rewind to.")
        self._current = max(earlier)
        return LedgerResult(True, f"Rewound to checkpoint at step {self._current}.")
