# src/daybook/widgets/quote_selector.py

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Hashable, Iterable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class QuoteSelectionState:
    last_shown_id: Hashable | None = None


def select_next(
    candidates: Iterable[Hashable],
    state: QuoteSelectionState,
    rng: random.Random | None = None,
) -> tuple[Hashable | None, QuoteSelectionState]:
    """
    Pick the next id uniformly at random, never the last shown one when there is an alternative.

    - no candidates: (None, state unchanged)
    - one candidate: that one, even if it was just shown
    """
    rng = rng or random.Random()
    ids = list(dict.fromkeys(candidates))

    if not ids:
        return None, state

    if len(ids) == 1:
        chosen = ids[0]
    else:
        pool = [i for i in ids if i != state.last_shown_id]
        chosen = rng.choice(pool or ids)

    return chosen, QuoteSelectionState(last_shown_id=chosen)


class SelectionStateStore(Protocol):
    def load_selection_state(self) -> QuoteSelectionState: ...
    def save_selection_state(self, state: QuoteSelectionState) -> None: ...


class QuoteRotationSelector:
    """
    Process-wide no-immediate-repeat selector for one widget family.

    The read of the last shown id, the choice and the write of the new state
    happen under one lock, so concurrent refreshes never both see the same
    previous id.
    """

    def __init__(self, state_store: SelectionStateStore, *, rng: random.Random | None = None) -> None:
        self._state_store = state_store
        self._rng = rng or random.Random()
        self._lock = threading.Lock()

    def select(self, candidates: Iterable[Hashable]) -> Hashable | None:
        with self._lock:
            state = self._state_store.load_selection_state()
            chosen, new_state = select_next(candidates, state, self._rng)
            if new_state != state:
                self._state_store.save_selection_state(new_state)
            logger.debug("Quote selected=%s previous=%s", chosen, state.last_shown_id)
            return chosen
