"""
Reading-state transition rules.

The normal path only ever moves a book forward:
not_started -> in_progress -> finished. ``plan_manual_override`` is the
separate, explicitly named path used for data corrections; it ignores the
table and only works out which timestamps the correction has to touch.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .models import Book, ReadingState, is_valid_reading_state

READING_STATE_TRANSITIONS: Dict[ReadingState, Tuple[ReadingState, ...]] = {
    ReadingState.NOT_STARTED: (ReadingState.IN_PROGRESS,),
    ReadingState.IN_PROGRESS: (ReadingState.FINISHED,),
    ReadingState.FINISHED: (),
}

# Marks a timestamp that the override must clear rather than leave untouched.
CLEAR = object()


def coerce_state(value: Any) -> Optional[ReadingState]:
    if isinstance(value, ReadingState):
        return value
    if is_valid_reading_state(value):
        return ReadingState(value)
    return None


def allowed_transitions(current: Any) -> Tuple[ReadingState, ...]:
    state = coerce_state(current)
    if state is None:
        return ()
    return READING_STATE_TRANSITIONS[state]


def can_transition(current: Any, next_state: Any) -> bool:
    target = coerce_state(next_state)
    if target is None:
        return False
    return target in allowed_transitions(current)


@dataclass(frozen=True)
class StateOverride:
    """
    Outcome of a manual state override. ``started_at``/``finished_at`` hold a
    new timestamp, ``CLEAR``, or ``None`` when the field is left as is.
    """

    previous_state: ReadingState
    new_state: ReadingState
    started_at: Any = None
    finished_at: Any = None

    @property
    def changed(self) -> bool:
        return self.previous_state != self.new_state

    def apply(self, book: Book) -> None:
        book.state = self.new_state
        if self.started_at is CLEAR:
            book.started_at = None
        elif self.started_at is not None:
            book.started_at = self.started_at
        if self.finished_at is CLEAR:
            book.finished_at = None
        elif self.finished_at is not None:
            book.finished_at = self.finished_at


def plan_manual_override(book: Book, new_state: Any, now: datetime) -> StateOverride:
    target = coerce_state(new_state)
    if target is None:
        raise ValueError(f"Unknown reading state: {new_state!r}")

    current = book.state
    if target == current:
        return StateOverride(previous_state=current, new_state=target)

    started_at: Any = None
    finished_at: Any = None
    if target == ReadingState.IN_PROGRESS:
        if current == ReadingState.NOT_STARTED:
            started_at = now
        if current == ReadingState.FINISHED:
            finished_at = CLEAR
    elif target == ReadingState.FINISHED:
        if book.finished_at is None:
            finished_at = now
        if book.started_at is None:
            started_at = now
    else:
        started_at = CLEAR
        finished_at = CLEAR

    return StateOverride(
        previous_state=current,
        new_state=target,
        started_at=started_at,
        finished_at=finished_at,
    )
