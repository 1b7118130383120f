"""Quest state machine.

State progression: draft -> open -> active -> completed
Cancellation is only reachable from open, before the quest starts.
Transitions are validated; no skipping states or going backwards.
"""

from __future__ import annotations

import math
from datetime import datetime

from rundao.clock import ensure_utc
from rundao.db.models import Quest
from rundao.errors import StateConflictError

VALID_TRANSITIONS: dict[str, list[str]] = {
    "draft": ["open"],
    "open": ["active", "cancelled"],
    "active": ["completed"],
    "completed": [],
    "cancelled": [],
}


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises StateConflictError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise StateConflictError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


def transition(quest: Quest, target_status: str) -> None:
    validate_transition(quest.status, target_status)
    quest.status = target_status


def has_started(quest: Quest, now: datetime) -> bool:
    return ensure_utc(now) >= ensure_utc(quest.start_at)


def has_ended(quest: Quest, now: datetime) -> bool:
    return ensure_utc(now) >= ensure_utc(quest.end_at)


def due_transition(quest: Quest, now: datetime) -> str | None:
    """Status an open quest moves to on its own once its start time passes.

    With at least one staked participant it becomes active; an empty quest
    is cancelled since nobody is left to run it.
    """
    if quest.status != "open" or not has_started(quest, now):
        return None
    return "active" if quest.participant_count > 0 else "cancelled"


def quest_weeks(quest: Quest) -> int:
    days = (ensure_utc(quest.end_at) - ensure_utc(quest.start_at)).total_seconds() / 86400
    return max(1, math.ceil(days / 7))


def required_sessions(quest: Quest) -> int:
    """Qualifying runs a participant needs over the whole quest window."""
    return quest.times_per_week * quest_weeks(quest)


def within_window(quest: Quest, moment: datetime) -> bool:
    moment = ensure_utc(moment)
    return ensure_utc(quest.start_at) <= moment < ensure_utc(quest.end_at)
