# src/core/fleet/state_machine.py
"""
Допустимые переходы статусов рейса.
"""

from __future__ import annotations

from src.common.constants import TripStatus


class TripStateMachine:
    ALLOWED_TRANSITIONS: dict[TripStatus, list[TripStatus]] = {
        TripStatus.SCHEDULED: [TripStatus.IN_PROGRESS, TripStatus.CANCELLED],
        TripStatus.IN_PROGRESS: [TripStatus.COMPLETED, TripStatus.CANCELLED],
        TripStatus.COMPLETED: [],
        TripStatus.CANCELLED: [],
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = TripStatus(current_status)
            new = TripStatus(new_status)
        except ValueError:
            return False
        return new in TripStateMachine.ALLOWED_TRANSITIONS.get(curr, [])

    @staticmethod
    def is_final(status: str) -> bool:
        try:
            return not TripStateMachine.ALLOWED_TRANSITIONS[TripStatus(status)]
        except ValueError:
            return False
