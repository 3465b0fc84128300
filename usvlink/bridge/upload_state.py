"""
Mission Upload State Machine

Tracks one upload at a time: IDLE -> UPLOADING -> ACCEPTED / REJECTED /
TIMED_OUT. Terminal states allow a new upload; there is no automatic
retry.
"""

from enum import Enum, auto
from typing import Callable, Dict, Optional, Set
import time
import logging

from .types import MissionUploadResult

logger = logging.getLogger(__name__)


class UploadState(Enum):
    """Upload states"""
    IDLE = auto()           # Nothing sent yet
    UPLOADING = auto()      # Clear/count/items in flight
    ACCEPTED = auto()       # Positive ack, count matched
    REJECTED = auto()       # Negative ack or short count
    TIMED_OUT = auto()      # No ack before deadline


# Valid state transitions
VALID_TRANSITIONS: Dict[UploadState, Set[UploadState]] = {
    UploadState.IDLE: {UploadState.UPLOADING},
    UploadState.UPLOADING: {UploadState.ACCEPTED, UploadState.REJECTED, UploadState.TIMED_OUT},
    UploadState.ACCEPTED: {UploadState.UPLOADING},
    UploadState.REJECTED: {UploadState.UPLOADING},
    UploadState.TIMED_OUT: {UploadState.UPLOADING},
}

TERMINAL_STATES = {UploadState.ACCEPTED, UploadState.REJECTED, UploadState.TIMED_OUT}


def state_for_result(result: MissionUploadResult, requested_count: int) -> UploadState:
    """Terminal state an upload result corresponds to"""
    if result.is_timeout:
        return UploadState.TIMED_OUT
    if result.success and result.accepted_waypoint_count == requested_count:
        return UploadState.ACCEPTED
    return UploadState.REJECTED


class UploadStateMachine:
    """
    Upload state tracker

    Shared between the bridge worker and readers of get_status(), so
    transitions are only made through transition_to().
    """

    def __init__(self):
        self._state = UploadState.IDLE
        self._previous_state = UploadState.IDLE
        self._state_enter_time = time.time()
        self._requested_count = 0
        self._last_result: Optional[MissionUploadResult] = None
        self._on_transition: Optional[Callable[[UploadState, UploadState], None]] = None

    @property
    def state(self) -> UploadState:
        """Current state"""
        return self._state

    @property
    def previous_state(self) -> UploadState:
        """Previous state"""
        return self._previous_state

    @property
    def time_in_state(self) -> float:
        """Time in current state (seconds)"""
        return time.time() - self._state_enter_time

    @property
    def is_uploading(self) -> bool:
        return self._state == UploadState.UPLOADING

    @property
    def last_result(self) -> Optional[MissionUploadResult]:
        return self._last_result

    def can_transition_to(self, new_state: UploadState) -> bool:
        """Check if transition to new state is valid"""
        return new_state in VALID_TRANSITIONS.get(self._state, set())

    def transition_to(self, new_state: UploadState) -> bool:
        """
        Attempt to transition to a new state

        Returns:
            True if transition successful
        """
        if not self.can_transition_to(new_state):
            logger.warning(f"Invalid upload transition: {self._state.name} -> {new_state.name}")
            return False

        old_state = self._state
        self._previous_state = old_state
        self._state = new_state
        self._state_enter_time = time.time()

        logger.info(f"Upload state: {old_state.name} -> {new_state.name}")

        if self._on_transition:
            try:
                self._on_transition(old_state, new_state)
            except Exception as e:
                logger.error(f"Error in upload transition callback: {e}")

        return True

    def begin(self, requested_count: int) -> bool:
        """Enter UPLOADING for a mission of requested_count items"""
        if not self.transition_to(UploadState.UPLOADING):
            return False
        self._requested_count = requested_count
        self._last_result = None
        return True

    def finish(self, result: MissionUploadResult) -> UploadState:
        """Move to the terminal state matching result"""
        self._last_result = result
        self.transition_to(state_for_result(result, self._requested_count))
        return self._state

    def on_transition(self, callback: Callable[[UploadState, UploadState], None]):
        """Register callback for any state transition"""
        self._on_transition = callback

    def get_status(self) -> dict:
        """Get state machine status"""
        return {
            'state': self._state.name,
            'previous_state': self._previous_state.name,
            'time_in_state': self.time_in_state,
            'requested_count': self._requested_count,
            'last_result': self._last_result.to_dict() if self._last_result else None,
        }
