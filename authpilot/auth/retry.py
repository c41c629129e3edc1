"""
Retry policy for browser attempts as an explicit state machine.

    IDLE ──start──▶ ATTEMPTING ──success──▶ SUCCEEDED
                        │ ──captcha──▶ CAPTCHA_DETECTED ──escalate──▶ ESCALATED
                        │ ──error────▶ RETRYABLE_FAILURE ──retry──▶ ATTEMPTING
                                                         ──give_up─▶ FAILED

``retry`` is only legal while the retry budget lasts; ``give_up`` only once
it is spent. Any other (state, event) pair raises ``InvalidTransition``.
"""

from __future__ import annotations

import logging
from enum import StrEnum

logger = logging.getLogger(__name__)

MAX_RETRIES = 2


class RetryState(StrEnum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    RETRYABLE_FAILURE = "retryable_failure"
    CAPTCHA_DETECTED = "captcha_detected"
    ESCALATED = "escalated"
    FAILED = "failed"


class RetryEvent(StrEnum):
    START = "start"
    SUCCESS = "success"
    CAPTCHA = "captcha"
    ERROR = "error"
    RETRY = "retry"
    GIVE_UP = "give_up"
    ESCALATE = "escalate"


TRANSITIONS: dict[tuple[RetryState, RetryEvent], RetryState] = {
    (RetryState.IDLE, RetryEvent.START): RetryState.ATTEMPTING,
    (RetryState.ATTEMPTING, RetryEvent.SUCCESS): RetryState.SUCCEEDED,
    (RetryState.ATTEMPTING, RetryEvent.CAPTCHA): RetryState.CAPTCHA_DETECTED,
    (RetryState.ATTEMPTING, RetryEvent.ERROR): RetryState.RETRYABLE_FAILURE,
    (RetryState.RETRYABLE_FAILURE, RetryEvent.RETRY): RetryState.ATTEMPTING,
    (RetryState.RETRYABLE_FAILURE, RetryEvent.GIVE_UP): RetryState.FAILED,
    (RetryState.CAPTCHA_DETECTED, RetryEvent.ESCALATE): RetryState.ESCALATED,
}

TERMINAL_STATES = frozenset({RetryState.SUCCEEDED, RetryState.ESCALATED, RetryState.FAILED})


class InvalidTransition(Exception):
    def __init__(self, state: RetryState, event: RetryEvent, reason: str = "") -> None:
        self.state = state
        self.event = event
        msg = f"Cannot apply {event.value!r} in state {state.value!r}"
        super().__init__(f"{msg}: {reason}" if reason else msg)


class RetryMachine:
    """Tracks one bounded sequence of attempts.

    ``attempt`` is 0 for the first try; ``retries_used`` counts only the
    additional attempts.
    """

    def __init__(self, max_retries: int = MAX_RETRIES) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.state = RetryState.IDLE
        self.attempt = 0
        self.history: list[RetryState] = [self.state]

    @property
    def retries_used(self) -> int:
        return self.attempt

    @property
    def can_retry(self) -> bool:
        return self.attempt < self.max_retries

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def fire(self, event: RetryEvent) -> RetryState:
        target = TRANSITIONS.get((self.state, event))
        if target is None:
            raise InvalidTransition(self.state, event)
        if event == RetryEvent.RETRY and not self.can_retry:
            raise InvalidTransition(self.state, event, "retry budget exhausted")
        if event == RetryEvent.GIVE_UP and self.can_retry:
            raise InvalidTransition(self.state, event, "retries remain")

        if event == RetryEvent.RETRY:
            self.attempt += 1
        logger.debug("Retry FSM: %s --%s--> %s", self.state, event, target)
        self.state = target
        self.history.append(target)
        return target

    def after_failure(self) -> RetryState:
        """From RETRYABLE_FAILURE: retry if budget remains, else give up."""
        return self.fire(RetryEvent.RETRY if self.can_retry else RetryEvent.GIVE_UP)
