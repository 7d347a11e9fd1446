import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from security.policy import GatePolicy
from security.rate_limit import AttemptHistory, is_rate_limited
from security.state import LoginAttempt, SecurityState, utcnow


class AttemptTracker:
    """
    Failed-attempt counter, lockout window and rate limiter for one tab.
    Never raises; callers get booleans and messages back.
    """

    def __init__(self, state: SecurityState, policy: GatePolicy,
                 clock: Callable[[], datetime] = utcnow):
        self.state = state
        self.policy = policy
        self.clock = clock
        self.history = AttemptHistory(policy.attempt_history)

    def is_locked(self) -> bool:
        until = self.state.lockout_until
        return until is not None and until > self.clock()

    def lockout_remaining(self) -> int:
        """
        Returns seconds left on the lockout (0 when not locked).
        """
        if not self.is_locked():
            return 0
        seconds = (self.state.lockout_until - self.clock()).total_seconds()
        return max(int(math.ceil(seconds)), 1)

    def is_rate_limited(self) -> bool:
        return is_rate_limited(
            self.history,
            self.clock(),
            self.policy.rate_window_seconds,
            self.policy.rate_max_attempts,
        )

    def record_failure(self) -> str:
        """
        Increments the failure counter, locking once the threshold is hit.
        Returns the message to show the user.
        """
        self.state.failed_attempts += 1

        if self.state.failed_attempts >= self.policy.max_failed_attempts:
            self.state.lockout_until = self.clock() + timedelta(minutes=self.policy.lockout_minutes)
            return (
                f"Too many failed attempts. Account locked for "
                f"{self.policy.lockout_minutes} minutes."
            )

        remaining = self.policy.max_failed_attempts - self.state.failed_attempts
        return f"Invalid credentials. {remaining} attempts remaining."

    def lock_message(self) -> str:
        minutes = max(int(math.ceil(self.lockout_remaining() / 60)), 1)
        return f"Account locked due to too many failed attempts. Try again in {minutes} minutes."

    def rate_limit_message(self) -> str:
        minutes = max(self.policy.rate_window_seconds // 60, 1)
        return f"Too many login attempts. Please wait {minutes} minutes before trying again."

    def record_attempt(self, success: bool, ip: str = "unknown", country: str = "unknown",
                       session_id: Optional[str] = None) -> LoginAttempt:
        attempt = LoginAttempt(
            timestamp=self.clock(),
            success=success,
            ip=ip,
            country=country,
            session_id=session_id,
        )
        self.history.append(attempt)
        return attempt

    def reset(self) -> None:
        """
        Clears failure counter and lockout after a successful login.
        """
        self.state.failed_attempts = 0
        self.state.lockout_until = None

    @property
    def attempts_remaining(self) -> int:
        return max(self.policy.max_failed_attempts - self.state.failed_attempts, 0)
