from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class GatePolicy:
    max_failed_attempts: int = 3
    lockout_minutes: int = 15
    rate_window_seconds: int = 300
    rate_max_attempts: int = 5
    attempt_history: int = 20
    session_timeout_seconds: int = 30 * 60
    idle_timeout_seconds: int = 10 * 60
    countdown_interval_seconds: float = 1
    sync_interval_seconds: float = 5
    count_backend_errors: bool = True

    @classmethod
    def from_config(cls, config: Mapping) -> "GatePolicy":
        """
        Build the policy from a flat Flask config mapping.
        Missing keys fall back to the defaults above.
        """
        defaults = cls()

        def pick(key, attr):
            return config.get(key, getattr(defaults, attr))

        return cls(
            max_failed_attempts=int(pick("ADMIN_MAX_FAILED_ATTEMPTS", "max_failed_attempts")),
            lockout_minutes=int(pick("ADMIN_LOCKOUT_MINUTES", "lockout_minutes")),
            rate_window_seconds=int(pick("ADMIN_RATE_WINDOW_SECONDS", "rate_window_seconds")),
            rate_max_attempts=int(pick("ADMIN_RATE_MAX_ATTEMPTS", "rate_max_attempts")),
            attempt_history=int(pick("ADMIN_ATTEMPT_HISTORY", "attempt_history")),
            session_timeout_seconds=int(pick("ADMIN_SESSION_TIMEOUT_SECONDS", "session_timeout_seconds")),
            idle_timeout_seconds=int(pick("ADMIN_IDLE_TIMEOUT_SECONDS", "idle_timeout_seconds")),
            countdown_interval_seconds=float(pick("ADMIN_COUNTDOWN_INTERVAL_SECONDS", "countdown_interval_seconds")),
            sync_interval_seconds=float(pick("ADMIN_SYNC_INTERVAL_SECONDS", "sync_interval_seconds")),
            count_backend_errors=bool(pick("ADMIN_COUNT_BACKEND_ERRORS", "count_backend_errors")),
        )
