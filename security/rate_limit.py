from collections import deque
from datetime import datetime, timedelta
from typing import Iterable, List

from security.state import LoginAttempt


class AttemptHistory:
    """
    Most recent login attempts of one tab, oldest first.
    Bounded: appending past `limit` drops from the front.
    """

    def __init__(self, limit: int = 20):
        self.limit = max(int(limit), 1)
        self._items = deque(maxlen=self.limit)

    def append(self, attempt: LoginAttempt) -> None:
        self._items.append(attempt)

    def recent(self, count: int) -> List[LoginAttempt]:
        if count <= 0:
            return []
        return list(self._items)[-count:]

    def __iter__(self):
        return iter(list(self._items))

    def __len__(self):
        return len(self._items)


def count_in_window(attempts: Iterable[LoginAttempt], now: datetime, window_seconds: int) -> int:
    window_start = now - timedelta(seconds=window_seconds)
    return sum(1 for a in attempts if a.timestamp > window_start)


def is_rate_limited(attempts: Iterable[LoginAttempt], now: datetime,
                    window_seconds: int, max_attempts: int) -> bool:
    """
    Sliding window over the attempt history, regardless of outcome.
    """
    return count_in_window(attempts, now, window_seconds) >= max_attempts
