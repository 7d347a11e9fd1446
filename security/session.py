import math
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from security.policy import GatePolicy
from security.session_store import SessionRepository
from security.state import AdminSession, SecurityState, utcnow
from utils.scheduler import Scheduler, TimerHandle, ThreadingScheduler

COUNTDOWN = "countdown"
SYNC = "sync"
IDLE = "idle"

EXPIRED_TIMEOUT = "timeout"
EXPIRED_IDLE = "idle"
EXPIRED_LOGOUT = "logout"


class SessionLifecycle:
    """
    Owns the three timers of an authenticated tab.

    countdown: absolute session timeout, touches the session every tick
    sync:      purges expired roster entries, refreshes our activity stamp
    idle:      one-shot, re-armed by user activity

    Starting a task cancels the previous task of the same name. expire() is
    safe to call any number of times.
    """

    def __init__(
        self,
        repository: SessionRepository,
        state: SecurityState,
        policy: GatePolicy,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = utcnow,
        lock=None,
        on_expire: Optional[Callable[[str], None]] = None,
        on_sync: Optional[Callable[[], None]] = None,
    ):
        self.repository = repository
        self.state = state
        self.policy = policy
        self.scheduler = scheduler or ThreadingScheduler()
        self.clock = clock
        self.lock = lock or threading.RLock()
        self.on_expire = on_expire
        self.on_sync = on_sync

        self._tasks: Dict[str, TimerHandle] = {}
        self._session_id: Optional[str] = None
        self._login_time: Optional[datetime] = None
        self.remaining_seconds = 0.0

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    def is_running(self, name: str) -> bool:
        handle = self._tasks.get(name)
        return handle is not None and handle.active

    def remaining(self, now: Optional[datetime] = None) -> float:
        if self._login_time is None:
            return 0.0
        now = now or self.clock()
        elapsed = (now - self._login_time).total_seconds()
        return max(0.0, self.policy.session_timeout_seconds - elapsed)

    @property
    def remaining_display(self) -> int:
        return int(math.ceil(self.remaining_seconds))

    def bind(self, session: AdminSession) -> None:
        with self.lock:
            self._session_id = session.session_id
            self._login_time = session.login_time

    def start_timer(self, login_time: datetime) -> None:
        with self.lock:
            self._login_time = login_time
            self.remaining_seconds = self.remaining()
            self._start(
                COUNTDOWN,
                lambda: self.scheduler.call_every(self.policy.countdown_interval_seconds, self._countdown_tick),
            )

    def start_sync(self) -> None:
        with self.lock:
            self._start(
                SYNC,
                lambda: self.scheduler.call_every(self.policy.sync_interval_seconds, self._sync_tick),
            )

    def on_user_activity(self) -> None:
        with self.lock:
            if self._session_id is None:
                return
            now = self.clock()
            self.state.last_activity = now
            self.repository.touch(self._session_id, now)
            self._start(
                IDLE,
                lambda: self.scheduler.call_later(self.policy.idle_timeout_seconds, self._idle_fired),
            )

    def expire(self, reason: str = EXPIRED_TIMEOUT) -> bool:
        """
        Tears the session down. Returns False when there was nothing to tear
        down (already expired or never started).
        """
        with self.lock:
            session_id = self._session_id
            self.stop()
            if session_id is None:
                return False

            self._session_id = None
            self._login_time = None
            self.remaining_seconds = 0.0
            self.repository.remove(session_id)

            if self.on_expire:
                self.on_expire(reason)
            return True

    def stop(self) -> None:
        with self.lock:
            for handle in self._tasks.values():
                handle.cancel()
            self._tasks.clear()

    def sync_now(self) -> None:
        self._sync_tick()

    def _start(self, name, factory):
        previous = self._tasks.pop(name, None)
        if previous is not None:
            previous.cancel()
        self._tasks[name] = factory()

    def _countdown_tick(self):
        with self.lock:
            if self._session_id is None:
                return
            now = self.clock()
            self.remaining_seconds = self.remaining(now)
            if self.remaining_seconds <= 0:
                self.expire(EXPIRED_TIMEOUT)
                return
            self.repository.touch(self._session_id, now)

    def _sync_tick(self):
        with self.lock:
            now = self.clock()
            self.repository.purge_expired(now, self.policy.session_timeout_seconds)

            current = self.repository.get_session()
            if current is not None:
                self.repository.touch(current.session_id, now)
                self.state.last_activity = now

            if self.on_sync:
                self.on_sync()

    def _idle_fired(self):
        with self.lock:
            self._tasks.pop(IDLE, None)
            self.expire(EXPIRED_IDLE)
