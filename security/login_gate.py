"""
Admin login gate for one console tab.

Composes the attempt tracker, credential check, geolocation, session
repository and session timers into a small state machine:

    Unauthenticated -> Authenticating -> Authenticated -> Unauthenticated
                    +-> LockedOut (until the lockout runs out)

Nothing raises out of here. Every rejected attempt ends with exactly one
message for the user.
"""
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from security.bruteforce import AttemptTracker
from security.credentials import CredentialCheck
from security.policy import GatePolicy
from security.session import EXPIRED_LOGOUT, SessionLifecycle
from security.session_store import SessionRepository
from security.state import (
    AdminSession,
    Authenticated,
    Authenticating,
    AuthState,
    LockedOut,
    SecurityState,
    Unauthenticated,
    utcnow,
)
from utils.geolocation import DETECTION_FAILED_LOCATION, Location
from utils.scheduler import Scheduler
from utils.storage import ChangeChannel, DatabaseStorage, MemoryStorage

logger = logging.getLogger(__name__)

AUTHENTICATED = "authenticated"
INVALID_CREDENTIALS = "invalid_credentials"
FORBIDDEN = "forbidden"
LOCKED = "locked"
RATE_LIMITED = "rate_limited"
BACKEND_ERROR = "backend_error"

ACCESS_DENIED_MESSAGE = "Access denied. Admin privileges required."
SESSION_EXPIRED_MESSAGE = "Session expired for security reasons. Please log in again."
AUTH_FAILED_MESSAGE = "Authentication failed. Please try again."

RECENT_ITEMS = 3


@dataclass(frozen=True)
class LoginOutcome:
    status: str
    message: str = ""
    session: Optional[AdminSession] = None
    user_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == AUTHENTICATED


class LoginGate:
    def __init__(
        self,
        repository: SessionRepository,
        validator: Callable[[str, str], CredentialCheck],
        resolver: Callable[[Optional[str]], Location],
        policy: Optional[GatePolicy] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = utcnow,
        on_session_end: Optional[Callable[[str, AdminSession], None]] = None,
    ):
        self.repository = repository
        self.validator = validator
        self.resolver = resolver
        self.policy = policy or GatePolicy()
        self.clock = clock
        self.lock = threading.RLock()

        self.security = SecurityState(last_activity=clock())
        self.tracker = AttemptTracker(self.security, self.policy, clock)
        self.lifecycle = SessionLifecycle(
            repository,
            self.security,
            self.policy,
            scheduler=scheduler,
            clock=clock,
            lock=self.lock,
            on_expire=self._on_expired,
            on_sync=self._refresh_count,
        )

        self._state: AuthState = Unauthenticated()
        self.message = ""
        self.form_username = ""
        self.active_sessions = 0
        self.on_session_end = on_session_end
        self._unsubscribe = self.repository.subscribe(lambda event: self._refresh_count())

    @property
    def state(self) -> AuthState:
        state = self._state
        if isinstance(state, LockedOut) and state.until <= self.clock():
            return Unauthenticated()
        return state

    @property
    def is_authenticated(self) -> bool:
        return isinstance(self._state, Authenticated)

    def mount(self) -> bool:
        """
        Restores the persisted current-tab session when it is younger than the
        session timeout, otherwise purges it. Returns True when restored.
        """
        with self.lock:
            now = self.clock()
            restored = False
            session = self.repository.get_session()
            if session is not None:
                age = (now - session.login_time).total_seconds()
                if age < self.policy.session_timeout_seconds:
                    self._enter(session, now)
                    restored = True
                else:
                    logger.info("Dropping stale admin session %s", session.session_id)
                    self.repository.remove(session.session_id)

            self.repository.purge_expired(now, self.policy.session_timeout_seconds)
            self._refresh_count()
            return restored

    def submit(self, username: str, password: str, client_ip: Optional[str] = None) -> LoginOutcome:
        with self.lock:
            if self.is_authenticated:
                return LoginOutcome(AUTHENTICATED, session=self._state.session,
                                    user_id=self._state.session.user_id)

            self.form_username = (username or "").strip()

            if self.tracker.is_locked():
                self._state = LockedOut(self.security.lockout_until)
                return self._reject(LOCKED, self.tracker.lock_message(), keep_state=True)

            if self.tracker.is_rate_limited():
                return self._reject(RATE_LIMITED, self.tracker.rate_limit_message())

            self._state = Authenticating()
            check = self._check_credentials(username, password)
            failed_ip = client_ip or "unknown"

            if check.user is None:
                if check.error and not self.policy.count_backend_errors:
                    self.tracker.record_attempt(False, ip=failed_ip)
                    return self._reject(BACKEND_ERROR, AUTH_FAILED_MESSAGE)

                message = self.tracker.record_failure()
                self.tracker.record_attempt(False, ip=failed_ip)
                if self.tracker.is_locked():
                    self._state = LockedOut(self.security.lockout_until)
                    return self._reject(LOCKED, message, keep_state=True)
                return self._reject(INVALID_CREDENTIALS, message)

            if not check.has_admin_access:
                self.tracker.record_attempt(False, ip=failed_ip)
                return self._reject(FORBIDDEN, ACCESS_DENIED_MESSAGE)

            return self._authenticate(check, client_ip)

    def logout(self) -> bool:
        with self.lock:
            ended = self.lifecycle.expire(EXPIRED_LOGOUT)
            if not ended:
                self._on_expired(EXPIRED_LOGOUT)
            return ended

    def on_user_activity(self) -> None:
        self.lifecycle.on_user_activity()

    def close(self) -> None:
        """
        Drops the tab: cancels its timers and stops listening for roster
        changes. The persisted session is left alone, so a later mount
        of the same tab restores it.
        """
        with self.lock:
            self.lifecycle.stop()
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None

    def snapshot(self) -> Dict:
        with self.lock:
            state = self.state
            session = state.session if isinstance(state, Authenticated) else None
            return {
                "status": state.name,
                "authenticated": session is not None,
                "locked": self.tracker.is_locked(),
                "lockout_remaining_seconds": self.tracker.lockout_remaining(),
                "failed_attempts": self.security.failed_attempts,
                "attempts_remaining": self.tracker.attempts_remaining,
                "active_sessions": self.active_sessions,
                "remaining_seconds": self.lifecycle.remaining_display if session else 0,
                "session_id": short_session_id(session.session_id) if session else "",
                "email": session.email if session else "",
                "message": self.message,
                "username": self.form_username,
                "recent_sessions": [s.to_dict() for s in self.repository.get_all_sessions()[-RECENT_ITEMS:]],
                "recent_attempts": [a.to_dict() for a in self.tracker.history.recent(RECENT_ITEMS)],
            }

    def _check_credentials(self, username, password) -> CredentialCheck:
        try:
            return self.validator(username, password)
        except Exception as exc:
            logger.error("Credential validator raised", exc_info=exc)
            return CredentialCheck(error=str(exc))

    def _resolve_location(self, client_ip) -> Location:
        try:
            return self.resolver(client_ip)
        except Exception as exc:
            logger.error("Geolocation resolver raised", exc_info=exc)
            return DETECTION_FAILED_LOCATION

    def _authenticate(self, check: CredentialCheck, client_ip) -> LoginOutcome:
        session_id = str(uuid.uuid4())
        location = self._resolve_location(client_ip)

        now = self.clock()
        user = check.user
        session = AdminSession(
            session_id=session_id,
            ip=location.ip,
            country=location.country,
            city=location.city,
            login_time=now,
            last_activity=now,
            is_active=True,
            user_id=str(getattr(user, "id", "") or ""),
            email=getattr(user, "email", "") or "",
        )

        self.tracker.reset()
        self._enter(session, now)
        self.tracker.record_attempt(True, ip=location.ip, country=location.country, session_id=session_id)
        self.message = ""
        self.form_username = ""
        logger.info("Admin session %s started for user %s", short_session_id(session_id), session.user_id)
        return LoginOutcome(AUTHENTICATED, session=session, user_id=session.user_id)

    def _enter(self, session: AdminSession, now: datetime) -> None:
        session.last_activity = now
        self.repository.add_or_update(session)

        self.security.session_id = session.session_id
        self.security.session_start_time = session.login_time
        self.security.last_activity = now

        self.lifecycle.bind(session)
        self.lifecycle.start_timer(session.login_time)
        self.lifecycle.start_sync()
        self.lifecycle.on_user_activity()

        expires_at = session.login_time + timedelta(seconds=self.policy.session_timeout_seconds)
        self._state = Authenticated(session, expires_at)
        self._refresh_count()

    def _reject(self, status: str, message: str, keep_state: bool = False) -> LoginOutcome:
        if not keep_state:
            self._state = Unauthenticated()
        self.message = message
        return LoginOutcome(status, message)

    def _on_expired(self, reason: str) -> None:
        # runs with self.lock held (lifecycle shares it)
        state = self._state
        session = state.session if isinstance(state, Authenticated) else None
        if reason != EXPIRED_LOGOUT:
            logger.info("Admin session %s expired (%s)", short_session_id(self.security.session_id), reason)
        self.security.clear_session(self.clock())
        self._state = Unauthenticated()
        self.form_username = ""
        self.message = "" if reason == EXPIRED_LOGOUT else SESSION_EXPIRED_MESSAGE
        self._refresh_count()

        if session is not None and reason != EXPIRED_LOGOUT and self.on_session_end:
            try:
                self.on_session_end(reason, session)
            except Exception:
                logger.exception("Session end hook failed for %s", short_session_id(session.session_id))

    def _refresh_count(self) -> None:
        # no lock: storage listeners fire from other tabs' threads
        self.active_sessions = self.repository.active_count()


def short_session_id(session_id: str) -> str:
    if not session_id:
        return ""
    return session_id[:8] + "..."


class GateRegistry:
    """
    One LoginGate per (profile, tab). Tabs of a profile share the same
    storage namespace, so they see each other's roster writes.

    Bounded: unauthenticated gates idle past the session timeout are
    dropped on the next lookup, and the per-profile and overall caps
    evict the least recently seen gate, preferring ones that hold no
    session and no lockout.
    """

    def __init__(self, app, validator, resolver, policy: GatePolicy,
                 scheduler: Optional[Scheduler] = None, storage_factory=None,
                 clock: Optional[Callable[[], datetime]] = None,
                 max_tabs_per_profile: Optional[int] = None, max_gates: Optional[int] = None,
                 on_session_end: Optional[Callable[[str, AdminSession], None]] = None):
        self.app = app
        self.validator = validator
        self.resolver = resolver
        self.policy = policy
        self.scheduler = scheduler
        self.clock = clock
        self.on_session_end = on_session_end
        self.channel = ChangeChannel()
        self.storage_factory = storage_factory or (
            lambda namespace: DatabaseStorage(app, namespace, self.channel)
        )
        self.max_tabs_per_profile = max_tabs_per_profile or app.config.get("CONSOLE_MAX_TABS_PER_PROFILE", 8)
        self.max_gates = max_gates or app.config.get("CONSOLE_MAX_GATES", 1000)

        self._gates: Dict[Tuple[str, str], LoginGate] = {}
        self._last_seen: Dict[Tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return (self.clock or utcnow)()

    def _gate_kwargs(self):
        kwargs = {"scheduler": self.scheduler, "on_session_end": self.on_session_end}
        if self.clock is not None:
            kwargs["clock"] = self.clock
        return kwargs

    def gate_for(self, profile: str, tab: str) -> LoginGate:
        key = (profile, tab)
        now = self._now()
        evicted = []
        with self._lock:
            gate = self._gates.get(key)
            if gate is not None:
                self._last_seen[key] = now
                return gate

            evicted.extend(self._sweep_idle(now))
            same_profile = [k for k in self._gates if k[0] == profile]
            if len(same_profile) >= self.max_tabs_per_profile:
                evicted.append(self._evict_one(same_profile))
            if len(self._gates) >= self.max_gates:
                evicted.append(self._evict_one(list(self._gates)))

            repository = SessionRepository(self.storage_factory(profile))
            gate = LoginGate(repository, self.validator, self.resolver, self.policy, **self._gate_kwargs())
            self._gates[key] = gate
            self._last_seen[key] = now

        for old in evicted:
            old.close()
        gate.mount()
        return gate

    def transient_gate(self) -> LoginGate:
        """
        Unregistered gate over empty private storage, for read-only requests
        from a client that has no profile yet.
        """
        repository = SessionRepository(MemoryStorage("transient"))
        return LoginGate(repository, self.validator, self.resolver, self.policy, **self._gate_kwargs())

    def _sweep_idle(self, now: datetime):
        cutoff = now - timedelta(seconds=self.policy.session_timeout_seconds)
        stale = [
            key for key, gate in self._gates.items()
            if not gate.is_authenticated and self._last_seen[key] <= cutoff
        ]
        return [self._drop(key) for key in stale]

    def _evict_one(self, keys) -> LoginGate:
        def rank(key):
            gate = self._gates[key]
            return (gate.is_authenticated, gate.tracker.is_locked(), self._last_seen[key])

        return self._drop(min(keys, key=rank))

    def _drop(self, key) -> LoginGate:
        self._last_seen.pop(key, None)
        return self._gates.pop(key)

    def __len__(self):
        return len(self._gates)
