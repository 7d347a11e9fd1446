"""
Value types shared by the admin login gate.

Nothing in here is authoritative: SecurityState and LoginAttempt live only in
a tab's memory, AdminSession is a cached copy kept in client storage.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class LoginAttempt:
    timestamp: datetime
    success: bool
    ip: str = "unknown"
    country: str = "unknown"
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "ip": self.ip,
            "country": self.country,
            "session_id": self.session_id,
        }


@dataclass
class SecurityState:
    failed_attempts: int = 0
    lockout_until: Optional[datetime] = None
    last_activity: datetime = field(default_factory=utcnow)
    session_id: str = ""
    session_start_time: Optional[datetime] = None

    def clear_session(self, now: datetime) -> None:
        # lockout fields are owned by the tracker and survive expiry
        self.session_id = ""
        self.session_start_time = None
        self.last_activity = now


@dataclass
class AdminSession:
    session_id: str
    ip: str
    country: str
    city: str
    login_time: datetime
    last_activity: datetime
    is_active: bool = True
    user_id: str = ""
    email: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["login_time"] = self.login_time.isoformat()
        data["last_activity"] = self.last_activity.isoformat()
        return data

    @classmethod
    def from_dict(cls, data) -> Optional["AdminSession"]:
        """Build a session from decoded JSON; malformed records give None."""
        if not isinstance(data, dict):
            return None
        session_id = data.get("session_id")
        login_time = parse_instant(data.get("login_time"))
        last_activity = parse_instant(data.get("last_activity")) or login_time
        if not isinstance(session_id, str) or not session_id or login_time is None:
            return None
        return cls(
            session_id=session_id,
            ip=str(data.get("ip") or "unknown"),
            country=str(data.get("country") or "unknown"),
            city=str(data.get("city") or "unknown"),
            login_time=login_time,
            last_activity=last_activity,
            is_active=bool(data.get("is_active", True)),
            user_id=str(data.get("user_id") or ""),
            email=str(data.get("email") or ""),
        )

    def is_expired(self, now: datetime, timeout_seconds: float) -> bool:
        return (now - self.last_activity).total_seconds() >= timeout_seconds


# Auth status of one tab. Exactly one of these is held at a time, so a tab
# can't be Authenticated and LockedOut together.

@dataclass(frozen=True)
class Unauthenticated:
    name = "unauthenticated"


@dataclass(frozen=True)
class Authenticating:
    name = "authenticating"


@dataclass(frozen=True)
class Authenticated:
    session: AdminSession
    expires_at: datetime
    name = "authenticated"


@dataclass(frozen=True)
class LockedOut:
    until: datetime
    name = "locked_out"


AuthState = Union[Unauthenticated, Authenticating, Authenticated, LockedOut]
