from datetime import datetime, timedelta, timezone

import pytest

from security.credentials import CredentialCheck
from security.policy import GatePolicy
from security.session_store import SessionRepository
from security.state import AdminSession
from utils.geolocation import Location
from utils.scheduler import Scheduler, TimerHandle
from utils.storage import ChangeChannel, MemoryStorage


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class ManualHandle(TimerHandle):
    def __init__(self, due, interval, fn):
        self.due = due
        self.interval = interval
        self.fn = fn
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    @property
    def active(self):
        return not self.cancelled and not self.fired


class ManualScheduler(Scheduler):
    """Fires callbacks as the fake clock is advanced."""

    def __init__(self, clock):
        self.clock = clock
        self.handles = []

    def call_later(self, delay, fn):
        handle = ManualHandle(self.clock() + timedelta(seconds=delay), None, fn)
        self.handles.append(handle)
        return handle

    def call_every(self, interval, fn):
        handle = ManualHandle(self.clock() + timedelta(seconds=interval), interval, fn)
        self.handles.append(handle)
        return handle

    def active(self):
        return [h for h in self.handles if h.active]

    def advance(self, seconds):
        target = self.clock() + timedelta(seconds=seconds)
        while True:
            due = [h for h in self.active() if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            self.clock.now = handle.due
            if handle.interval is None:
                handle.fired = True
            else:
                handle.due = handle.due + timedelta(seconds=handle.interval)
            handle.fn()
        self.clock.now = target


class FakeUser:
    def __init__(self, id=1, email="admin@bank.test", is_admin=True):
        self.id = id
        self.email = email
        self.is_admin = is_admin


class FakeValidator:
    """Counts lookups; answers from a fixed table of email -> (password, user)."""

    def __init__(self, users=None, error=None):
        self.users = users or {}
        self.error = error
        self.calls = 0

    def __call__(self, username, password):
        self.calls += 1
        if self.error:
            return CredentialCheck(error=self.error)
        entry = self.users.get((username or "").strip().lower())
        if entry is None or entry[0] != password:
            return CredentialCheck()
        user = entry[1]
        return CredentialCheck(user=user, has_admin_access=user.is_admin)


class FakeResolver:
    def __init__(self, location=None):
        self.location = location or Location("8.8.8.8", "United States", "Mountain View")
        self.calls = []

    def __call__(self, client_ip=None):
        self.calls.append(client_ip)
        return self.location


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def policy():
    return GatePolicy()


@pytest.fixture
def channel():
    return ChangeChannel()


@pytest.fixture
def storage(channel):
    return MemoryStorage("profile-a", channel)


@pytest.fixture
def repository(storage):
    return SessionRepository(storage)


@pytest.fixture
def make_session(clock):
    def _make(session_id, login_ago=0, idle_for=0, **kw):
        now = clock()
        return AdminSession(
            session_id=session_id,
            ip=kw.get("ip", "8.8.8.8"),
            country=kw.get("country", "United States"),
            city=kw.get("city", "Mountain View"),
            login_time=now - timedelta(seconds=login_ago),
            last_activity=now - timedelta(seconds=idle_for),
            is_active=kw.get("is_active", True),
            user_id=kw.get("user_id", "1"),
            email=kw.get("email", "admin@bank.test"),
        )
    return _make


@pytest.fixture
def validator():
    return FakeValidator({
        "admin@bank.test": ("correct-horse", FakeUser(1, "admin@bank.test", True)),
        "teller@bank.test": ("teller-pass", FakeUser(2, "teller@bank.test", False)),
    })


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def app(clock):
    from app import create_app
    from config import Config
    from security.credentials import CredentialValidator
    from security.login_gate import GateRegistry
    from utils.audit import session_end_auditor

    app = create_app(
        Config,
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite://",
        AUTO_CREATE_TABLES=True,
    )
    app.extensions["admin_console"] = GateRegistry(
        app,
        validator=CredentialValidator(),
        resolver=FakeResolver(),
        policy=GatePolicy.from_config(app.config),
        scheduler=ManualScheduler(clock),
        on_session_end=session_end_auditor(app),
    )
    yield app


@pytest.fixture
def db_users(app):
    from models import db
    from models.user import User
    from security.credentials import hash_password

    with app.app_context():
        db.session.add_all([
            User(email="admin@bank.test", password_hash=hash_password("correct-horse", rounds=4),
                 full_name="Ada Admin", is_admin=True),
            User(email="teller@bank.test", password_hash=hash_password("teller-pass", rounds=4),
                 is_admin=False),
        ])
        db.session.commit()
    return app


@pytest.fixture
def client(db_users):
    return db_users.test_client()
