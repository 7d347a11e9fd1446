import json
from datetime import datetime
from typing import Callable, List, Optional

from security.state import AdminSession
from utils.storage import KeyValueStorage, StorageEvent

SESSIONS_KEY = "adminSessions"
CURRENT_SESSION_KEY = "currentAdminSession"


class SessionRepository:
    """
    Current-tab session pointer plus the roster of active admin sessions.

    Read-modify-write with no locking across tabs: the last writer wins.
    The roster is a display of who is logged in, not an authorization source.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    # current-tab pointer

    def get_session(self) -> Optional[AdminSession]:
        return AdminSession.from_dict(self._load(CURRENT_SESSION_KEY))

    def set_session(self, session: AdminSession) -> None:
        self.storage.set_item(CURRENT_SESSION_KEY, json.dumps(session.to_dict()))

    def clear_session(self) -> None:
        self.storage.remove_item(CURRENT_SESSION_KEY)

    # roster

    def get_all_sessions(self) -> List[AdminSession]:
        raw = self._load(SESSIONS_KEY)
        if not isinstance(raw, list):
            return []
        sessions = [AdminSession.from_dict(item) for item in raw]
        return [s for s in sessions if s is not None]

    def set_all_sessions(self, sessions: List[AdminSession]) -> None:
        self.storage.set_item(SESSIONS_KEY, json.dumps([s.to_dict() for s in sessions]))

    def add_or_update(self, session: AdminSession) -> None:
        sessions = self.get_all_sessions()
        for i, existing in enumerate(sessions):
            if existing.session_id == session.session_id:
                sessions[i] = session
                break
        else:
            sessions.append(session)
        self.set_all_sessions(sessions)
        self.set_session(session)

    def remove(self, session_id: str) -> None:
        sessions = self.get_all_sessions()
        self.set_all_sessions([s for s in sessions if s.session_id != session_id])

        current = self.get_session()
        if current and current.session_id == session_id:
            self.clear_session()

    def touch(self, session_id: str, now: datetime) -> Optional[AdminSession]:
        """
        Refreshes last_activity of a session in the roster and, when it is
        the current one, in the pointer. Returns the touched session.
        """
        touched = None
        sessions = self.get_all_sessions()
        for s in sessions:
            if s.session_id == session_id:
                s.last_activity = now
                touched = s
        if touched is not None:
            self.set_all_sessions(sessions)

        current = self.get_session()
        if current and current.session_id == session_id:
            current.last_activity = now
            self.set_session(current)
            touched = touched or current
        return touched

    def purge_expired(self, now: datetime, timeout_seconds: float) -> List[str]:
        """
        Drops roster entries idle for at least `timeout_seconds`.
        Returns the removed session ids.
        """
        sessions = self.get_all_sessions()
        keep = [s for s in sessions if not s.is_expired(now, timeout_seconds)]
        removed = [s.session_id for s in sessions if s.is_expired(now, timeout_seconds)]
        if removed:
            self.set_all_sessions(keep)

        current = self.get_session()
        if current and current.session_id in removed:
            self.clear_session()
        return removed

    def active_count(self) -> int:
        return sum(1 for s in self.get_all_sessions() if s.is_active)

    def subscribe(self, callback: Callable[[StorageEvent], None]) -> Callable[[], None]:
        """
        Calls back whenever the roster key changes in this namespace.
        """
        namespace = self.storage.namespace

        def _filter(event: StorageEvent):
            if event.namespace == namespace and event.key == SESSIONS_KEY:
                callback(event)

        return self.storage.subscribe(_filter)

    def _load(self, key):
        raw = self.storage.get_item(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None
