"""
Durable key/value storage for one client "profile" (every tab of a browser
shares it), plus the change channel other tabs listen on.

Reads that fail return None and writes that fail are dropped; both are logged.
Callers never see a storage exception.
"""
import logging
import threading
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.storage_entry import StorageEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageEvent:
    namespace: str
    key: str


Listener = Callable[[StorageEvent], None]


class ChangeChannel:
    """Fan-out of storage change events to subscribed tabs."""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: StorageEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                # one broken tab must not stop the others hearing about it
                logger.exception("Storage listener failed for key %s", event.key)

    def __len__(self):
        with self._lock:
            return len(self._listeners)


class KeyValueStorage:
    """Base class: subclasses implement _read/_write/_delete."""

    def __init__(self, namespace: str = "default", channel: Optional[ChangeChannel] = None):
        self.namespace = namespace
        self.channel = channel if channel is not None else ChangeChannel()

    def get_item(self, key: str) -> Optional[str]:
        try:
            return self._read(key)
        except Exception as exc:
            logger.warning("Storage read failed for %s/%s: %s", self.namespace, key, exc)
            return None

    def set_item(self, key: str, value: str) -> bool:
        try:
            self._write(key, value)
        except Exception as exc:
            logger.warning("Storage write failed for %s/%s: %s", self.namespace, key, exc)
            return False
        self.channel.publish(StorageEvent(self.namespace, key))
        return True

    def remove_item(self, key: str) -> bool:
        try:
            self._delete(key)
        except Exception as exc:
            logger.warning("Storage delete failed for %s/%s: %s", self.namespace, key, exc)
            return False
        self.channel.publish(StorageEvent(self.namespace, key))
        return True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.channel.subscribe(listener)

    def _read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, key: str, value: str) -> None:
        raise NotImplementedError

    def _delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    def __init__(self, namespace: str = "default", channel: Optional[ChangeChannel] = None):
        super().__init__(namespace, channel)
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _read(self, key):
        with self._lock:
            return self._data.get(key)

    def _write(self, key, value):
        with self._lock:
            self._data[key] = value

    def _delete(self, key):
        with self._lock:
            self._data.pop(key, None)


class DatabaseStorage(KeyValueStorage):
    """
    StorageEntry rows scoped by namespace.

    Timer threads call in here without a Flask app context, so operations
    push one from `app` when none is active.
    """

    def __init__(self, app, namespace: str, channel: Optional[ChangeChannel] = None):
        super().__init__(namespace, channel)
        self.app = app

    def _context(self):
        return nullcontext() if has_app_context() else self.app.app_context()

    def _row(self, key):
        return StorageEntry.query.filter_by(namespace=self.namespace, key=key).first()

    def _read(self, key):
        with self._context():
            row = self._row(key)
            return row.value if row else None

    def _write(self, key, value):
        with self._context():
            try:
                row = self._row(key)
                if row is None:
                    row = StorageEntry(namespace=self.namespace, key=key, value=value)
                    db.session.add(row)
                else:
                    row.value = value
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                raise

    def _delete(self, key):
        with self._context():
            try:
                StorageEntry.query.filter_by(namespace=self.namespace, key=key).delete()
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                raise


def list_namespaces(app) -> List[str]:
    with app.app_context():
        rows = db.session.query(StorageEntry.namespace).distinct().all()
        return [r[0] for r in rows]
