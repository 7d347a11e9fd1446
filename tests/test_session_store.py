import json

from security.session_store import CURRENT_SESSION_KEY, SESSIONS_KEY, SessionRepository
from utils.storage import KeyValueStorage, MemoryStorage


class BrokenStorage(KeyValueStorage):
    def _read(self, key):
        raise OSError("storage unavailable")

    def _write(self, key, value):
        raise OSError("storage unavailable")

    def _delete(self, key):
        raise OSError("storage unavailable")


def test_empty_storage_reads_as_absent(repository):
    assert repository.get_session() is None
    assert repository.get_all_sessions() == []
    assert repository.active_count() == 0


def test_malformed_json_reads_as_absent(storage, repository):
    storage.set_item(CURRENT_SESSION_KEY, "{not json")
    storage.set_item(SESSIONS_KEY, "[{\"session_id\": ")
    assert repository.get_session() is None
    assert repository.get_all_sessions() == []


def test_malformed_records_are_skipped(storage, repository, make_session):
    good = make_session("good")
    storage.set_item(SESSIONS_KEY, json.dumps([{"ip": "1.1.1.1"}, good.to_dict(), "junk"]))
    assert [s.session_id for s in repository.get_all_sessions()] == ["good"]


def test_unavailable_storage_never_raises(make_session):
    repository = SessionRepository(BrokenStorage("broken"))
    session = make_session("s1")

    repository.add_or_update(session)
    repository.remove("s1")
    repository.clear_session()
    assert repository.get_session() is None
    assert repository.get_all_sessions() == []
    assert repository.purge_expired(session.last_activity, 60) == []


def test_session_round_trip_keeps_instants(repository, make_session):
    session = make_session("s1", login_ago=120, idle_for=10)
    repository.set_session(session)
    loaded = repository.get_session()
    assert loaded == session


def test_add_or_update_upserts_and_sets_current(repository, make_session):
    first = make_session("s1")
    second = make_session("s2")
    repository.add_or_update(first)
    repository.add_or_update(second)

    updated = make_session("s1", city="Lisbon")
    repository.add_or_update(updated)

    sessions = repository.get_all_sessions()
    assert [s.session_id for s in sessions] == ["s1", "s2"]
    assert sessions[0].city == "Lisbon"
    assert repository.get_session().session_id == "s1"


def test_remove_clears_pointer_only_for_matching_id(repository, make_session):
    repository.add_or_update(make_session("s1"))
    repository.add_or_update(make_session("s2"))

    repository.remove("s1")
    assert repository.get_session().session_id == "s2"
    assert [s.session_id for s in repository.get_all_sessions()] == ["s2"]

    repository.remove("s2")
    assert repository.get_session() is None
    assert repository.get_all_sessions() == []


def test_purge_removes_exactly_expired_sessions(clock, repository, make_session):
    timeout = 1800
    fresh = [make_session(f"fresh-{i}", idle_for=i * 100) for i in range(4)]
    stale = [make_session(f"stale-{i}", idle_for=timeout + i) for i in range(3)]
    repository.set_all_sessions(fresh + stale)
    repository.set_session(fresh[0])

    removed = repository.purge_expired(clock(), timeout)

    assert sorted(removed) == sorted(s.session_id for s in stale)
    assert len(repository.get_all_sessions()) == len(fresh)
    assert repository.get_session().session_id == "fresh-0"


def test_purge_clears_pointer_when_current_was_removed(clock, repository, make_session):
    stale = make_session("stale", idle_for=1800)
    repository.set_all_sessions([stale, make_session("fresh")])
    repository.set_session(stale)

    repository.purge_expired(clock(), 1800)

    assert repository.get_session() is None
    assert [s.session_id for s in repository.get_all_sessions()] == ["fresh"]


def test_touch_updates_roster_and_pointer(clock, repository, make_session):
    repository.add_or_update(make_session("s1", idle_for=600))
    clock.advance(5)

    touched = repository.touch("s1", clock())

    assert touched.last_activity == clock()
    assert repository.get_session().last_activity == clock()
    assert repository.get_all_sessions()[0].last_activity == clock()
    assert repository.touch("missing", clock()) is None


def test_roster_changes_notify_other_tabs(channel, make_session):
    tab_a = SessionRepository(MemoryStorage("profile-a", channel))
    seen = []
    tab_a.subscribe(lambda event: seen.append(event.key))

    tab_a.add_or_update(make_session("s1"))
    tab_a.clear_session()

    # pointer writes are not roster changes
    assert seen == [SESSIONS_KEY]


def test_notifications_are_scoped_to_namespace(channel, make_session):
    tab_a = SessionRepository(MemoryStorage("profile-a", channel))
    other_profile = SessionRepository(MemoryStorage("profile-b", channel))
    seen = []
    tab_a.subscribe(lambda event: seen.append(event))

    other_profile.add_or_update(make_session("s1"))
    assert seen == []


def test_unsubscribe_stops_notifications(repository, make_session):
    seen = []
    unsubscribe = repository.subscribe(lambda event: seen.append(event))
    unsubscribe()
    repository.add_or_update(make_session("s1"))
    assert seen == []
