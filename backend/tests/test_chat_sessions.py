import threading
import uuid

from common.chat_sessions import ChatSessionStore


def test_unknown_chat_has_no_active_project():
    store = ChatSessionStore()
    assert store.get_active_project(1) is None


def test_set_then_get_returns_project():
    store = ChatSessionStore()
    project_id = uuid.uuid4()
    store.set_active_project(1, project_id)
    assert store.get_active_project(1) == project_id


def test_later_set_overwrites():
    store = ChatSessionStore()
    first, second = uuid.uuid4(), uuid.uuid4()
    store.set_active_project(1, first)
    store.set_active_project(1, second)
    assert store.get_active_project(1) == second
    assert len(store) == 1


def test_sessions_are_per_chat():
    store = ChatSessionStore()
    a, b = uuid.uuid4(), uuid.uuid4()
    store.set_active_project(1, a)
    store.set_active_project(2, b)
    assert store.get_active_project(1) == a
    assert store.get_active_project(2) == b


def test_clear_removes_session():
    store = ChatSessionStore()
    store.set_active_project(1, uuid.uuid4())
    store.clear(1)
    store.clear(1)
    assert store.get_active_project(1) is None


def test_concurrent_writers_leave_one_of_their_values():
    store = ChatSessionStore()
    values = [uuid.uuid4() for _ in range(16)]
    threads = [threading.Thread(target=store.set_active_project, args=(7, v)) for v in values]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert store.get_active_project(7) in values
