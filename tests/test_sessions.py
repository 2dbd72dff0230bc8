from datetime import timedelta

from authz_primer.sessions import SessionManager


def _age(manager, session_id, seconds):
    manager._sessions[session_id]['created_at'] -= timedelta(seconds=seconds)


def test_create_and_get_session():
    manager = SessionManager()
    sid = manager.create_session({'user_id': 7})
    assert manager.get_session(sid) == {'user_id': 7}
    assert len(manager) == 1


def test_session_payload_is_copied():
    data = {'user_id': 1}
    manager = SessionManager()
    sid = manager.create_session(data)
    data['user_id'] = 2
    assert manager.get_session(sid)['user_id'] == 1


def test_unknown_and_empty_ids_return_none():
    manager = SessionManager()
    assert manager.get_session("nope") is None
    assert manager.get_session(None) is None
    assert manager.get_session("") is None


def test_expired_session_is_dropped():
    manager = SessionManager(expiry_seconds=60)
    sid = manager.create_session({'user_id': 1})
    _age(manager, sid, 61)
    assert manager.get_session(sid) is None
    assert len(manager) == 0


def test_get_session_refreshes_last_activity():
    manager = SessionManager()
    sid = manager.create_session()
    manager._sessions[sid]['last_activity'] -= timedelta(seconds=30)
    before = manager._sessions[sid]['last_activity']
    manager.get_session(sid)
    assert manager._sessions[sid]['last_activity'] > before


def test_update_session_sets_and_removes_keys():
    manager = SessionManager()
    sid = manager.create_session({'user_id': 1})
    assert manager.update_session(sid, page_views=3) is True
    assert manager.get_session(sid) == {'user_id': 1, 'page_views': 3}
    manager.update_session(sid, user_id=None)
    assert manager.get_session(sid) == {'page_views': 3}
    assert manager.update_session("missing", user_id=1) is False


def test_revoke_session():
    manager = SessionManager()
    sid = manager.create_session({'user_id': 1})
    assert manager.revoke_session(sid) is True
    assert manager.revoke_session(sid) is False
    assert manager.revoke_session(None) is False
    assert manager.get_session(sid) is None


def test_cleanup_expired_counts_removed():
    manager = SessionManager(expiry_seconds=60)
    old = manager.create_session({'user_id': 1})
    fresh = manager.create_session({'user_id': 2})
    _age(manager, old, 120)
    assert manager.cleanup_expired() == 1
    assert manager.get_session(fresh) == {'user_id': 2}
    assert manager.cleanup_expired() == 0


def test_session_ids_are_unique():
    manager = SessionManager()
    ids = {manager.create_session() for _ in range(50)}
    assert len(ids) == 50
