from auth_service import AuthClient
from profile_resolver import ProfileResolver
from session_store import SessionState, SessionStore
from tests.conftest import profile
from tests.fakes import fake_backend


def make_store(directory, fallback, backend=None, token=None):
    backend = backend or fake_backend()
    return SessionStore(AuthClient(directory, token), ProfileResolver(fallback, backend), fallback)


def test_starts_unknown_and_loading(directory, fallback):
    store = make_store(directory, fallback)
    assert store.state is SessionState.UNKNOWN
    assert store.loading


def test_no_token_is_anonymous(directory, fallback):
    store = make_store(directory, fallback).start()
    assert store.state is SessionState.ANONYMOUS
    assert not store.loading
    assert store.identity is None and store.profile is None


def test_valid_token_attaches_profile(directory, fallback):
    backend = fake_backend()
    session = AuthClient(directory).sign_up("ana@example.com", "secret123")
    backend.profiles.rows[session.user.id] = profile(session.user.id, points=12)

    store = make_store(directory, fallback, backend, session.access_token).start()

    assert store.state is SessionState.AUTHENTICATED
    assert store.identity.id == session.user.id
    assert store.profile.points == 12
    # the fallback store was initialized on the way
    assert fallback.compute_stats().total_reports == 5


def test_sign_in_and_sign_out_events_move_state(directory, fallback):
    AuthClient(directory).sign_up("ana@example.com", "secret123")
    store = make_store(directory, fallback).start()
    assert store.state is SessionState.ANONYMOUS

    session = store.auth.sign_in("ana@example.com", "secret123")
    fallback.upsert_profile(session.user.id, "Ana")
    assert store.state is SessionState.AUTHENTICATED
    assert store.reload_profile().full_name == "Ana"

    store.auth.sign_out()
    assert store.state is SessionState.ANONYMOUS
    assert store.profile is None


def test_close_unsubscribes(directory, fallback):
    AuthClient(directory).sign_up("ana@example.com", "secret123")
    with make_store(directory, fallback) as store:
        pass
    store.auth.sign_in("ana@example.com", "secret123")
    assert store.state is SessionState.ANONYMOUS


def test_profile_errors_do_not_block_session(directory, fallback, monkeypatch):
    session = AuthClient(directory).sign_up("ana@example.com", "secret123")

    def broken(user_id):
        raise RuntimeError("boom")

    store = make_store(directory, fallback, token=session.access_token)
    monkeypatch.setattr(store.resolver, "resolve", broken)
    store.start()
    assert store.state is SessionState.AUTHENTICATED
    assert store.profile is None
