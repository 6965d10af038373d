import threading

import pytest
from pymongo.errors import DuplicateKeyError

from auth_service import AuthClient, AuthEvent, MongoUserDirectory, create_token, decode_token
from errors import AuthenticationError
from schemas import Identity


def test_sign_up_signs_in_and_emits(directory):
    client = AuthClient(directory)
    events = []
    client.on_auth_state_change(lambda event, session: events.append((event, session)))

    session = client.sign_up("Ana@Example.com", "secret123", {"full_name": "Ana"})

    assert session.user.email == "ana@example.com"
    assert session.user.user_metadata == {"full_name": "Ana"}
    assert client.get_session() == session
    assert events == [(AuthEvent.SIGNED_IN, session)]
    assert len(directory) == 1


def test_duplicate_email_is_rejected(directory):
    AuthClient(directory).sign_up("ana@example.com", "secret123")
    with pytest.raises(AuthenticationError):
        AuthClient(directory).sign_up("ana@example.com", "other-pass")


def test_sign_in_checks_password(directory):
    AuthClient(directory).sign_up("ana@example.com", "secret123")
    with pytest.raises(AuthenticationError):
        AuthClient(directory).sign_in("ana@example.com", "wrong-pass")
    assert AuthClient(directory).sign_in("ana@example.com", "secret123").user.email == "ana@example.com"


def test_bearer_token_restores_session(directory):
    token = AuthClient(directory).sign_up("ana@example.com", "secret123").access_token
    restored = AuthClient(directory, token).get_session()
    assert restored.user.email == "ana@example.com"


def test_garbage_token_is_anonymous(directory):
    assert AuthClient(directory, "not-a-jwt").get_session() is None


def test_sign_out_revokes_token(directory):
    token = AuthClient(directory).sign_up("ana@example.com", "secret123").access_token
    client = AuthClient(directory, token)
    events = []
    client.on_auth_state_change(lambda event, session: events.append(event))

    client.sign_out()

    assert client.get_session() is None
    assert events == [AuthEvent.SIGNED_OUT]
    assert AuthClient(directory, token).get_session() is None


def test_refresh_replaces_token(directory):
    old = AuthClient(directory).sign_up("ana@example.com", "secret123").access_token
    client = AuthClient(directory, old)
    events = []
    client.on_auth_state_change(lambda event, session: events.append(event))

    new = client.refresh_session()

    assert new.access_token != old
    assert events == [AuthEvent.TOKEN_REFRESHED]
    assert AuthClient(directory, old).get_session() is None
    assert AuthClient(directory, new.access_token).get_session() is not None


def test_unsubscribe_stops_notifications(directory):
    client = AuthClient(directory)
    events = []
    sub = client.on_auth_state_change(lambda event, session: events.append(event))
    sub.unsubscribe()
    client.sign_up("ana@example.com", "secret123")
    assert events == []


def test_token_round_trip():
    session = create_token(Identity(id="u1", email="u1@example.com"))
    claims = decode_token(session.access_token)
    assert claims["sub"] == "u1"
    assert claims["jti"]


def test_tampered_token_is_rejected(monkeypatch):
    token = create_token(Identity(id="u1", email="u1@example.com")).access_token
    monkeypatch.setattr("config.JWT_SECRET", "another-secret")
    with pytest.raises(AuthenticationError, match="JWT"):
        decode_token(token)


def test_directory_rejects_second_account_for_email(directory):
    directory.create("ana@example.com", "hash", {})
    with pytest.raises(AuthenticationError, match="already registered"):
        directory.create("ANA@example.com", "hash", {})
    assert len(directory) == 1


def test_concurrent_sign_ups_create_one_account(directory):
    barrier = threading.Barrier(4)
    sessions, errors = [], []

    def sign_up():
        barrier.wait()
        try:
            sessions.append(AuthClient(directory).sign_up("dup@example.com", "secret123"))
        except AuthenticationError as e:
            errors.append(e)

    threads = [threading.Thread(target=sign_up) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(sessions) == 1
    assert len(errors) == 3
    assert len(directory) == 1


class _UniqueEmails:
    def __init__(self):
        self.docs = {}
        self.indexes = []

    def create_index(self, key, unique=False):
        self.indexes.append((key, unique))

    def insert_one(self, doc):
        if any(d["email"] == doc["email"] for d in self.docs.values()):
            raise DuplicateKeyError("E11000 duplicate key error collection: user index: email_1", 11000)
        self.docs[doc["_id"]] = doc


def test_mongo_directory_maps_duplicate_key():
    users = _UniqueEmails()
    directory = MongoUserDirectory({"user": users, "revoked_token": None})

    directory.create("ana@example.com", "hash", {})
    with pytest.raises(AuthenticationError, match="already registered"):
        directory.create("ana@example.com", "hash", {})

    assert users.indexes == [("email", True)]
    assert len(users.docs) == 1
