"""
Auth for Mangrove Watch: accounts, password hashing, JWT sessions and
auth-state change notifications.

An AuthClient is built per caller around its bearer token, the way a hosted
auth SDK holds the current session for one browser. Accounts live in a
UserDirectory shared by all clients.
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

import config
from database import backend_call
from errors import AuthenticationError, BackendError
from schemas import Identity, Session

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


AuthCallback = Callable[[AuthEvent, Optional[Session]], None]


# ---------- User directories ----------

class MemoryUserDirectory:
    """Accounts kept in process memory; used when no database is configured."""

    def __init__(self):
        self._lock = threading.Lock()
        self._users: Dict[str, dict] = {}
        self._revoked: set = set()

    def find_by_email(self, email: str) -> Optional[dict]:
        email = email.lower()
        with self._lock:
            for user in self._users.values():
                if user["email"] == email:
                    return dict(user)
        return None

    def get(self, user_id: str) -> Optional[dict]:
        with self._lock:
            user = self._users.get(user_id)
            return dict(user) if user else None

    def create(self, email: str, password_hash: str, metadata: Dict[str, Any]) -> dict:
        user = {
            "id": str(uuid.uuid4()),
            "email": email.lower(),
            "password_hash": password_hash,
            "user_metadata": dict(metadata),
            "created_at": datetime.now(timezone.utc),
        }
        with self._lock:
            # uniqueness check and insert share the lock
            if any(u["email"] == user["email"] for u in self._users.values()):
                raise AuthenticationError("User already registered")
            self._users[user["id"]] = user
        return dict(user)

    def revoke(self, jti: str) -> None:
        with self._lock:
            self._revoked.add(jti)

    def is_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._revoked

    def __len__(self):
        with self._lock:
            return len(self._users)


class MongoUserDirectory:
    """Accounts in the "user" collection, revoked token ids in "revoked_token"."""

    def __init__(self, database):
        self.users = database["user"]
        self.revoked = database["revoked_token"]
        self._indexed = False

    def _ensure_email_index(self) -> None:
        # built on first insert
        if not self._indexed:
            self.users.create_index("email", unique=True)
            self._indexed = True

    @staticmethod
    def _out(doc: Optional[dict]) -> Optional[dict]:
        if not doc:
            return None
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        return doc

    def find_by_email(self, email: str) -> Optional[dict]:
        with backend_call("find account"):
            return self._out(self.users.find_one({"email": email.lower()}))

    def get(self, user_id: str) -> Optional[dict]:
        with backend_call("get account"):
            return self._out(self.users.find_one({"_id": user_id}))

    def create(self, email: str, password_hash: str, metadata: Dict[str, Any]) -> dict:
        doc = {
            "_id": str(uuid.uuid4()),
            "email": email.lower(),
            "password_hash": password_hash,
            "user_metadata": dict(metadata),
            "created_at": datetime.now(timezone.utc),
        }
        with backend_call("create account"):
            self._ensure_email_index()
            try:
                self.users.insert_one(doc)
            except DuplicateKeyError:
                raise AuthenticationError("User already registered")
        return self._out(doc)

    def revoke(self, jti: str) -> None:
        with backend_call("revoke session"):
            self.revoked.update_one({"_id": jti}, {"$set": {"revoked_at": datetime.now(timezone.utc)}}, upsert=True)

    def is_revoked(self, jti: str) -> bool:
        with backend_call("check session"):
            return self.revoked.count_documents({"_id": jti}, limit=1) > 0


def user_directory(database=None):
    if database is None:
        logger.warning("No database configured, accounts are kept in memory")
        return MemoryUserDirectory()
    return MongoUserDirectory(database)


# ---------- Token helpers ----------

def create_token(identity: Identity) -> Session:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=config.JWT_EXPIRE_MINUTES)
    payload = {
        "sub": identity.id,
        "email": identity.email,
        "jti": uuid.uuid4().hex,
        "exp": expires_at,
        "iat": now,
    }
    token = jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)
    return Session(access_token=token, expires_at=expires_at, user=identity)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError as e:
        raise AuthenticationError(f"Invalid JWT: {e}")


def _identity(user: dict) -> Identity:
    return Identity(id=user["id"], email=user["email"], user_metadata=user.get("user_metadata") or {})


# ---------- Client ----------

class Subscription:
    def __init__(self, client: "AuthClient", callback: AuthCallback):
        self._client = client
        self.callback = callback

    def unsubscribe(self) -> None:
        self._client._listeners = [s for s in self._client._listeners if s is not self]


class AuthClient:
    def __init__(self, directory, access_token: Optional[str] = None):
        self.directory = directory
        self._access_token = access_token
        self._session: Optional[Session] = None
        self._checked = False
        self._listeners: List[Subscription] = []

    # -- notifications --

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        sub = Subscription(self, callback)
        self._listeners.append(sub)
        return sub

    def _emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        logger.debug("Auth event %s", event.value)
        for sub in list(self._listeners):
            sub.callback(event, session)

    # -- session --

    def get_session(self) -> Optional[Session]:
        """Current session, validating the bearer token on first call."""
        if self._checked:
            return self._session
        self._checked = True
        if not self._access_token:
            return None
        try:
            claims = decode_token(self._access_token)
            if self.directory.is_revoked(claims.get("jti", "")):
                return None
            user = self.directory.get(claims.get("sub", ""))
        except AuthenticationError as e:
            logger.info("Rejected session token: %s", e)
            return None
        except BackendError as e:
            logger.error("Error checking session: %s", e)
            return None
        if not user:
            return None
        self._session = Session(
            access_token=self._access_token,
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            user=_identity(user),
        )
        return self._session

    def get_user(self) -> Optional[Identity]:
        session = self.get_session()
        return session.user if session else None

    def _start(self, event: AuthEvent, session: Session) -> Session:
        self._session = session
        self._access_token = session.access_token
        self._checked = True
        self._emit(event, session)
        return session

    def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> Session:
        if self.directory.find_by_email(email):
            raise AuthenticationError("User already registered")
        user = self.directory.create(email, pwd_context.hash(password), metadata or {})
        logger.info("Created account %s", user["id"])
        return self._start(AuthEvent.SIGNED_IN, create_token(_identity(user)))

    def sign_in(self, email: str, password: str) -> Session:
        user = self.directory.find_by_email(email)
        if not user or not pwd_context.verify(password, user.get("password_hash", "")):
            raise AuthenticationError("Invalid login credentials")
        return self._start(AuthEvent.SIGNED_IN, create_token(_identity(user)))

    def refresh_session(self) -> Session:
        current = self.get_session()
        if current is None:
            raise AuthenticationError("Auth session missing")
        self.directory.revoke(decode_token(current.access_token)["jti"])
        return self._start(AuthEvent.TOKEN_REFRESHED, create_token(current.user))

    def sign_out(self) -> None:
        current = self.get_session()
        if current is not None:
            self.directory.revoke(decode_token(current.access_token)["jti"])
        self._session = None
        self._access_token = None
        self._checked = True
        self._emit(AuthEvent.SIGNED_OUT, None)
