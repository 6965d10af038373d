import logging
from enum import Enum
from typing import Optional

from auth_service import AuthEvent
from schemas import Identity, Profile, Session

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class SessionStore:
    """
    Current identity and profile for one auth client.

    Starts UNKNOWN; start() pulls the session once and subscribes to the
    client's auth events, each of which moves the store to AUTHENTICATED or
    ANONYMOUS. close() drops the subscription.
    """

    def __init__(self, auth, resolver, fallback):
        self.auth = auth
        self.resolver = resolver
        self.fallback = fallback
        self.state = SessionState.UNKNOWN
        self.session: Optional[Session] = None
        self.profile: Optional[Profile] = None
        self._subscription = None

    @property
    def loading(self) -> bool:
        return self.state is SessionState.UNKNOWN

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.user if self.session else None

    def start(self) -> "SessionStore":
        if self._subscription is None:
            self._subscription = self.auth.on_auth_state_change(self._on_auth_change)
        self._apply(self.auth.get_session())
        return self

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def reload_profile(self) -> Optional[Profile]:
        if self.session is not None:
            self.profile = self.resolver.resolve(self.session.user.id)
        return self.profile

    def _on_auth_change(self, event: AuthEvent, session: Optional[Session]) -> None:
        logger.debug("Session store got %s", event.value)
        self._apply(session)

    def _apply(self, session: Optional[Session]) -> None:
        self.session = session
        if session is None:
            self.profile = None
            self.state = SessionState.ANONYMOUS
            return

        user_id = session.user.id
        try:
            self.fallback.initialize()
            self.profile = self.resolver.resolve(user_id)
        except Exception:
            logger.exception("Error attaching profile for %s", user_id)
        self.state = SessionState.AUTHENTICATED

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.close()
