import logging
from typing import Optional

from errors import BackendError
from schemas import Profile

logger = logging.getLogger(__name__)


class ProfileResolver:
    """
    Attach a role/points profile to an identity.

    The fallback store answers first and synchronously. The remote profiles
    table is then asked by primary key; when it answers, its profile replaces
    the cached one. Remote failures are logged and never raised.
    """

    def __init__(self, fallback, backend):
        self.fallback = fallback
        self.backend = backend

    def cached(self, identity_id: str) -> Optional[Profile]:
        try:
            return self.fallback.get_profile(identity_id)
        except Exception:
            logger.exception("Error reading fallback profile for %s", identity_id)
            return None

    def fetch(self, identity_id: str) -> Optional[Profile]:
        if self.backend is None or not self.backend.configured:
            return None
        try:
            return self.backend.profiles.get(identity_id)
        except BackendError as e:
            logger.error("Error fetching profile: %s", e)
            return None

    def resolve(self, identity_id: str) -> Optional[Profile]:
        profile = self.cached(identity_id)
        remote = self.fetch(identity_id)
        if remote is not None:
            profile = remote
        return profile
