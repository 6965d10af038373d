"""
Page access rules.

Every page declares a Requirement; decide() maps the caller's session state
onto render, a loading placeholder, or a redirect. Nothing is cached between
requests.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from admin import ADMIN_ROLE
from schemas import Identity, Profile

SIGN_IN_PATH = "/auth"
LANDING_PATH = "/dashboard"


class Requirement(str, Enum):
    PUBLIC_ONLY = "public_only"
    AUTH_REQUIRED = "auth_required"
    ADMIN_REQUIRED = "admin_required"


class Outcome(str, Enum):
    RENDER = "render"
    LOADING = "loading"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    location: Optional[str] = None


RENDER = Decision(Outcome.RENDER)
LOADING = Decision(Outcome.LOADING)


def decide(loading: bool, identity: Optional[Identity], profile: Optional[Profile],
           requirement: Requirement) -> Decision:
    # loading first so nothing redirects before the session is known
    if loading:
        return LOADING
    if requirement is Requirement.AUTH_REQUIRED and identity is None:
        return Decision(Outcome.REDIRECT, SIGN_IN_PATH)
    if requirement is Requirement.ADMIN_REQUIRED and (identity is None or profile is None or profile.role != ADMIN_ROLE):
        return Decision(Outcome.REDIRECT, LANDING_PATH)
    if requirement is Requirement.PUBLIC_ONLY and identity is not None:
        return Decision(Outcome.REDIRECT, LANDING_PATH)
    return RENDER


class RouteDenied(Exception):
    """Raised from a guarded route when the decision is not RENDER."""

    def __init__(self, decision: Decision):
        super().__init__(decision.location or decision.outcome.value)
        self.decision = decision
