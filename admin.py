"""
Admin configuration for Mangrove Watch

The pass-phrase is a shared secret: anyone who knows it can sign up as an
authority. It is read from the environment (see config.ADMIN_SECRET_KEY).
"""
import secrets

import config

ADMIN_ROLE = "authority"
COMMUNITY_ROLE = "community"

# Points awarded for verified reports
POINTS_FOR_VERIFICATION = 10


def validate_admin_secret_key(secret_key: str) -> bool:
    if not isinstance(secret_key, str):
        return False
    return secrets.compare_digest(secret_key.encode("utf-8"), config.ADMIN_SECRET_KEY.encode("utf-8"))
