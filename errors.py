"""
Error taxonomy for backend calls and their user-facing notices.

Drivers raise their own exceptions; database.py converts them into the
classes below. Anything that slips through unconverted is classified by
its message text, the same way the hosted backend's errors are read.
"""
import logging
from enum import Enum

from schemas import Notice

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Base class for failures talking to the backend"""


class ConnectivityError(BackendError):
    pass


class BackendUnavailable(ConnectivityError):
    """The backend is not configured at all"""


class MissingSchemaError(BackendError):
    """A table, bucket or procedure does not exist"""


class PermissionDeniedError(BackendError):
    pass


class AuthenticationError(BackendError):
    pass


class ValidationFailure(Exception):
    def __init__(self, title: str, description: str):
        super().__init__(description)
        self.title = title
        self.description = description

    def notice(self) -> Notice:
        return Notice(title=self.title, description=self.description, variant='destructive')


class ErrorKind(str, Enum):
    connectivity = 'connectivity'
    missing_schema = 'missing_schema'
    authentication = 'authentication'
    permission = 'permission'
    validation = 'validation'
    unknown = 'unknown'


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, ValidationFailure):
        return ErrorKind.validation
    if isinstance(exc, MissingSchemaError):
        return ErrorKind.missing_schema
    if isinstance(exc, PermissionDeniedError):
        return ErrorKind.permission
    if isinstance(exc, AuthenticationError):
        return ErrorKind.authentication
    if isinstance(exc, ConnectivityError):
        return ErrorKind.connectivity

    message = str(exc)
    lowered = message.lower()
    if 'does not exist' in lowered or 'could not find' in lowered:
        return ErrorKind.missing_schema
    if 'JWT' in message or 'authentication' in lowered:
        return ErrorKind.authentication
    if 'policy' in lowered or 'permission' in lowered:
        return ErrorKind.permission
    if 'connection' in lowered or 'network' in lowered or 'timed out' in lowered:
        return ErrorKind.connectivity
    return ErrorKind.unknown


def notice_for(exc: BaseException, action: str = "load data") -> Notice:
    kind = classify(exc)
    if kind is ErrorKind.validation:
        return exc.notice()
    if kind is ErrorKind.missing_schema:
        return Notice(
            title="Database not set up",
            description="The required tables are missing. Please run the database setup script.",
            variant='destructive',
        )
    if kind is ErrorKind.authentication:
        return Notice(
            title="Authentication error",
            description="Your session could not be verified. Please sign in again.",
            variant='destructive',
        )
    if kind is ErrorKind.permission:
        return Notice(
            title="Permission denied",
            description=f"You do not have permission to {action}.",
            variant='destructive',
        )
    if kind is ErrorKind.connectivity:
        return Notice(
            title="Connection error",
            description="Unable to reach the database. Please check your connection and try again.",
            variant='destructive',
        )
    return Notice(
        title="Error",
        description=f"Failed to {action}: {str(exc)[:80]}. Please run the database setup script.",
        variant='destructive',
    )


def report_failure(exc: BaseException, action: str) -> Notice:
    """Log a caught failure and return the notice to show for it."""
    logger.error("Failed to %s: %s", action, exc)
    return notice_for(exc, action)
