"""Error taxonomy shared by every component.

Each error is scoped to the operation that raised it; none of them is
fatal to the process.
"""


class BloodLinkError(Exception):
    """Base class for all BloodLink errors."""


class NotAuthenticatedError(BloodLinkError):
    """No active identity, or the active identity may not act for this user."""


class ValidationError(BloodLinkError):
    """Input rejected before reaching the datastore (empty body, missing fields)."""


class TransportError(BloodLinkError):
    """Datastore or change-feed failure (network, connection loss)."""


class PermissionDeniedError(BloodLinkError):
    """Authenticated identity is not the owner of the record it tried to change."""


class NotFoundError(BloodLinkError):
    """Requested record does not exist."""
