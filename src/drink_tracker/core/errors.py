"""Custom exception hierarchy for the drink tracker.

Every rejection raised by the event store, the snapshot manager or the
broadcast hub derives from ``TrackerError``.  The ingress layer maps each
class to an HTTP status (see ``drink_tracker.api.app``).
"""


class TrackerError(Exception):
    """Base exception for all drink tracker errors."""


# --- Validation ---
class ValidationError(TrackerError):
    """Missing or malformed required field."""


class SelfReferenceRejected(ValidationError):
    """A participant tried to predict their own consumption."""


# --- References ---
class NotFoundError(TrackerError):
    """A referenced item, participant or artifact does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


# --- Conflicts ---
class ConflictError(TrackerError):
    """Write collides with existing state."""


class DuplicateNameError(ConflictError):
    """A unique, case-insensitive name is already taken."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} with name {name!r} already exists")


class AlreadySetError(ConflictError):
    """A write-once setting has already been written."""


class LockedForWritesError(ConflictError):
    """Predictions are locked; prediction and self-estimate writes are closed."""


# --- Persistence ---
class PersistenceError(TrackerError):
    """Snapshot write or read failure."""


# --- Delivery ---
class DeliveryError(TrackerError):
    """Pushing a message to one subscriber failed."""


# --- Configuration ---
class ConfigError(TrackerError):
    """Invalid or missing configuration."""
