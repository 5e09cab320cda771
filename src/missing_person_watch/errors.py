"""Exception types shared across the store, admin flow and monitor."""


class MissingPersonWatchError(Exception):
    """Base class for all project errors."""


class StoreUnavailableError(MissingPersonWatchError, RuntimeError):
    """The local database could not be opened; writes cannot be persisted."""


class StoreTimeoutError(MissingPersonWatchError, RuntimeError):
    """The store did not finish initializing within the wait cap."""


class ValidationError(MissingPersonWatchError, ValueError):
    """User-supplied gallery data is missing a required field."""


class CameraUnavailableError(MissingPersonWatchError, RuntimeError):
    """The camera or video source could not be opened."""
