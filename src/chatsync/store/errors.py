class StoreError(Exception):
    """Base class for persistence adapter failures."""


class ConfigurationMissing(StoreError):
    """The backend lacks the connection details it needs."""


class Unavailable(StoreError):
    """The backend could not be reached or refused the request."""


class NotFound(StoreError):
    """The lookup or delete target does not exist."""


class ValidationFailure(StoreError):
    """A stored record could not be parsed into a message."""
