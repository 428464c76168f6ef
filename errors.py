class ValidationError(ValueError):
    """Bad user input: surfaced for inline correction, never retried."""


class NotFoundError(ValueError):
    """The targeted record no longer exists in the store."""


class PersistenceError(RuntimeError):
    """The document store could not be reached or refused the operation."""


class IdentityRequiredError(RuntimeError):
    """A user-scoped operation was attempted while nobody is signed in."""
