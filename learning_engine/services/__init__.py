"""Service layer: database access around the pure engines."""


class NotFoundError(LookupError):
    """A referenced module, attempt or intervention does not exist."""


class QuizUnavailableError(ValueError):
    """The module has no usable quiz after normalization."""
