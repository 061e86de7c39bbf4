class QueryError(Exception):
    """Base class for errors raised while building or combining queries."""

    def __init__(self, message: str = "Invalid query."):
        super().__init__(message)


class InvalidOptionError(QueryError, ValueError):
    """Exception raised when a recognized query option has a wrong type or value."""

    def __init__(self, message: str = "Invalid query option."):
        super().__init__(message)


class UnresolvedReferenceError(QueryError, LookupError):
    """Exception raised when a name does not map to a field or relationship of the model."""

    def __init__(self, message: str = "Reference does not map to the model."):
        super().__init__(message)


class UnsupportedClauseError(QueryError, TypeError):
    """Exception raised when a condition key has a shape that cannot be interpreted."""

    def __init__(self, message: str = "Condition clause is not supported."):
        super().__init__(message)


class IncompatibleMergeError(QueryError, ValueError):
    """Exception raised when combining queries for different repositories or models."""

    def __init__(
        self, message: str = "Queries for different repositories or models cannot be merged."
    ):
        super().__init__(message)
