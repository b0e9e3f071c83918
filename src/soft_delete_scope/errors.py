"""
Soft Delete Scope Errors

Exception hierarchy shared by the scoping layer and the host query engine.
Engine and driver errors are never caught or re-raised by the scoping layer.
"""


class SoftDeleteError(Exception):
    """Base class for every error raised by this package"""


class SoftDeleteConfigurationError(SoftDeleteError):
    """A delegate does not expose the operation the scoping layer needs"""


class QueryEngineError(SoftDeleteError):
    """Base class for host query engine errors"""


class RecordNotFoundError(QueryEngineError):
    """Raised by throw-variants and by update/delete when nothing matched"""

    def __init__(self, model: str, operation: str):
        super().__init__(f"No '{model}' record found for {operation}.")
        self.model = model
        self.operation = operation


class QueryValidationError(QueryEngineError):
    """The argument tree references an unknown field or operator"""


class TransactionBatchError(QueryEngineError):
    """A batch transaction received something other than a QueryRequest"""
