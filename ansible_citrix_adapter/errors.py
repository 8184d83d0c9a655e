"""
Exception taxonomy raised by the client and by resource hooks.

Every error carries the one-line summary and the detail body an operator sees.
The lifecycle template methods turn each raised error into exactly one
diagnostic, so hooks simply raise and never touch the sink themselves.
"""

from .models import Diagnostic, TransportMetadata


class AdapterError(Exception):
    """Base class for every failure reported through diagnostics."""

    def __init__(self, summary: str, detail: str = ""):
        super().__init__(f"{summary}: {detail}" if detail else summary)
        self.summary = summary
        self.detail = detail

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic("error", self.summary, self.detail)


class ConfigurationError(AdapterError):
    """Missing credentials or a deployment mode the kind does not support."""


class InvalidConfigError(AdapterError):
    """Input violates a declared constraint (regex, enum, exclusivity)."""


class ConflictError(AdapterError):
    """A same-named or same-keyed object already exists remotely."""


class NotFoundError(AdapterError):
    """The remote object is gone."""


class PreconditionError(AdapterError):
    """The remote object is not in a state that permits the operation."""


class UnsupportedOperationError(AdapterError):
    """The kind cannot perform the requested operation at all."""


class ImportFormatError(AdapterError):
    """An import identifier does not match the kind's composite format."""


class OperationCancelledError(AdapterError):
    """The caller cancelled the operation or its deadline passed."""


class ApiError(AdapterError):
    """
    A non-2xx response or a network failure that survived the client's retries.

    The detail always carries the transaction id and the API message verbatim.
    """

    def __init__(self, summary: str, message: str, metadata: TransportMetadata):
        self.message = message
        self.metadata = metadata
        super().__init__(summary, format_api_detail(metadata.transaction_id, message))

    @property
    def status_code(self) -> int:
        return self.metadata.status_code

    @property
    def transaction_id(self) -> str:
        return self.metadata.transaction_id

    def with_summary(self, summary: str) -> "ApiError":
        """Returns a copy re-titled for the lifecycle step that observed it."""
        return ApiError(summary, self.message, self.metadata)


def format_api_detail(transaction_id: str, message: str) -> str:
    return f"TransactionId: {transaction_id}\nError message: {message}"
