"""Error taxonomy of the usage bridge.

Every failure inside a polling pass ends up as one of these before it
reaches the scheduler. Conflicts (409) and unsupported events are not
errors; they are reported as result values.
"""

from typing import Any


class BridgeError(Exception):
    """Base class for usage bridge errors."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransientNetworkError(BridgeError):
    """A failure expected to go away on its own; retried with backoff."""

    pass


class RetrievalFailedError(TransientNetworkError):
    """Reading the usage events stream failed."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, cause)
        self.status_code = status_code
        self.details = details


class UsageReportError(TransientNetworkError):
    """The collector did not accept a usage document."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.status_code = status_code


class CursorInvalidError(BridgeError):
    """The upstream API no longer knows the event GUID used as cursor."""

    def __init__(self, cursor: str | None = None) -> None:
        super().__init__(f"Usage event with GUID {cursor!r} not found")
        self.cursor = cursor


class StoreError(BridgeError):
    """A document store operation failed."""

    pass


class StoreWriteConflictError(StoreError):
    """A document was written with a stale revision."""

    def __init__(self, document_id: str, revision: str | None = None) -> None:
        super().__init__(
            f"Revision {revision!r} of document {document_id!r} is out of date"
        )
        self.document_id = document_id
        self.revision = revision


class BuilderError(BridgeError):
    """An event could not be turned into a usage document."""

    pass


class TokenAcquisitionError(BridgeError):
    """An OAuth token could not be obtained."""

    pass


class GuidResolutionError(BridgeError):
    """Service labels could not be resolved to GUIDs."""

    pass


class PagingError(Exception):
    """Non-success response while reading a paged collection."""

    def __init__(self, message: str, status_code: int, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
