"""Error kinds surfaced by the ingestion core."""


class IngestionError(Exception):
    """Base error carrying a machine-usable kind."""

    kind = "Internal"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(IngestionError):
    """Bad or missing input."""

    kind = "InvalidRequest"


class NotFound(IngestionError):
    """Unknown or expired session; the client must restart."""

    kind = "NotFound"


class NotReady(IngestionError):
    """Valid session in the wrong state for the requested operation."""

    kind = "NotReady"
    retryable = True


class ExternalFailure(IngestionError):
    """Object store, transcoder or analysis service failure."""

    kind = "ExternalFailure"
    retryable = True
