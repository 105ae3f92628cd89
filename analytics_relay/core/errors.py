class RelayError(Exception):
    pass


class ConfigurationError(RelayError):
    """Missing or invalid settings. Fatal at startup, never retried."""


class StartupError(RelayError):
    """The relay could not reach the event log store during CONNECTING."""


class TransformError(RelayError):
    def __init__(self, message: str, *, record_id: int | None = None):
        super().__init__(message)
        self.record_id = record_id


class SinkError(RelayError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.retryable = retryable
