"""Error types raised while collecting workflow runs."""


class PipelineError(Exception):
    """Base class for aggregation errors."""


class TransportFailure(PipelineError):
    """The external tool could not be run or exited with a failure."""

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class MalformedResponse(PipelineError):
    """The external tool returned data that is not well-formed JSON."""


class SourceListUnavailable(PipelineError):
    """The repository list could not be fetched; nothing can be aggregated."""
