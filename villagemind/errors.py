"""
Error taxonomy for the decision engine.

Every error here is local and recoverable. The engine never lets one of them
escape a tick: oracle failures, parse failures and validation rejections are
carried as values (see ``ConsultationOutcome`` and ``Verdict``) and routed to
the fallback policy. Only programming errors propagate.
"""


class DecisionEngineError(Exception):
    """Base class for recoverable decision engine failures."""

    reason: str = "decision engine error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.reason)

    @property
    def label(self) -> str:
        """Short machine-friendly tag used in event logs."""

        return type(self).__name__


class ObservationUnavailable(DecisionEngineError):
    """World query failed; the observer treats it as an empty observation."""

    reason = "world snapshot unavailable"


class OracleError(DecisionEngineError):
    """Base class for oracle call failures."""

    reason = "oracle call failed"


class OracleTransportError(OracleError):
    """Network, HTTP or provider failure while talking to the oracle."""

    reason = "oracle transport error"


class OracleTimeout(OracleError):
    """The oracle did not answer within the configured bound."""

    reason = "oracle timed out"

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is None:
            super().__init__()
        else:
            super().__init__(f"oracle timed out after {timeout_seconds:g}s")


class OracleRateLimited(OracleError):
    """The provider signalled a rate limit for the credential in use."""

    reason = "oracle rate limited"

    def __init__(self, message: str | None = None, *, credential: str | None = None) -> None:
        self.credential = credential
        super().__init__(message)


class ConsultationSetupError(DecisionEngineError):
    """Building the prompt for a consultation failed before the oracle was asked."""

    reason = "could not prepare oracle consultation"


class ResponseParseError(DecisionEngineError):
    """Oracle output could not be parsed into the response schema."""

    reason = "oracle response could not be parsed"

    def __init__(self, message: str | None = None, *, raw: str | None = None) -> None:
        self.raw = raw
        super().__init__(message)


class ResponseValidationError(DecisionEngineError):
    """Parsed response names an unknown action or a stale/invalid reference."""

    reason = "oracle response rejected"


__all__ = [
    "ConsultationSetupError",
    "DecisionEngineError",
    "ObservationUnavailable",
    "OracleError",
    "OracleTransportError",
    "OracleTimeout",
    "OracleRateLimited",
    "ResponseParseError",
    "ResponseValidationError",
]
