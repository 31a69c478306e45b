"""Exception types raised by the monitoring pipeline."""


class MonitorError(Exception):
    """Base class for all pipeline errors."""


class ParseError(MonitorError):
    """Raised when a payload has no usable header row or cannot be read at all."""


class FetchError(MonitorError):
    """Raised when an upstream fetch fails at the transport or HTTP level."""

    def __init__(self, message: str, source: str = ''):
        super().__init__(message)
        self.source = source


class StaleResponse(MonitorError):
    """Raised when a response arrives after a newer request was issued or after teardown."""

    def __init__(self, sequence: int, latest: int):
        super().__init__(f'response #{sequence} superseded by #{latest}')
        self.sequence = sequence
        self.latest = latest
