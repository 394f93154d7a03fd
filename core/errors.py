"""
Error taxonomy for the transfer tracker.

TrackerError (base)
├── NetworkError          retriable - transport failure talking to the RPC node
├── RemoteQueryError      retriable - node answered with a JSON-RPC error object
├── TimeoutError          retriable - request or operation exceeded its budget
├── ParseError            fatal to a single event, the batch continues
├── ValidationError       fatal to the operation (e.g. adding an address)
│   └── InvalidAddressError
├── ConfigurationError    fatal, raised while loading settings
├── SerializationError    export / encoding failures
└── SystemError           fatal to the affected operation, never retried
"""


class TrackerError(Exception):
    """Base class for all tracker errors."""

    code = 9000
    retriable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.label}: {self.message}" if self.message else self.label

    @property
    def label(self) -> str:
        return type(self).__name__


class NetworkError(TrackerError):
    code = 1001
    retriable = True


class RemoteQueryError(TrackerError):
    code = 1002
    retriable = True


class ParseError(TrackerError):
    code = 2001


class ConfigurationError(TrackerError):
    code = 2002


class SerializationError(TrackerError):
    code = 3002


class ValidationError(TrackerError):
    code = 4003


class InvalidAddressError(ValidationError):
    code = 4001


class TimeoutError(TrackerError):  # noqa: A001
    code = 4002
    retriable = True


class SystemError(TrackerError):  # noqa: A001
    code = 5001


def is_retriable(error: BaseException) -> bool:
    """Only tracker errors flagged retriable are worth another attempt."""
    return isinstance(error, TrackerError) and error.retriable
