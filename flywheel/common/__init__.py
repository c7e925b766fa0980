from .async_utils import guarded_call, retry_until
from .errors import (
    ConfigurationError,
    ErrorKind,
    FlywheelError,
    QuoteNoRoutesError,
    RpcMethodError,
    StorageError,
    SubmissionError,
    TransientExternalError,
    classify_error,
    is_fatal,
)
from .logging import log_event, sanitize_text, sanitize_value

__all__ = [
    "ConfigurationError",
    "ErrorKind",
    "FlywheelError",
    "QuoteNoRoutesError",
    "RpcMethodError",
    "StorageError",
    "SubmissionError",
    "TransientExternalError",
    "classify_error",
    "guarded_call",
    "is_fatal",
    "log_event",
    "retry_until",
    "sanitize_text",
    "sanitize_value",
]
