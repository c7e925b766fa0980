from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

import aiohttp


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    SUBMISSION = "submission"
    CONFIGURATION = "configuration"
    STORAGE = "storage"
    UNEXPECTED = "unexpected"


class FlywheelError(RuntimeError):
    kind = ErrorKind.UNEXPECTED


class TransientExternalError(FlywheelError):
    kind = ErrorKind.TRANSIENT


class SubmissionError(FlywheelError):
    kind = ErrorKind.SUBMISSION

    def __init__(self, message: str, *, signature: str | None = None) -> None:
        super().__init__(message)
        self.signature = signature


class ConfigurationError(FlywheelError):
    kind = ErrorKind.CONFIGURATION


class StorageError(FlywheelError):
    kind = ErrorKind.STORAGE


class RpcMethodError(TransientExternalError):
    def __init__(
        self,
        *,
        method: str,
        message: str,
        status: int | None = None,
        code: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.status = status
        self.code = code
        self.data = data


class QuoteNoRoutesError(TransientExternalError):
    pass


def classify_error(error: BaseException) -> ErrorKind:
    if isinstance(error, FlywheelError):
        return error.kind
    if isinstance(error, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNEXPECTED


def is_fatal(kind: ErrorKind) -> bool:
    return kind in {ErrorKind.CONFIGURATION, ErrorKind.STORAGE}
