from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    VALIDATION = 'validation'
    NOT_FOUND = 'not_found'
    PROVIDER = 'provider'
    REMOTE_EXECUTION = 'remote_execution'
    DEADLINE_EXCEEDED = 'deadline_exceeded'
    FAN_OUT = 'fan_out'


class QuarkError(Exception):
    """
    Base error of the project.

    Every layer wraps the error it received with its own context using
    ``raise SomeError(...) from e``; ``cause`` exposes that original error.
    """

    kind: ErrorKind = ErrorKind.PROVIDER

    def __init__(self, message: str, *, kind: ErrorKind | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)

        self.message = message

        if kind is not None:
            self.kind = kind

        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def __str__(self) -> str:
        if self.__cause__ is not None and str(self.__cause__):
            return f'{self.message}: {self.__cause__}'

        return self.message


class ValidationError(QuarkError):
    kind = ErrorKind.VALIDATION


class NotFoundError(QuarkError):
    kind = ErrorKind.NOT_FOUND


class ProviderError(QuarkError):
    kind = ErrorKind.PROVIDER


class RemoteExecutionError(QuarkError):
    kind = ErrorKind.REMOTE_EXECUTION

    def __init__(
        self,
        message: str,
        *,
        host: str = '',
        command: str = '',
        stderr: str = '',
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)

        self.host = host
        self.command = command
        self.stderr = stderr

    def __str__(self) -> str:
        text = super().__str__()

        if self.stderr:
            text = f'{text} (stderr: {self.stderr.strip()})'

        return text


class DeadlineExceededError(QuarkError):
    kind = ErrorKind.DEADLINE_EXCEEDED


class FanOutError(QuarkError):
    kind = ErrorKind.FAN_OUT

    def __init__(self, message: str, errors: list[Exception]) -> None:
        super().__init__(message, cause=errors[0] if errors else None)

        self.errors = errors

    def __str__(self) -> str:
        details = '; '.join(str(e) for e in self.errors)

        return f'{self.message} ({len(self.errors)} failed: {details})'


class ResourceUnavailableError(ProviderError):
    pass
