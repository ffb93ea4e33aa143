"""
Uniform result type for service operations.

Every operation in services.py / accounts.py returns a Result instead of
raising for expected failures. Views map the ErrorKind to an HTTP status.
"""

from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar('T')


class ErrorKind(str, Enum):
    VALIDATION = 'validation'
    AUTHENTICATION = 'authentication'
    AUTHORIZATION = 'authorization'
    NOT_FOUND = 'not_found'
    UPSTREAM = 'upstream'


class Result(Generic[T]):
    """Outcome of a service call: either data, or an error message and kind."""

    def __init__(
        self,
        success: bool,
        data: Optional[T] = None,
        error: Optional[str] = None,
        kind: Optional[ErrorKind] = None
    ):
        self.success = success
        self.data = data
        self.error = error
        self.kind = kind

    @classmethod
    def ok(cls, data: Any = None) -> 'Result':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str) -> 'Result':
        return cls(success=False, error=str(error), kind=kind)

    def as_dict(self) -> dict:
        if self.success:
            return {'success': True, 'data': self.data}
        return {'success': False, 'error': self.error, 'kind': self.kind.value}

    def __repr__(self):
        if self.success:
            return f"Result(ok, data={self.data!r})"
        return f"Result({self.kind.value}, error={self.error!r})"
