"""Result values returned by the import and bulk pipelines.

Every pipeline stage returns either ``Ok(value)`` or ``Err(...)``; the HTTP layer is the only
place that turns an ``Err`` into a response.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    code: str
    message: str
    details: Any = None
    status_code: int = 500

    @classmethod
    def bad_request(cls, message: str, details: Any = None) -> Err:
        return cls(code="BAD_REQUEST", message=message, details=details, status_code=400)

    @classmethod
    def not_found(cls, message: str = "Not found") -> Err:
        return cls(code="NOT_FOUND", message=message, status_code=404)

    @classmethod
    def forbidden(cls, message: str = "Forbidden") -> Err:
        return cls(code="FORBIDDEN", message=message, status_code=403)


Result = Union[Ok[T], Err]
