"""Tagged result type returned by remote store operations.

Remote calls report either ``Ok(value)`` or ``Err(reason, error)``. Callers
consume them with ``match`` instead of probing response shapes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Err:
    reason: str
    error: BaseException | None = None

    @classmethod
    def from_exception(cls, exc: BaseException, *, operation: str = "") -> Err:
        prefix = f"{operation} failed" if operation else "remote call failed"
        return cls(reason=f"{prefix}: {type(exc).__name__}: {exc}", error=exc)


Result = Union[Ok[T], Err]
