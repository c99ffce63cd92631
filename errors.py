from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class LedgerError(Exception):
    pass


class PersistenceFailure(LedgerError):
    """A store read or write did not complete; the single write was rolled back."""


class NotFound(LedgerError, LookupError):
    pass


class MalformedData(LedgerError, ValueError):
    """A stored row could not be decoded."""


class InvalidTemplateSchedule(LedgerError, ValueError):
    pass


class InvalidOperation(LedgerError, ValueError):
    pass


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[LedgerError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> OperationResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: LedgerError) -> OperationResult[T]:
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        if not self.ok:
            if self.error is None:
                raise LedgerError("failed result carries no error")
            raise self.error
        return self.value  # type: ignore[return-value]
