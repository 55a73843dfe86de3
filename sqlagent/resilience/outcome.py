"""
Attempt Outcomes

Tagged result for one attempt of a retryable operation. Retry drivers
branch on ``is_ok`` instead of catching exception types; the classified
error rides along in ``Err`` so the driver can tell terminal failures
from retryable ones.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlagent.models.errors import SqlError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    attempts: int = 1

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: SqlError
    cause: BaseException | None = None
    attempts: int = 0
    terminal: bool = False

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise RuntimeError(f"unwrap() called on Err: {self.error.error_message}") from self.cause


Outcome = Ok[T] | Err
