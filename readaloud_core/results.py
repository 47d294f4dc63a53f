"""
Result Types
============

Explicit outcomes for calls that may degrade instead of failing:

- ``Ok(value)``     - the call produced a value
- ``Soft(reason)``  - no value, caller falls back (rate limited, timeout, bad answer)
- ``Fatal(error)``  - the job cannot continue

Callers branch on ``isinstance`` or on ``is_ok`` rather than wrapping every
collaborator call in a catch-all handler.
"""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from readaloud_core.errors import ConversionError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap_or(self, default: Any) -> T:
        return self.value


@dataclass(frozen=True)
class Soft:
    reason: str
    error: Optional[BaseException] = None

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap_or(self, default: Any) -> Any:
        return default


@dataclass(frozen=True)
class Fatal:
    error: ConversionError

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap_or(self, default: Any) -> Any:
        return default


Result = Union[Ok, Soft, Fatal]
