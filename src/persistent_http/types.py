"""Result values returned by non-raising pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, Mapping, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E", bound=BaseException)


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result carrying a value and optional metadata."""

    value: T
    meta: Mapping[str, Any] = field(default_factory=dict)

    ok: ClassVar[bool] = True
    error: ClassVar[None] = None

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result carrying an exception and optional metadata."""

    error: E
    meta: Mapping[str, Any] = field(default_factory=dict)

    ok: ClassVar[bool] = False
    value: ClassVar[None] = None

    def unwrap(self) -> Any:
        raise self.error


Result = Union[Ok[T], Err[E]]
