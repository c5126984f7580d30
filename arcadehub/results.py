"""Success/failure values for calls whose failure is not exceptional."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    value: T | None = None
    reason: str = ""

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> "Result[T]":
        return cls(ok=False, reason=reason)

    def unwrap_or(self, default: T) -> T:
        if self.ok:
            return self.value  # type: ignore[return-value]
        return default
