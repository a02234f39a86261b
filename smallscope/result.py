"""Result type for loaders that can fail without raising."""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E


type Result[T, E] = Ok[T] | Err[E]


def unwrap[T](result: Result[T, Exception]) -> T:
    """Return the carried value or raise the carried error."""
    match result:
        case Ok(value):
            return value
        case Err(error):
            raise error
