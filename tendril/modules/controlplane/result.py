"""Tagged result type returned by every control-plane call."""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from tendril.errors import TransportError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful call carrying its decoded value."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Failed call with a machine-readable code and a human message."""

    code: str
    message: str

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise TransportError(self.code, self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


Result = Union[Ok[T], Err]
