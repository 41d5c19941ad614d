from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Generic, Optional, TypeVar

from tk700.exceptions.projector import ProjectorException

T = TypeVar("T")


@dataclass(frozen=True)
class CommandResult(Generic[T]):
    """Outcome of one projector operation: a value or a typed failure, never both."""
    value: Optional[T] = None
    error: Optional[ProjectorException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def or_none(self) -> Optional[T]:
        """Recover a failure to ``None``; used where polling must keep going."""
        return self.value if self.ok else None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value

    def to_response(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error.message, "data": None}
        return {"error": None, "data": self.value}


async def attempt(operation: Awaitable[T]) -> CommandResult[T]:
    """Await ``operation`` and capture projector failures as a CommandResult."""
    try:
        return CommandResult(value=await operation)
    except ProjectorException as e:
        return CommandResult(error=e)
