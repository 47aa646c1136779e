"""Domain models for secret management."""
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional, Union

# Automatic replication, no region constraints
AUTOMATIC_REPLICATION: Dict[str, Any] = {"replication": {"automatic": {}}}


@dataclass(frozen=True)
class SecretPayload:
    """Secret plaintext as raw bytes."""
    data: bytes

    def text(self) -> str:
        return self.data.decode("UTF-8")


class CreateOutcome(enum.Enum):
    """Result of the create phase of a store."""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass
class HttpRequest:
    """One outbound request and how to read its response."""
    method: str
    url: str
    # decode(status_code, body) -> value; raising ValueError marks the attempt retryable
    decode: Callable[[int, bytes], Any]
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    ok_statuses: FrozenSet[int] = frozenset({200})


@dataclass(frozen=True)
class Success:
    value: Any


@dataclass(frozen=True)
class Retryable:
    cause: Exception


@dataclass(frozen=True)
class Terminal:
    cause: Exception


AttemptOutcome = Union[Success, Retryable, Terminal]
