"""
Message & Value Model - Wire vocabulary shared by every node

Wire format (JSON):
    {"phase": 1 | 2, "k": <round>, "value": 0 | 1 | "?", "sender": <node id>}
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

WireValue = Union[int, str]


class BenOrError(Exception):
    """Base class for simulator errors"""


class MalformedMessageError(BenOrError):
    """Raised when an inbound message cannot be used by the protocol"""

    def __init__(self, reason: str, payload: Any = None):
        self.reason = reason
        self.payload = payload
        super().__init__(f"Malformed message: {reason}")


class Value(Enum):
    """A node's estimate; UNKNOWN is never the integer zero"""
    ZERO = 0
    ONE = 1
    UNKNOWN = "?"

    @property
    def is_known(self) -> bool:
        return self is not Value.UNKNOWN

    def to_wire(self) -> WireValue:
        return self.value

    @classmethod
    def from_wire(cls, raw: Any) -> "Value":
        # bool is an int subclass; True must not pass for 1
        if isinstance(raw, bool):
            raise MalformedMessageError(f"invalid value {raw!r}", raw)
        try:
            return cls(raw)
        except ValueError:
            raise MalformedMessageError(f"invalid value {raw!r}", raw)

    @classmethod
    def coerce(cls, raw: Union["Value", WireValue, None]) -> "Value":
        """Accept a Value, a wire literal, or None (meaning unknown)"""
        if raw is None:
            return cls.UNKNOWN
        if isinstance(raw, Value):
            return raw
        return cls.from_wire(raw)


class Phase(int, Enum):
    """The two message types within a round"""
    PROPOSE = 1
    VOTE = 2


@dataclass(frozen=True)
class ConsensusMessage:
    """A single protocol message. Immutable once constructed."""
    round: int
    phase: Phase
    value: Value
    sender: int

    def to_wire(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "k": self.round,
            "value": self.value.to_wire(),
            "sender": self.sender,
        }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> "ConsensusMessage":
        """
        Decode a wire payload.

        Raises:
            MalformedMessageError: missing fields, bad phase/value, round < 1
        """
        if not isinstance(payload, dict):
            raise MalformedMessageError("payload is not an object", payload)

        missing = [key for key in ("phase", "k", "value", "sender") if key not in payload]
        if missing:
            raise MalformedMessageError(f"missing fields {missing}", payload)

        try:
            phase = Phase(payload["phase"])
        except ValueError:
            raise MalformedMessageError(f"invalid phase {payload['phase']!r}", payload)

        round_number = payload["k"]
        if isinstance(round_number, bool) or not isinstance(round_number, int) or round_number < 1:
            raise MalformedMessageError(f"invalid round {round_number!r}", payload)

        sender = payload["sender"]
        if isinstance(sender, bool) or not isinstance(sender, int) or sender < 0:
            raise MalformedMessageError(f"invalid sender {sender!r}", payload)

        return cls(
            round=round_number,
            phase=phase,
            value=Value.from_wire(payload["value"]),
            sender=sender,
        )

    def __str__(self) -> str:
        return f"{self.phase.name}(k={self.round}, v={self.value.to_wire()}, from={self.sender})"


def wire_value_or_none(value: Optional[Value]) -> Optional[WireValue]:
    """State wire form: unknown estimates are reported as null"""
    if value is None or value is Value.UNKNOWN:
        return None
    return value.to_wire()
