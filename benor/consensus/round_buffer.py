"""
Round Buffer - Per-round, per-phase message store for one node

round -> phase -> sender -> message. Re-recording a sender overwrites, so
retransmissions never double-count. Entries are never removed while the
node is alive. Writes may come from the transport concurrently with reads
from the owning engine, so every access goes through one lock.
"""

import logging
import threading
from typing import Dict, Iterator, List, Tuple

from .messages import ConsensusMessage, MalformedMessageError, Phase, Value

logger = logging.getLogger("benor.consensus.round_buffer")


class PhaseValues:
    """
    Snapshot of the values recorded for one (round, phase).

    Taken under the buffer lock; iteration is lazy and can be repeated.
    """

    __slots__ = ("_messages",)

    def __init__(self, messages: Tuple[ConsensusMessage, ...]):
        self._messages = messages

    def __iter__(self) -> Iterator[Value]:
        return (message.value for message in self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def count(self, value: Value) -> int:
        return sum(1 for recorded in self if recorded is value)

    def senders(self) -> List[int]:
        return sorted(message.sender for message in self._messages)


class RoundBuffer:
    """Thread-safe arena of rounds, each an index of sender -> message per phase"""

    def __init__(self, total_nodes: int):
        self.total_nodes = total_nodes
        self._rounds: Dict[int, Dict[Phase, Dict[int, ConsensusMessage]]] = {}
        self._lock = threading.Lock()

    def _validate(self, message: ConsensusMessage):
        if not isinstance(message, ConsensusMessage):
            raise MalformedMessageError(f"not a consensus message: {type(message).__name__}", message)
        if not isinstance(message.round, int) or message.round < 1:
            raise MalformedMessageError(f"invalid round {message.round!r}", message)
        if not isinstance(message.phase, Phase):
            raise MalformedMessageError(f"invalid phase {message.phase!r}", message)
        if not isinstance(message.sender, int) or not 0 <= message.sender < self.total_nodes:
            raise MalformedMessageError(
                f"sender {message.sender!r} outside [0, {self.total_nodes})", message
            )
        if not isinstance(message.value, Value) or not message.value.is_known:
            raise MalformedMessageError(f"value {message.value!r} cannot be tallied", message)

    def record(self, message: ConsensusMessage) -> bool:
        """
        Store a message in its (round, phase) slot, keyed by sender.

        Any round is accepted, including rounds the owner has not reached or
        has already left.

        Returns:
            True if the sender was new for that slot, False if overwritten

        Raises:
            MalformedMessageError: If the message fails validation
        """
        self._validate(message)
        with self._lock:
            phases = self._rounds.setdefault(message.round, {Phase.PROPOSE: {}, Phase.VOTE: {}})
            slot = phases[message.phase]
            is_new = message.sender not in slot
            slot[message.sender] = message
        return is_new

    def count_at(self, round_number: int, phase: Phase) -> int:
        """Number of distinct senders recorded for (round, phase)"""
        with self._lock:
            phases = self._rounds.get(round_number)
            if phases is None:
                return 0
            return len(phases[phase])

    def values_at(self, round_number: int, phase: Phase) -> PhaseValues:
        """Consistent snapshot of the values recorded for (round, phase)"""
        with self._lock:
            phases = self._rounds.get(round_number)
            if phases is None:
                return PhaseValues(())
            return PhaseValues(tuple(phases[phase].values()))

    def highest_round(self) -> int:
        """Largest round with any recorded message, 0 when empty"""
        with self._lock:
            return max(self._rounds, default=0)

    def rounds(self) -> List[int]:
        with self._lock:
            return sorted(self._rounds)

    def __len__(self) -> int:
        with self._lock:
            return sum(
                len(slot) for phases in self._rounds.values() for slot in phases.values()
            )
