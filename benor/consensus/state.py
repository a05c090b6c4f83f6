"""
Engine Lifecycle - State transitions and observable node state
IDLE → RUNNING → DECIDED | STOPPED; faulty engines stay INERT
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Set
from dataclasses import dataclass, field

from .messages import BenOrError, Value, wire_value_or_none

logger = logging.getLogger("benor.consensus.state")


class EngineState(str, Enum):
    """Consensus engine lifecycle states"""
    IDLE = "idle"            # Created, not started
    RUNNING = "running"      # Round loop active
    DECIDED = "decided"      # Decision fixed, relaying decided value
    STOPPED = "stopped"      # Externally halted, no further network activity
    INERT = "inert"          # Crash-faulty: never participates


# Valid state transitions
VALID_TRANSITIONS: Dict[EngineState, Set[EngineState]] = {
    EngineState.IDLE: {EngineState.RUNNING, EngineState.STOPPED},
    EngineState.RUNNING: {EngineState.DECIDED, EngineState.STOPPED},
    EngineState.DECIDED: {EngineState.STOPPED},
    EngineState.STOPPED: set(),  # Terminal state
    EngineState.INERT: set(),    # Terminal state
}


class InvalidTransitionError(BenOrError):
    """Raised when an invalid state transition is attempted"""
    def __init__(self, node_id: int, from_state: EngineState, to_state: EngineState):
        self.node_id = node_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition for node {node_id}: {from_state.value} → {to_state.value}"
        )


@dataclass
class StateTransition:
    """Record of a lifecycle transition"""
    node_id: int
    from_state: EngineState
    to_state: EngineState
    round: int
    timestamp: datetime = field(default_factory=datetime.utcnow)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "round": self.round,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class NodeState:
    """Read-only snapshot of one node's consensus state"""
    node_id: int
    estimate: Value
    round: int
    decided: bool
    decided_value: Optional[Value]
    faulty: bool
    alive: bool
    lifecycle: EngineState

    @property
    def killed(self) -> bool:
        return not self.alive

    def to_wire(self) -> Dict[str, Any]:
        """
        Wire form: {"killed", "x", "decided", "k"}.
        Faulty nodes report x, decided and k as null.
        """
        if self.faulty:
            return {"killed": self.killed, "x": None, "decided": None, "k": None}
        return {
            "killed": self.killed,
            "x": wire_value_or_none(self.estimate),
            "decided": self.decided,
            "k": self.round,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "estimate": self.estimate.to_wire(),
            "round": self.round,
            "decided": self.decided,
            "decided_value": self.decided_value.to_wire() if self.decided_value else None,
            "faulty": self.faulty,
            "alive": self.alive,
            "lifecycle": self.lifecycle.value,
        }
