"""
Consensus Module - Ben-Or randomized binary consensus (crash faults)

Per round:
- PROPOSE: every node broadcasts its estimate
- VOTE: every node broadcasts the estimate adopted from the proposals
- DECIDE: enough identical votes fix the value for good
"""

from .messages import (
    BenOrError,
    MalformedMessageError,
    Value,
    Phase,
    ConsensusMessage,
)
from .quorum import QuorumCalculator, QuorumStatus
from .round_buffer import RoundBuffer, PhaseValues
from .state import (
    EngineState,
    NodeState,
    StateTransition,
    InvalidTransitionError,
    VALID_TRANSITIONS,
)
from .engine import ConsensusEngine, ConsensusConfig

__all__ = [
    # Model
    "BenOrError",
    "MalformedMessageError",
    "Value",
    "Phase",
    "ConsensusMessage",
    # Quorum
    "QuorumCalculator",
    "QuorumStatus",
    # Buffer
    "RoundBuffer",
    "PhaseValues",
    # Lifecycle
    "EngineState",
    "NodeState",
    "StateTransition",
    "InvalidTransitionError",
    "VALID_TRANSITIONS",
    # Engine
    "ConsensusEngine",
    "ConsensusConfig",
]
