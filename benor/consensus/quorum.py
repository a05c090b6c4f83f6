"""
Quorum Calculator - Thresholds derived from (N, F)

Crash-fault model:
- n = total nodes, f = nodes that never respond
- quorum = n - f (messages awaited per phase)
- proposal majority: count > n / 2
- decision: max(n - f, floor(n / 2) + 1) identical votes
- adoption: f + 1 identical votes

Termination is only guaranteed for 3f < n. Above that bound the same
arithmetic simply never lets a node decide; nothing here enforces it.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any
from enum import Enum

logger = logging.getLogger("benor.consensus.quorum")


class QuorumStatus(str, Enum):
    """Status of quorum collection for one (round, phase)"""
    NOT_STARTED = "not_started"    # Nothing recorded yet
    COLLECTING = "collecting"      # Some senders recorded
    ACHIEVED = "achieved"          # n - f senders recorded


@dataclass
class QuorumCalculator:
    """
    Calculates quorum requirements for the crash-fault Ben-Or protocol.

    For n=10 nodes with f=3:
    - quorum = 7, majority > 5, decision = 7, adoption = 4
    """

    total_nodes: int = 3
    max_faults: int = 0

    def __post_init__(self):
        if self.total_nodes < 1:
            raise ValueError(f"Network needs at least one node, got {self.total_nodes}")
        if not 0 <= self.max_faults < self.total_nodes:
            raise ValueError(
                f"Faulty count must satisfy 0 <= f < n, got f={self.max_faults}, n={self.total_nodes}"
            )

        self._quorum_size = self.total_nodes - self.max_faults
        self._decision_threshold = max(self._quorum_size, self.total_nodes // 2 + 1)
        logger.debug(
            f"QuorumCalculator initialized: n={self.total_nodes}, f={self.max_faults}, "
            f"quorum={self._quorum_size}, decision={self._decision_threshold}"
        )

    @property
    def n(self) -> int:
        """Total number of nodes"""
        return self.total_nodes

    @property
    def f(self) -> int:
        """Number of crash-faulty nodes"""
        return self.max_faults

    @property
    def quorum_size(self) -> int:
        """Messages awaited in each phase (n - f)"""
        return self._quorum_size

    @property
    def decision_threshold(self) -> int:
        """Identical votes needed to decide"""
        return self._decision_threshold

    @property
    def adoption_threshold(self) -> int:
        """Identical votes needed to carry a value into the next round (f + 1)"""
        return self.max_faults + 1

    @property
    def tolerates_faults(self) -> bool:
        """True when termination is guaranteed (3f < n)"""
        return 3 * self.max_faults < self.total_nodes

    def has_quorum(self, received: int) -> bool:
        return received >= self._quorum_size

    def has_majority(self, count: int) -> bool:
        """Strict majority of the whole network"""
        return 2 * count > self.total_nodes

    def can_decide(self, count: int) -> bool:
        return count >= self._decision_threshold

    def can_adopt(self, count: int) -> bool:
        return count >= self.adoption_threshold

    def get_status(self, received: int) -> QuorumStatus:
        if received == 0:
            return QuorumStatus.NOT_STARTED
        if self.has_quorum(received):
            return QuorumStatus.ACHIEVED
        return QuorumStatus.COLLECTING

    def to_dict(self) -> Dict[str, Any]:
        """Return quorum configuration as dict"""
        return {
            "total_nodes": self.total_nodes,
            "max_faults": self.max_faults,
            "quorum_size": self._quorum_size,
            "decision_threshold": self._decision_threshold,
            "adoption_threshold": self.adoption_threshold,
            "tolerates_faults": self.tolerates_faults,
            "formula": f"quorum = n - f = {self.total_nodes} - {self.max_faults} = {self._quorum_size}",
        }
