"""
Consensus Engine - One node's Ben-Or state machine

Round k, for a non-faulty RUNNING node:
1. PROPOSE: broadcast the current estimate, wait for n - f proposals
2. Tally: strict majority of n among proposals -> adopt it, else coin flip
3. VOTE: broadcast the new estimate, wait for n - f votes
4. Decide on max(n - f, n/2 + 1) identical votes; otherwise carry a value
   seen in more than f votes, otherwise coin flip; k += 1

Waits are bounded (poll_interval * max_poll_attempts). Running out of time
is not an error: the node proceeds with whatever it collected. A decided
node keeps relaying its value for later rounds so slower peers can still
reach quorum.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Set, Callable, TYPE_CHECKING

from benor.config import get_settings

from .messages import ConsensusMessage, Phase, Value
from .quorum import QuorumCalculator
from .round_buffer import PhaseValues, RoundBuffer
from .state import (
    EngineState,
    InvalidTransitionError,
    NodeState,
    StateTransition,
    VALID_TRANSITIONS,
)

if TYPE_CHECKING:
    from benor.network.transport import Transport

logger = logging.getLogger("benor.consensus.engine")


@dataclass
class ConsensusConfig:
    """Configuration shared by every engine of one network"""
    total_nodes: int = 3
    max_faults: int = 0
    poll_interval: float = field(default_factory=lambda: get_settings().POLL_INTERVAL)
    max_poll_attempts: int = field(default_factory=lambda: get_settings().MAX_POLL_ATTEMPTS)
    seed: Optional[int] = None

    @property
    def wait_budget(self) -> float:
        return self.poll_interval * self.max_poll_attempts


class ConsensusEngine:
    """
    Owns one node's state and runs its round loop as a single asyncio task.

    Only the engine's own task mutates estimate, round and decision. Inbound
    delivery only touches the round buffer and wakes the loop.
    """

    def __init__(
        self,
        node_id: int,
        config: ConsensusConfig,
        initial_value: Value,
        is_faulty: bool = False,
        transport: Optional["Transport"] = None,
    ):
        if not 0 <= node_id < config.total_nodes:
            raise ValueError(f"Node id {node_id} outside [0, {config.total_nodes})")

        self.node_id = node_id
        self.config = config
        self.is_faulty = is_faulty
        self.transport = transport
        self.quorum = QuorumCalculator(
            total_nodes=config.total_nodes,
            max_faults=config.max_faults,
        )
        self.buffer = RoundBuffer(config.total_nodes)

        # Node state
        self.estimate: Value = Value.UNKNOWN if is_faulty else Value.coerce(initial_value)
        self.round: int = 1
        self.decided: bool = False
        self.decided_value: Optional[Value] = Value.UNKNOWN if is_faulty else None
        self.alive: bool = True
        self.lifecycle = EngineState.INERT if is_faulty else EngineState.IDLE
        self.transitions: List[StateTransition] = []

        self._rng = random.Random(
            None if config.seed is None else config.seed * 1_000_003 + node_id
        )
        self._wakeup = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._decision_callbacks: List[Callable] = []
        self._callback_tasks: Set[asyncio.Task] = set()

        if not is_faulty and not self.estimate.is_known:
            raise ValueError(f"Node {node_id} is not faulty but has no initial estimate")

        logger.info(
            f"Node {node_id} created: faulty={is_faulty}, "
            f"estimate={self.estimate.to_wire()}, n={config.total_nodes}, f={config.max_faults}"
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        """True while the node should keep sending (RUNNING or DECIDED relay)"""
        return self.alive and self.lifecycle in (EngineState.RUNNING, EngineState.DECIDED)

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def _transition_to(self, new_state: EngineState, reason: Optional[str] = None) -> StateTransition:
        if new_state not in VALID_TRANSITIONS.get(self.lifecycle, set()):
            raise InvalidTransitionError(self.node_id, self.lifecycle, new_state)

        transition = StateTransition(
            node_id=self.node_id,
            from_state=self.lifecycle,
            to_state=new_state,
            round=self.round,
            reason=reason,
        )
        self.transitions.append(transition)
        self.lifecycle = new_state

        logger.info(
            f"Node {self.node_id}: {transition.from_state.value} → {new_state.value} (k={self.round})"
            + (f" ({reason})" if reason else "")
        )
        return transition

    async def start(self) -> bool:
        """
        Begin the round loop.

        Returns:
            True if the loop was started, False if faulty, stopped or already started
        """
        if self.is_faulty:
            logger.warning(f"Node {self.node_id} is faulty, ignoring start")
            return False
        if self.lifecycle != EngineState.IDLE:
            logger.debug(f"Node {self.node_id} already {self.lifecycle.value}, ignoring start")
            return False

        self._loop = asyncio.get_running_loop()
        self._transition_to(EngineState.RUNNING, "start requested")
        self._task = asyncio.create_task(self._run(), name=f"benor-node-{self.node_id}")
        return True

    async def stop(self):
        """Halt the node. Idempotent; a suspended wait resolves immediately."""
        if not self.alive:
            return

        self.alive = False
        if self.lifecycle in (EngineState.IDLE, EngineState.RUNNING, EngineState.DECIDED):
            self._transition_to(EngineState.STOPPED, "stop requested")
        self._wakeup.set()

        task = self._task
        if task and not task.done() and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)

    def snapshot(self) -> NodeState:
        """Read-only view of the current state; never blocks the loop"""
        return NodeState(
            node_id=self.node_id,
            estimate=self.estimate,
            round=self.round,
            decided=self.decided,
            decided_value=self.decided_value,
            faulty=self.is_faulty,
            alive=self.alive,
            lifecycle=self.lifecycle,
        )

    # =========================================================================
    # Inbound delivery
    # =========================================================================

    def deliver(self, message: ConsensusMessage) -> bool:
        """
        Hand an inbound message to the round buffer.

        Returns:
            False if this node is faulty or stopped (message ignored)

        Raises:
            MalformedMessageError: If the buffer rejects the message
        """
        if self.is_faulty or not self.alive:
            return False

        self.buffer.record(message)
        logger.debug(f"Node {self.node_id} received {message}")
        self._notify()
        return True

    def _notify(self):
        """Wake the round loop; safe to call from any thread"""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._wakeup.set()
        else:
            loop.call_soon_threadsafe(self._wakeup.set)

    # =========================================================================
    # Round loop
    # =========================================================================

    async def _run(self):
        while self.is_running and not self.decided:
            k = self.round

            proposals = await self._exchange(k, Phase.PROPOSE, self.estimate)
            if proposals is None:
                return
            self.estimate = self._choose_from_proposals(k, proposals)

            votes = await self._exchange(k, Phase.VOTE, self.estimate)
            if votes is None:
                return
            if self._apply_votes(k, votes):
                break

            self.round = k + 1

        if self.decided and self.is_running:
            await self._relay_decision()

    async def _exchange(self, k: int, phase: Phase, value: Value) -> Optional[PhaseValues]:
        """Self-deliver, broadcast, wait for quorum; None if stopped meanwhile"""
        message = ConsensusMessage(round=k, phase=phase, value=value, sender=self.node_id)
        self.buffer.record(message)
        await self._broadcast(message)

        reached = await self._await_quorum(k, phase)
        if not self.is_running:
            return None

        values = self.buffer.values_at(k, phase)
        if not reached:
            status = self.quorum.get_status(len(values))
            logger.warning(
                f"Node {self.node_id} k={k} {phase.name}: quorum {status.value} "
                f"({len(values)}/{self.quorum.quorum_size}, heard from {values.senders()}) "
                f"within {self.config.wait_budget:.2f}s, proceeding"
            )
        return values

    async def _broadcast(self, message: ConsensusMessage):
        """Send to every other node; one unreachable peer never aborts the rest"""
        if not self.is_running or self.transport is None:
            return

        peers = [peer for peer in range(self.config.total_nodes) if peer != self.node_id]
        results = await asyncio.gather(
            *(self.transport.send(peer, message) for peer in peers),
            return_exceptions=True,
        )
        for peer, result in zip(peers, results):
            if isinstance(result, Exception):
                logger.debug(f"Node {self.node_id} send to {peer} raised: {result}")

    async def _await_quorum(self, k: int, phase: Phase) -> bool:
        """Wait for n - f senders in (k, phase), a stop, or the wait budget"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.wait_budget

        while self.is_running:
            if self.quorum.has_quorum(self.buffer.count_at(k, phase)):
                return True
            self._wakeup.clear()
            # Re-check after clearing so a delivery in between is not lost
            if self.quorum.has_quorum(self.buffer.count_at(k, phase)):
                return True

            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await self._sleep(min(self.config.poll_interval, remaining))

        return False

    async def _sleep(self, timeout: float):
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    def _coin(self) -> Value:
        return Value.ONE if self._rng.random() < 0.5 else Value.ZERO

    def _choose_from_proposals(self, k: int, proposals: PhaseValues) -> Value:
        count0 = proposals.count(Value.ZERO)
        count1 = proposals.count(Value.ONE)

        if self.quorum.has_majority(count0):
            chosen, reason = Value.ZERO, "majority"
        elif self.quorum.has_majority(count1):
            chosen, reason = Value.ONE, "majority"
        else:
            chosen, reason = self._coin(), "coin"

        logger.debug(
            f"Node {self.node_id} k={k} proposals 0:{count0} 1:{count1} -> "
            f"{chosen.to_wire()} ({reason})"
        )
        return chosen

    def _apply_votes(self, k: int, votes: PhaseValues) -> bool:
        """Apply the decision rule. Returns True if the node decided."""
        counts = {Value.ZERO: votes.count(Value.ZERO), Value.ONE: votes.count(Value.ONE)}

        for value, count in counts.items():
            if self.quorum.can_decide(count):
                self._decide(value, k, count)
                return True

        carried = [value for value, count in counts.items() if self.quorum.can_adopt(count)]
        if len(carried) == 2 and counts[Value.ZERO] != counts[Value.ONE]:
            carried = [max(carried, key=counts.get)]

        if len(carried) == 1:
            self.estimate, reason = carried[0], "carried"
        else:
            self.estimate, reason = self._coin(), "coin"

        logger.debug(
            f"Node {self.node_id} k={k} votes 0:{counts[Value.ZERO]} 1:{counts[Value.ONE]} -> "
            f"next estimate {self.estimate.to_wire()} ({reason})"
        )
        return False

    def _decide(self, value: Value, k: int, count: int):
        self.estimate = value
        self.decided_value = value
        self.decided = True
        self._transition_to(EngineState.DECIDED, f"{count} votes for {value.to_wire()}")
        logger.info(f"Node {self.node_id} DECIDED {value.to_wire()} in round {k}")
        self._schedule_decision_callbacks()

    async def _relay_decision(self):
        """
        Keep answering later rounds with the decided value.

        Every round beyond the decision round that some peer has sent a
        message for gets one PROPOSE and one VOTE carrying the decided value.
        Rounds nobody reached are skipped. Estimate and round stay fixed.
        """
        relayed: Set[int] = set()
        while self.is_running:
            for k in self._rounds_to_relay(relayed):
                if not self.is_running:
                    return
                relayed.add(k)
                for phase in Phase:
                    await self._broadcast(
                        ConsensusMessage(
                            round=k,
                            phase=phase,
                            value=self.decided_value,
                            sender=self.node_id,
                        )
                    )
                logger.debug(f"Node {self.node_id} relayed decision for k={k}")

            self._wakeup.clear()
            if self._rounds_to_relay(relayed):
                continue
            await self._sleep(self.config.poll_interval)

    def _rounds_to_relay(self, relayed: Set[int]) -> List[int]:
        return [k for k in self.buffer.rounds() if k > self.round and k not in relayed]

    # =========================================================================
    # Callbacks
    # =========================================================================

    def on_decision(self, callback: Callable):
        """Register callback(NodeState) invoked once the node decides"""
        self._decision_callbacks.append(callback)

    def _schedule_decision_callbacks(self):
        if self._decision_callbacks:
            task = asyncio.get_running_loop().create_task(self._notify_decision(self.snapshot()))
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_tasks.discard)

    async def _notify_decision(self, state: NodeState):
        for callback in self._decision_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(state)
                else:
                    callback(state)
            except Exception as e:
                logger.error(f"Decision callback error: {e}")

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Comprehensive engine status for diagnostics"""
        state = self.snapshot()
        return {
            **state.to_dict(),
            "quorum": self.quorum.to_dict(),
            "buffered_messages": len(self.buffer),
            "buffered_rounds": self.buffer.highest_round(),
            "transitions": [t.to_dict() for t in self.transitions],
        }
