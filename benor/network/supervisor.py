"""
Node Supervisor - Creates, wires, starts, stops and inspects N engines

Local mode wires every engine to one LocalTransport. HTTP mode gives every
node its own FastAPI app served by uvicorn on base_port + node_id and an
HttpTransport for outbound traffic. Each node's readiness is a future that
resolves once it can receive messages.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Sequence, Set, Union

import uvicorn

from benor.config import get_settings
from benor.consensus import (
    BenOrError,
    ConsensusConfig,
    ConsensusEngine,
    NodeState,
    Value,
)
from benor.node.server import create_node_app

from .transport import HttpTransport, LocalTransport, Transport

logger = logging.getLogger("benor.network.supervisor")

InitialValue = Union[Value, int, str, None]


class NetworkConfigError(BenOrError, ValueError):
    """Raised when a network is configured inconsistently, before any node starts"""


@dataclass
class NetworkConfig:
    """Network shape: N nodes, F of them crash-faulty"""
    total_nodes: int
    faulty_nodes: int

    def __post_init__(self):
        if self.total_nodes < 1:
            raise NetworkConfigError(f"Network needs at least one node, got N={self.total_nodes}")
        if not 0 <= self.faulty_nodes < self.total_nodes:
            raise NetworkConfigError(
                f"Faulty count must satisfy 0 <= F < N, got F={self.faulty_nodes}, N={self.total_nodes}"
            )

    @property
    def tolerates_faults(self) -> bool:
        return 3 * self.faulty_nodes < self.total_nodes

    def validate_launch(self, initial_values: Sequence[InitialValue], faulty_list: Sequence[bool]) -> List[Value]:
        """
        Check launch arguments against N and F.

        Returns:
            The initial values as Value members

        Raises:
            NetworkConfigError: On any mismatch
        """
        if len(initial_values) != len(faulty_list) or len(initial_values) != self.total_nodes:
            raise NetworkConfigError(
                f"Arrays don't match: N={self.total_nodes}, "
                f"initial_values={len(initial_values)}, faulty_list={len(faulty_list)}"
            )
        faulty_count = sum(1 for flag in faulty_list if flag)
        if faulty_count != self.faulty_nodes:
            raise NetworkConfigError(
                f"faulty_list has {faulty_count} faulty nodes, expected F={self.faulty_nodes}"
            )

        values = []
        for node_id, (raw, is_faulty) in enumerate(zip(initial_values, faulty_list)):
            try:
                value = Value.coerce(raw)
            except BenOrError:
                raise NetworkConfigError(f"Node {node_id} has invalid initial value {raw!r}")
            if not is_faulty and not value.is_known:
                raise NetworkConfigError(f"Non-faulty node {node_id} has no initial value")
            values.append(Value.UNKNOWN if is_faulty else value)
        return values


@dataclass
class NodeHandle:
    """Supervisor-side handle on one node"""
    node_id: int
    engine: ConsensusEngine
    ready: asyncio.Future
    server: Optional[uvicorn.Server] = None
    server_task: Optional[asyncio.Task] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_faulty(self) -> bool:
        return self.engine.is_faulty


class NetworkSupervisor:
    """
    Owns the engines of one network instance.

    Usage:
        async with NetworkSupervisor(NetworkConfig(4, 1)) as network:
            await network.launch([0, 1, 1, None], [False, False, False, True])
            await network.start_all()
            await network.wait_for_decisions(timeout=5)
    """

    def __init__(
        self,
        network_config: NetworkConfig,
        consensus_config: Optional[ConsensusConfig] = None,
        transport: str = "local",
        host: Optional[str] = None,
        base_port: Optional[int] = None,
        max_delay: float = 0.0,
    ):
        settings = get_settings()
        self.network_config = network_config
        self.consensus_config = consensus_config or ConsensusConfig(
            total_nodes=network_config.total_nodes,
            max_faults=network_config.faulty_nodes,
        )
        if (
            self.consensus_config.total_nodes != network_config.total_nodes
            or self.consensus_config.max_faults != network_config.faulty_nodes
        ):
            raise NetworkConfigError("ConsensusConfig does not match NetworkConfig")

        if transport not in ("local", "http"):
            raise NetworkConfigError(f"Unknown transport {transport!r}, expected 'local' or 'http'")
        self.transport_mode = transport
        self.host = host or settings.NODE_HOST
        self.base_port = base_port if base_port is not None else settings.BASE_NODE_PORT

        if transport == "local":
            self.transport: Transport = LocalTransport(max_delay=max_delay, seed=self.consensus_config.seed)
        else:
            self.transport = HttpTransport(host=self.host, base_port=self.base_port)

        self.nodes: Dict[int, NodeHandle] = {}
        self._watchers: Set[asyncio.Task] = set()
        self._launched = False
        logger.info(
            f"NetworkSupervisor created: N={network_config.total_nodes}, "
            f"F={network_config.faulty_nodes}, transport={transport}"
        )

    # =========================================================================
    # Creation and launch
    # =========================================================================

    def create(self, node_id: int, initial_value: InitialValue, is_faulty: bool) -> NodeHandle:
        """Instantiate one engine and wire it to the transport (not started)"""
        if node_id in self.nodes:
            raise NetworkConfigError(f"Node {node_id} already created")

        engine = ConsensusEngine(
            node_id=node_id,
            config=self.consensus_config,
            initial_value=Value.UNKNOWN if is_faulty else Value.coerce(initial_value),
            is_faulty=is_faulty,
            transport=self.transport,
        )
        handle = NodeHandle(
            node_id=node_id,
            engine=engine,
            ready=asyncio.get_running_loop().create_future(),
        )
        self.nodes[node_id] = handle

        if isinstance(self.transport, LocalTransport):
            self.transport.register(node_id, engine)
            handle.ready.set_result(True)
        return handle

    async def launch(
        self,
        initial_values: Sequence[InitialValue],
        faulty_list: Sequence[bool],
        ready_timeout: float = 10.0,
    ) -> List[NodeHandle]:
        """
        Create every node and wait until all can receive messages.

        Raises:
            NetworkConfigError: Before anything is created, on mismatched input
        """
        if self._launched:
            raise NetworkConfigError("Network already launched")
        values = self.network_config.validate_launch(initial_values, faulty_list)

        faulty_ids = [i for i, flag in enumerate(faulty_list) if flag]
        logger.info(f"Launching {self.network_config.total_nodes} nodes, faulty: {faulty_ids}")

        handles = [
            self.create(node_id, value, bool(faulty_list[node_id]))
            for node_id, value in enumerate(values)
        ]
        if self.transport_mode == "http":
            for handle in handles:
                self._serve(handle)

        await asyncio.wait_for(
            asyncio.gather(*(handle.ready for handle in handles)),
            timeout=ready_timeout,
        )
        self._launched = True
        logger.info("All nodes ready")
        return handles

    def _serve(self, handle: NodeHandle):
        config = uvicorn.Config(
            create_node_app(handle.engine),
            host=self.host,
            port=self.base_port + handle.node_id,
            log_level="warning",
            lifespan="off",
        )
        handle.server = uvicorn.Server(config)
        handle.server_task = asyncio.create_task(
            self._run_server(handle), name=f"benor-server-{handle.node_id}"
        )
        handle.server_task.add_done_callback(lambda task: self._on_server_done(handle, task))
        watcher = asyncio.create_task(self._watch_startup(handle))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

    async def _run_server(self, handle: NodeHandle):
        # uvicorn exits the interpreter when it cannot bind
        try:
            await handle.server.serve()
        except SystemExit as e:
            raise BenOrError(
                f"Server for node {handle.node_id} could not start on "
                f"{self.host}:{self.base_port + handle.node_id} (exit code {e.code})"
            ) from None

    async def _watch_startup(self, handle: NodeHandle):
        while not handle.ready.done():
            if handle.server.started:
                logger.debug(f"Node {handle.node_id} listening on port {self.base_port + handle.node_id}")
                handle.ready.set_result(True)
                return
            if handle.server_task.done():
                return
            await asyncio.sleep(0.01)

    def _on_server_done(self, handle: NodeHandle, task: asyncio.Task):
        if task.cancelled():
            error: Optional[BaseException] = None
        else:
            error = task.exception()
        if not handle.ready.done():
            handle.ready.set_exception(
                error or BenOrError(f"Server for node {handle.node_id} exited before startup")
            )
        if error:
            logger.error(f"Server for node {handle.node_id} failed: {error}")

    # =========================================================================
    # Control surface
    # =========================================================================

    def get(self, node_id: int) -> NodeHandle:
        if node_id not in self.nodes:
            raise KeyError(f"Node {node_id} not found")
        return self.nodes[node_id]

    async def start(self, handle: NodeHandle) -> bool:
        """IDLE → RUNNING; no-op for faulty or already-started nodes"""
        started = await handle.engine.start()
        if started:
            handle.engine.task.add_done_callback(
                lambda task: self._on_engine_done(handle.node_id, task)
            )
        return started

    async def stop(self, handle: NodeHandle):
        """→ STOPPED; idempotent"""
        await handle.engine.stop()

    def snapshot(self, handle: NodeHandle) -> NodeState:
        return handle.engine.snapshot()

    def status(self, handle: NodeHandle) -> str:
        """Liveness probe: "faulty" for crash-faulty nodes, "live" otherwise"""
        return "faulty" if handle.is_faulty else "live"

    def _on_engine_done(self, node_id: int, task: asyncio.Task):
        if task.cancelled():
            logger.warning(f"Node {node_id} round loop cancelled")
            return
        error = task.exception()
        if error:
            logger.error(f"Node {node_id} round loop failed: {error!r}")

    async def start_all(self) -> Dict[int, bool]:
        results = {}
        for node_id, handle in self.nodes.items():
            results[node_id] = await self.start(handle)
        return results

    async def stop_all(self):
        await asyncio.gather(*(self.stop(handle) for handle in self.nodes.values()))

    def snapshots(self) -> List[NodeState]:
        return [self.snapshot(self.nodes[node_id]) for node_id in sorted(self.nodes)]

    def correct_nodes(self) -> List[NodeHandle]:
        return [handle for handle in self.nodes.values() if not handle.is_faulty]

    def all_decided(self) -> bool:
        correct = self.correct_nodes()
        return bool(correct) and all(handle.engine.decided for handle in correct)

    async def wait_for_decisions(self, timeout: float = 10.0, interval: float = 0.05) -> bool:
        """
        Wait until every non-faulty node decided.

        Returns:
            True if all decided within timeout (no exception on timeout)
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if self.all_decided():
                return True
            await asyncio.sleep(interval)
        return self.all_decided()

    def decided_values(self) -> Dict[int, Value]:
        return {
            state.node_id: state.decided_value
            for state in self.snapshots()
            if state.decided
        }

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self):
        """Stop every engine, every server and the transport"""
        await self.stop_all()

        for handle in self.nodes.values():
            if handle.server is not None:
                handle.server.should_exit = True
        server_tasks = [h.server_task for h in self.nodes.values() if h.server_task is not None]
        if server_tasks:
            await asyncio.gather(*server_tasks, return_exceptions=True)

        await self.transport.close()
        logger.info("NetworkSupervisor shut down")

    async def __aenter__(self) -> "NetworkSupervisor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    def get_status(self) -> Dict[str, Any]:
        """Network-wide summary"""
        states = self.snapshots()
        return {
            "total_nodes": self.network_config.total_nodes,
            "faulty_nodes": self.network_config.faulty_nodes,
            "tolerates_faults": self.network_config.tolerates_faults,
            "transport": self.transport_mode,
            "all_decided": self.all_decided(),
            "decided_values": {k: v.to_wire() for k, v in self.decided_values().items()},
            "nodes": [state.to_dict() for state in states],
            "timestamp": datetime.utcnow().isoformat(),
        }


async def launch_network(
    total_nodes: int,
    faulty_nodes: int,
    initial_values: Optional[Sequence[InitialValue]] = None,
    faulty_list: Optional[Sequence[bool]] = None,
    **supervisor_kwargs,
) -> NetworkSupervisor:
    """
    Build and launch a network (nodes created and ready, not started).

    Defaults: random initial values, the first F nodes faulty.
    """
    network_config = NetworkConfig(total_nodes, faulty_nodes)
    if initial_values is None:
        initial_values = [random.choice((Value.ZERO, Value.ONE)) for _ in range(total_nodes)]
    if faulty_list is None:
        faulty_list = [node_id < faulty_nodes for node_id in range(total_nodes)]

    supervisor = NetworkSupervisor(network_config, **supervisor_kwargs)
    try:
        await supervisor.launch(initial_values, faulty_list)
    except BaseException:
        await supervisor.shutdown()
        raise
    return supervisor
