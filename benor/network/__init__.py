"""
Network Module - Transports, node supervision and HTTP control
"""

from .transport import Transport, LocalTransport, HttpTransport
from .supervisor import (
    NetworkSupervisor,
    NetworkConfig,
    NetworkConfigError,
    NodeHandle,
    launch_network,
)
from .control import (
    NetworkControlClient,
    start_consensus,
    stop_consensus,
    get_nodes_state,
)

__all__ = [
    # Transport
    "Transport",
    "LocalTransport",
    "HttpTransport",
    # Supervisor
    "NetworkSupervisor",
    "NetworkConfig",
    "NetworkConfigError",
    "NodeHandle",
    "launch_network",
    # Control
    "NetworkControlClient",
    "start_consensus",
    "stop_consensus",
    "get_nodes_state",
]
