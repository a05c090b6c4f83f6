"""
HTTP network tests - real uvicorn servers on localhost

Each node listens on base_port + node_id; the control client drives the
network the same way an external harness would.
"""

import socket

import pytest

from benor.consensus import BenOrError
from benor.network import NetworkConfig, NetworkControlClient, NetworkSupervisor, get_nodes_state

from conftest import wait_until

HOST = "127.0.0.1"


@pytest.mark.http
class TestHttpNetwork:
    """Full protocol over HTTP transport"""

    @pytest.mark.asyncio
    async def test_three_nodes_decide_over_http(self, fast_config):
        base_port = 39310
        supervisor = NetworkSupervisor(
            NetworkConfig(3, 0),
            consensus_config=fast_config(total_nodes=3, max_faults=0, max_poll_attempts=200),
            transport="http",
            host=HOST,
            base_port=base_port,
        )
        async with supervisor:
            await supervisor.launch([1, 1, 1], [False, False, False])

            async with NetworkControlClient(host=HOST, base_port=base_port) as client:
                started = await client.start_consensus(3)
                assert started == {0: True, 1: True, 2: True}

                assert await supervisor.wait_for_decisions(timeout=10)
                states = await client.get_nodes_state(3)

        assert states == [{"killed": False, "x": 1, "decided": True, "k": 1}] * 3

    @pytest.mark.asyncio
    async def test_faulty_node_over_http(self, fast_config):
        base_port = 39320
        supervisor = NetworkSupervisor(
            NetworkConfig(4, 1),
            consensus_config=fast_config(total_nodes=4, max_faults=1, max_poll_attempts=200),
            transport="http",
            host=HOST,
            base_port=base_port,
        )
        async with supervisor:
            await supervisor.launch([0, None, 0, 0], [False, True, False, False])

            async with NetworkControlClient(host=HOST, base_port=base_port) as client:
                assert await client.get_node_status(1) == "faulty"
                assert await client.get_node_status(0) == "live"

                started = await client.start_consensus(4)
                assert started == {0: True, 1: False, 2: True, 3: True}
                assert await supervisor.wait_for_decisions(timeout=10)

            states = await get_nodes_state(4, host=HOST, base_port=base_port)

        assert states[1] == {"killed": False, "x": None, "decided": None, "k": None}
        for node_id in (0, 2, 3):
            assert states[node_id]["decided"] is True
            assert states[node_id]["x"] == 0

    @pytest.mark.asyncio
    async def test_unreachable_node(self):
        async with NetworkControlClient(host=HOST, base_port=39390, timeout=0.5) as client:
            assert await client.get_node_status(0) == "unreachable"
            assert await client.get_node_state(0) is None

    @pytest.mark.asyncio
    async def test_stop_over_http(self, fast_config):
        base_port = 39330
        supervisor = NetworkSupervisor(
            NetworkConfig(4, 2),
            consensus_config=fast_config(total_nodes=4, max_faults=2),
            transport="http",
            host=HOST,
            base_port=base_port,
        )
        async with supervisor:
            await supervisor.launch([0, 1, None, None], [False, False, True, True])

            async with NetworkControlClient(host=HOST, base_port=base_port) as client:
                await client.start_consensus(4)
                assert await wait_until(lambda: supervisor.get(0).engine.round > 1, timeout=5)

                stopped = await client.stop_consensus(4)
                assert all(stopped.values())
                states = await client.get_nodes_state(4)

        assert states[0]["killed"] is True
        assert states[0]["decided"] is False
        assert states[2] == {"killed": False, "x": None, "decided": None, "k": None}

    @pytest.mark.asyncio
    async def test_busy_port_fails_launch(self, fast_config):
        """A node that cannot bind fails launch() instead of exiting the process"""
        base_port = 39450
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind((HOST, base_port + 1))
        blocker.listen()
        try:
            supervisor = NetworkSupervisor(
                NetworkConfig(3, 0),
                consensus_config=fast_config(total_nodes=3, max_faults=0),
                transport="http",
                host=HOST,
                base_port=base_port,
            )
            async with supervisor:
                with pytest.raises(BenOrError, match="node 1 could not start"):
                    await supervisor.launch([0, 0, 0], [False, False, False])
                assert supervisor.get(1).ready.done()
        finally:
            blocker.close()
