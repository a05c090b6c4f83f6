"""
Network Control Client - Drive a running network over HTTP

Start or stop consensus on every node and collect node states, addressing
node i at base_port + i. Failures on individual nodes are logged and never
abort the sweep over the others.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List

import httpx

from benor.config import get_settings

logger = logging.getLogger("benor.network.control")

FAULTY_STATE: Dict[str, Any] = {"killed": False, "x": None, "decided": None, "k": None}


class NetworkControlClient:
    """Async HTTP client for the node control surface"""

    def __init__(
        self,
        host: Optional[str] = None,
        base_port: Optional[int] = None,
        timeout: float = 2.0,
    ):
        settings = get_settings()
        self.host = host or settings.NODE_HOST
        self.base_port = base_port if base_port is not None else settings.BASE_NODE_PORT
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    def node_url(self, node_id: int) -> str:
        return f"http://{self.host}:{self.base_port + node_id}"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "NetworkControlClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get(self, node_id: int, path: str) -> Optional[httpx.Response]:
        client = await self._get_client()
        try:
            return await client.get(f"{self.node_url(node_id)}{path}")
        except httpx.HTTPError as e:
            logger.error(f"GET {path} on node {node_id} failed: {type(e).__name__}: {e}")
            return None

    async def start_consensus(self, total_nodes: int) -> Dict[int, bool]:
        """Send /start to every node, in order"""
        results = {}
        for node_id in range(total_nodes):
            response = await self._get(node_id, "/start")
            results[node_id] = response is not None and response.status_code == 200
            if response is not None and response.status_code != 200:
                logger.info(f"Node {node_id} did not start: {response.text}")
        return results

    async def stop_consensus(self, total_nodes: int) -> Dict[int, bool]:
        """Send /stop to every node"""
        results = {}
        for node_id in range(total_nodes):
            response = await self._get(node_id, "/stop")
            results[node_id] = response is not None and response.status_code == 200
        return results

    async def get_node_status(self, node_id: int) -> str:
        """Liveness as reported by /status: live, faulty or unreachable"""
        response = await self._get(node_id, "/status")
        if response is None:
            return "unreachable"
        if response.status_code == 500:
            return "faulty"
        return response.text

    async def get_node_state(self, node_id: int) -> Optional[Dict[str, Any]]:
        """
        Node state in wire form.

        A faulty node (500 on /status) yields the null state; an
        unreachable node yields None.
        """
        status = await self.get_node_status(node_id)
        if status == "faulty":
            return dict(FAULTY_STATE)
        if status == "unreachable":
            return None

        response = await self._get(node_id, "/getState")
        if response is None or response.status_code != 200:
            return None
        return response.json()

    async def get_nodes_state(self, total_nodes: int) -> List[Optional[Dict[str, Any]]]:
        return list(
            await asyncio.gather(*(self.get_node_state(node_id) for node_id in range(total_nodes)))
        )


async def start_consensus(total_nodes: int, **client_kwargs) -> Dict[int, bool]:
    async with NetworkControlClient(**client_kwargs) as client:
        return await client.start_consensus(total_nodes)


async def stop_consensus(total_nodes: int, **client_kwargs) -> Dict[int, bool]:
    async with NetworkControlClient(**client_kwargs) as client:
        return await client.stop_consensus(total_nodes)


async def get_nodes_state(total_nodes: int, **client_kwargs) -> List[Optional[Dict[str, Any]]]:
    async with NetworkControlClient(**client_kwargs) as client:
        return await client.get_nodes_state(total_nodes)
