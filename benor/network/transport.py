"""
Transport Adapters - Best-effort point-to-point delivery between nodes

Contract: send(target, message) never raises for delivery problems. A crashed
or unreachable peer is the expected case under the fault model, so failures
are logged at DEBUG and reported as False.
"""

import asyncio
import logging
import random
from typing import Dict, Optional, Set, TYPE_CHECKING

import httpx

from benor.config import get_settings
from benor.consensus.messages import ConsensusMessage, MalformedMessageError
from benor.middleware.correlation import HEADER_NAME, get_correlation_id

if TYPE_CHECKING:
    from benor.consensus.engine import ConsensusEngine

logger = logging.getLogger("benor.network.transport")


class Transport:
    """Interface every transport implements"""

    async def send(self, target: int, message: ConsensusMessage) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class LocalTransport(Transport):
    """
    In-process delivery straight into the target engine's round buffer.

    With max_delay > 0 each message is delivered after a uniform random delay
    on a background task, which reorders traffic between nodes.
    """

    def __init__(self, max_delay: float = 0.0, seed: Optional[int] = None):
        self.max_delay = max_delay
        self._endpoints: Dict[int, "ConsensusEngine"] = {}
        self._pending: Set[asyncio.Task] = set()
        self._rng = random.Random(seed)
        self.sent = 0
        self.dropped = 0

    def register(self, node_id: int, engine: "ConsensusEngine"):
        self._endpoints[node_id] = engine

    async def send(self, target: int, message: ConsensusMessage) -> bool:
        self.sent += 1
        if self.max_delay > 0:
            task = asyncio.create_task(self._deliver_later(target, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return True
        return self._deliver(target, message)

    async def _deliver_later(self, target: int, message: ConsensusMessage):
        await asyncio.sleep(self._rng.uniform(0, self.max_delay))
        self._deliver(target, message)

    def _deliver(self, target: int, message: ConsensusMessage) -> bool:
        engine = self._endpoints.get(target)
        if engine is None:
            self.dropped += 1
            logger.debug(f"No endpoint for node {target}, dropping {message}")
            return False
        try:
            accepted = engine.deliver(message)
        except MalformedMessageError as e:
            logger.warning(f"Node {target} rejected {message}: {e.reason}")
            return False
        if not accepted:
            self.dropped += 1
        return accepted

    async def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()


class HttpTransport(Transport):
    """
    POSTs wire messages to http://host:(base_port + target)/message.

    One pooled httpx.AsyncClient per transport, per-request timeout.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        base_port: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.host = host or settings.NODE_HOST
        self.base_port = base_port if base_port is not None else settings.BASE_NODE_PORT
        self.timeout = timeout if timeout is not None else settings.SEND_TIMEOUT
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(f"HttpTransport initialized: host={self.host}, base_port={self.base_port}")

    def url_for(self, target: int) -> str:
        return f"http://{self.host}:{self.base_port + target}/message"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx async client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
        return self._client

    async def send(self, target: int, message: ConsensusMessage) -> bool:
        try:
            client = await self._get_client()
            response = await client.post(
                self.url_for(target),
                json=message.to_wire(),
                headers={HEADER_NAME: get_correlation_id()},
                timeout=httpx.Timeout(self.timeout),
            )
        except httpx.HTTPError as e:
            logger.debug(f"Send {message} to node {target} failed: {type(e).__name__}")
            return False

        if response.status_code != 200:
            logger.debug(
                f"Node {target} refused {message}: HTTP {response.status_code}"
            )
            return False
        return True

    async def close(self) -> None:
        """Close the httpx client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.debug("HttpTransport closed")

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
