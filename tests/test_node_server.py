"""
Node HTTP Server tests - routes exercised in-process through ASGI
"""

import httpx
import pytest

from benor.consensus import ConsensusEngine, EngineState, Phase, Value
from benor.middleware.correlation import HEADER_NAME
from benor.node.server import create_node_app

from conftest import RecordingTransport, wait_until


def client_for(engine):
    app = create_node_app(engine)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://node")


@pytest.fixture
def correct_engine(fast_config):
    return ConsensusEngine(0, fast_config(), Value.ONE, transport=RecordingTransport())


@pytest.fixture
def faulty_engine(fast_config):
    return ConsensusEngine(1, fast_config(), None, is_faulty=True, transport=RecordingTransport())


class TestStatusRoute:

    @pytest.mark.asyncio
    async def test_live(self, correct_engine):
        async with client_for(correct_engine) as client:
            response = await client.get("/status")
        assert response.status_code == 200
        assert response.text == "live"

    @pytest.mark.asyncio
    async def test_faulty(self, faulty_engine):
        async with client_for(faulty_engine) as client:
            response = await client.get("/status")
        assert response.status_code == 500
        assert response.text == "faulty"

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, correct_engine):
        async with client_for(correct_engine) as client:
            response = await client.get("/status", headers={HEADER_NAME: "corr-test123"})
            generated = await client.get("/status")
        assert response.headers[HEADER_NAME] == "corr-test123"
        assert generated.headers[HEADER_NAME].startswith("corr-")


class TestLifecycleRoutes:
    """/start, /stop and /getState"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, correct_engine):
        async with client_for(correct_engine) as client:
            started = await client.get("/start")
            again = await client.get("/start")
            stopped = await client.get("/stop")
            stopped_again = await client.get("/stop")
            state = await client.get("/getState")

        assert started.status_code == 200
        assert started.text == "Algorithm started"
        assert again.text == "Algorithm already running"
        assert stopped.text == "Algorithm stopped"
        assert stopped_again.status_code == 200
        assert correct_engine.lifecycle == EngineState.STOPPED
        assert state.json()["killed"] is True

    @pytest.mark.asyncio
    async def test_start_faulty(self, faulty_engine):
        async with client_for(faulty_engine) as client:
            response = await client.get("/start")
        assert response.status_code == 500
        assert faulty_engine.lifecycle == EngineState.INERT

    @pytest.mark.asyncio
    async def test_get_state_correct(self, correct_engine):
        async with client_for(correct_engine) as client:
            response = await client.get("/getState")
        assert response.status_code == 200
        assert response.json() == {"killed": False, "x": 1, "decided": False, "k": 1}

    @pytest.mark.asyncio
    async def test_get_state_faulty(self, faulty_engine):
        async with client_for(faulty_engine) as client:
            response = await client.get("/getState")
        assert response.json() == {"killed": False, "x": None, "decided": None, "k": None}


class TestMessageRoute:
    """POST /message"""

    @pytest.mark.asyncio
    async def test_message_is_buffered(self, correct_engine):
        async with client_for(correct_engine) as client:
            response = await client.post("/message", json={"phase": 2, "k": 4, "value": 0, "sender": 2})

        assert response.status_code == 200
        assert response.text == "Message received"
        assert correct_engine.buffer.count_at(4, Phase.VOTE) == 1

    @pytest.mark.asyncio
    async def test_invalid_payload(self, correct_engine):
        async with client_for(correct_engine) as client:
            response = await client.post("/message", json={"phase": 3, "k": 1, "value": 0, "sender": 2})
        assert response.status_code == 422
        assert len(correct_engine.buffer) == 0

    @pytest.mark.asyncio
    async def test_sender_out_of_range(self, correct_engine):
        async with client_for(correct_engine) as client:
            response = await client.post("/message", json={"phase": 1, "k": 1, "value": 1, "sender": 9})
        assert response.status_code == 400
        assert len(correct_engine.buffer) == 0

    @pytest.mark.asyncio
    async def test_unknown_value_rejected(self, correct_engine):
        async with client_for(correct_engine) as client:
            response = await client.post("/message", json={"phase": 1, "k": 1, "value": "?", "sender": 1})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_faulty_node_refuses(self, faulty_engine):
        async with client_for(faulty_engine) as client:
            response = await client.post("/message", json={"phase": 1, "k": 1, "value": 1, "sender": 0})
        assert response.status_code == 500
        assert len(faulty_engine.buffer) == 0

    @pytest.mark.asyncio
    async def test_messages_drive_decision(self, fast_config):
        """Peers' messages posted over HTTP let a running node decide"""
        engine = ConsensusEngine(0, fast_config(max_poll_attempts=500), Value.ZERO, transport=RecordingTransport())
        async with client_for(engine) as client:
            await client.get("/start")
            for phase in (1, 2):
                for sender in (1, 2):
                    await client.post("/message", json={"phase": phase, "k": 1, "value": 0, "sender": sender})

            assert await wait_until(lambda: engine.decided)
            state = (await client.get("/getState")).json()
            await client.get("/stop")

        assert state == {"killed": False, "x": 0, "decided": True, "k": 1}
