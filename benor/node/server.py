"""
Node HTTP Server - External surface of one consensus node

Routes:
- GET  /status    liveness probe (500 "faulty" for crash-faulty nodes)
- GET  /start     IDLE → RUNNING
- GET  /stop      → STOPPED (idempotent)
- GET  /getState  {"killed", "x", "decided", "k"}
- POST /message   inbound consensus message
"""

import logging
from typing import Literal, Optional, Union

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from benor.consensus import ConsensusEngine, ConsensusMessage, MalformedMessageError
from benor.middleware.correlation import CorrelationIdMiddleware, get_correlation_id

logger = logging.getLogger("benor.node.server")

WireValue = Union[Literal[0, 1], Literal["?"]]


# =============================================================================
# Request/Response Models
# =============================================================================

class MessagePayload(BaseModel):
    """Inbound consensus message in wire form"""
    phase: Literal[1, 2]
    k: int = Field(..., ge=1, description="Round number")
    value: WireValue
    sender: int = Field(..., ge=0)


class NodeStateResponse(BaseModel):
    killed: bool
    x: Optional[WireValue] = None
    decided: Optional[bool] = None
    k: Optional[int] = None


# =============================================================================
# Application Factory
# =============================================================================

def create_node_app(engine: ConsensusEngine) -> FastAPI:
    """Build the FastAPI application serving one engine"""
    app = FastAPI(
        title=f"Ben-Or Node {engine.node_id}",
        description="Randomized binary consensus node",
        version="1.0.0",
    )
    app.add_middleware(CorrelationIdMiddleware)
    app.state.engine = engine

    @app.get("/status", response_class=PlainTextResponse)
    async def status():
        if engine.is_faulty:
            return PlainTextResponse("faulty", status_code=500)
        return PlainTextResponse("live")

    @app.get("/start", response_class=PlainTextResponse)
    async def start():
        if engine.is_faulty or not engine.alive:
            return PlainTextResponse("Node is faulty or killed", status_code=500)

        started = await engine.start()
        if not started:
            return PlainTextResponse(f"Algorithm already {engine.lifecycle.value}")
        return PlainTextResponse("Algorithm started")

    @app.get("/stop", response_class=PlainTextResponse)
    async def stop():
        await engine.stop()
        return PlainTextResponse("Algorithm stopped")

    @app.get("/getState", response_model=NodeStateResponse)
    async def get_state():
        return NodeStateResponse(**engine.snapshot().to_wire())

    @app.post("/message", response_class=PlainTextResponse)
    async def receive_message(payload: MessagePayload):
        try:
            message = ConsensusMessage.from_wire(payload.model_dump())
            accepted = engine.deliver(message)
        except MalformedMessageError as e:
            logger.warning(
                f"Node {engine.node_id} rejected message [corr-id:{get_correlation_id()}]: {e.reason}"
            )
            raise HTTPException(status_code=400, detail=f"Invalid message format: {e.reason}")

        if not accepted:
            return PlainTextResponse("Node is killed or faulty", status_code=500)
        return PlainTextResponse("Message received")

    return app
