"""
pytest configuration for the Ben-Or test suite
"""

import asyncio

import pytest

from benor.consensus import ConsensusConfig, ConsensusMessage, Phase, Value


class RecordingTransport:
    """Transport stub that records every send and delivers nothing"""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send(self, target, message):
        if target in self.fail_for:
            raise ConnectionError(f"node {target} unreachable")
        self.sent.append((target, message))
        return True

    async def close(self):
        return None

    def messages(self, phase=None, round_number=None):
        """Distinct messages sent (one entry per broadcast)"""
        seen = []
        for _, message in self.sent:
            if phase is not None and message.phase != phase:
                continue
            if round_number is not None and message.round != round_number:
                continue
            if message not in seen:
                seen.append(message)
        return seen


async def wait_until(predicate, timeout=2.0, interval=0.01):
    """Poll predicate until true or timeout; returns the final result"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return bool(predicate())


def message(round_number, phase, value, sender):
    return ConsensusMessage(round=round_number, phase=Phase(phase), value=Value(value), sender=sender)


@pytest.fixture
def fast_config():
    """Factory for configs with short quorum waits"""
    def _make(total_nodes=3, max_faults=0, poll_interval=0.01, max_poll_attempts=50, seed=7):
        return ConsensusConfig(
            total_nodes=total_nodes,
            max_faults=max_faults,
            poll_interval=poll_interval,
            max_poll_attempts=max_poll_attempts,
            seed=seed,
        )
    return _make


@pytest.fixture
def transport():
    return RecordingTransport()


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "http: test binds real TCP ports")
