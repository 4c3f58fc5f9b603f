import pytest

from src.server.chat.errors import ConflictError
from src.server.chat.gate import SessionGate


def test_second_acquire_conflicts_until_release():
    gate = SessionGate()
    gate.acquire("s1")

    with pytest.raises(ConflictError):
        gate.acquire("s1")

    gate.acquire("s2")
    gate.release("s1")
    gate.acquire("s1")
    assert gate.is_active("s1")


def test_disabled_gate_never_blocks():
    gate = SessionGate(enabled=False)
    gate.acquire("s1")
    gate.acquire("s1")
    assert not gate.is_active("s1")


def test_release_of_unknown_session_is_noop():
    SessionGate().release("never-acquired")
