from __future__ import annotations

import asyncio

from relay.registry import SessionPhase, SessionRegistry


def _run(coro):
    return asyncio.run(coro)


def test_get_or_create_returns_same_session_for_call_id():
    async def scenario():
        registry = SessionRegistry()
        first = await registry.get_or_create("CA1")
        second = await registry.get_or_create("CA1")
        return registry, first, second

    registry, first, second = _run(scenario())
    assert first is second
    assert len(registry) == 1
    assert "CA1" in registry


def test_concurrent_sessions_do_not_interfere():
    async def scenario():
        registry = SessionRegistry()
        sessions = await asyncio.gather(*(registry.get_or_create(f"CA{i}") for i in range(20)))
        await sessions[3].transcript.append("user", "hello")
        await asyncio.gather(*(registry.remove(f"CA{i}") for i in range(0, 20, 2)))
        return registry, sessions

    registry, sessions = _run(scenario())
    assert len(registry) == 10
    assert "CA0" not in registry
    assert registry.get("CA3") is sessions[3]
    assert [len(s.transcript) for s in sessions].count(1) == 1


def test_remove_is_idempotent():
    async def scenario():
        registry = SessionRegistry()
        await registry.get_or_create("CA1")
        removed = await registry.remove("CA1")
        again = await registry.remove("CA1")
        return registry, removed, again

    registry, removed, again = _run(scenario())
    assert removed is not None and removed.call_id == "CA1"
    assert again is None
    assert "CA1" not in registry


def test_detach_signals_teardown_once_for_last_connection():
    async def scenario():
        registry = SessionRegistry()
        return await registry.get_or_create("CA1")

    session = _run(scenario())
    session.attach()
    session.attach()

    assert session.detach() is False
    assert session.detach() is True
    assert session.phase is SessionPhase.TEARDOWN
    assert session.detach() is False


def test_connection_arriving_during_teardown_gets_a_fresh_session():
    async def scenario():
        registry = SessionRegistry()
        old = await registry.get_or_create("CA1")
        old.attach()
        assert old.detach() is True

        fresh = await registry.get_or_create("CA1")
        fresh.attach()
        stale_removed = await registry.remove("CA1", old)
        return registry, old, fresh, stale_removed

    registry, old, fresh, stale_removed = _run(scenario())
    assert fresh is not old
    assert stale_removed is None
    assert registry.get("CA1") is fresh
    assert fresh.detach() is True
