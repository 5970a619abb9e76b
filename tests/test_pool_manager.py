# Tests for PoolManager: startup/shutdown, catalog filtering, routing.
# Created: 2026-10-18
#
# Backends are FakeConnections handed out by an injected factory.

import logging

import pytest

from fakes import FakeFactory, make_definition
from mcpgate.errors import (
    AuthorizationError,
    BackendConnectionError,
    BackendExecutionError,
    BackendNotFoundError,
    CapabilityNotFoundError,
    NotFoundError,
    PoolNotReadyError,
)
from mcpgate.pool import CallerIdentity, PoolManager, PoolState


async def _started(definitions, factory) -> PoolManager:
    pool = PoolManager(definitions, connection_factory=factory)
    await pool.start_all()
    return pool


class TestStartAll:
    async def test_only_enabled_backends_started(self):
        factory = FakeFactory(a={"tools": ["ping"]}, b={"tools": ["ping"]})
        definitions = [
            make_definition("a"),
            make_definition("b"),
            make_definition("off", enabled=False),
        ]
        pool = await _started(definitions, factory)

        assert [c.id for c in factory.created] == ["a", "b"]
        assert len(pool.status()) == 2
        assert pool.state is PoolState.READY
        assert pool.connected_count == 2

    async def test_partial_failure_tolerated(self):
        factory = FakeFactory(
            good={"tools": ["ping", "echo"]},
            bad={"fail": "spawn /no/such/binary ENOENT"},
            other={"tools": ["ping"]},
        )
        definitions = [make_definition("good"), make_definition("bad"), make_definition("other")]

        pool = await _started(definitions, factory)

        by_id = {s.id: s for s in pool.status()}
        assert by_id["good"].connected and by_id["good"].capability_count == 2
        assert by_id["other"].connected
        assert not by_id["bad"].connected
        assert by_id["bad"].capability_count == 0
        assert "ENOENT" in by_id["bad"].error
        assert not pool.has_backend("bad")
        assert sorted(c.name for c in pool.get_capabilities_for()) == [
            "good_echo",
            "good_ping",
            "other_ping",
        ]

    async def test_all_backends_fail(self, caplog):
        factory = FakeFactory(a={"fail": "boom"}, b={"fail": "boom"})

        with caplog.at_level(logging.ERROR):
            pool = await _started([make_definition("a"), make_definition("b")], factory)

        assert pool.state is PoolState.READY
        assert pool.connected_count == 0
        assert pool.get_capabilities_for() == []
        assert "Failed to start backend 'a'" in caplog.text

    async def test_connects_concurrently(self, tracker):
        factory = FakeFactory(**{bid: {"tracker": tracker} for bid in ("a", "b", "c")})

        await _started([make_definition(b) for b in ("a", "b", "c")], factory)

        assert tracker.peak == 3

    async def test_status_counts_match_catalog(self):
        factory = FakeFactory(a={"tools": ["x", "y"]}, b={"tools": ["z"]}, c={"fail": "no"})
        pool = await _started([make_definition(b) for b in ("a", "b", "c")], factory)

        for status in pool.status():
            listed = [c for c in pool.get_capabilities_for() if c.backend_id == status.id]
            assert status.capability_count >= 0
            assert status.capability_count == len(listed)

    async def test_start_twice_is_noop(self, caplog):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a")], factory)

        with caplog.at_level(logging.WARNING):
            await pool.start_all()

        assert len(factory.created) == 1
        assert "already started" in caplog.text

    async def test_status_before_start(self):
        pool = PoolManager([make_definition("a")], connection_factory=FakeFactory())

        assert pool.state is PoolState.EMPTY
        [status] = pool.status()
        assert status.connected is False
        assert status.error == "Not connected"


class TestStopAll:
    async def test_stop_disconnects_and_clears(self):
        factory = FakeFactory(a={"tools": ["ping"]}, b={"tools": ["ping"]})
        pool = await _started([make_definition("a"), make_definition("b")], factory)

        await pool.stop_all()

        assert all(c.disconnect_calls == 1 for c in factory.created)
        assert pool.state is PoolState.EMPTY
        assert pool.get_capabilities_for() == []
        assert pool.connected_count == 0

    async def test_stop_swallows_disconnect_errors(self, caplog):
        factory = FakeFactory(
            a={"tools": ["ping"], "disconnect_error": "kill failed"}, b={"tools": ["ping"]}
        )
        pool = await _started([make_definition("a"), make_definition("b")], factory)

        with caplog.at_level(logging.ERROR):
            await pool.stop_all()

        assert factory.latest("b").disconnect_calls == 1
        assert pool.capability_count == 0
        assert "kill failed" in caplog.text

    async def test_restart_after_stop(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a")], factory)
        await pool.stop_all()

        await pool.start_all()

        assert len(factory.created) == 2
        assert [c.name for c in pool.get_capabilities_for()] == ["a_ping"]


class TestCapabilityFiltering:
    async def test_no_caller_sees_everything(self):
        factory = FakeFactory(pub={"tools": ["ping"]}, priv={"tools": ["exec"]})
        pool = await _started(
            [
                make_definition("pub"),
                make_definition("priv", required_scopes={"read", "execute"}),
            ],
            factory,
        )

        assert {c.name for c in pool.get_capabilities_for()} == {"pub_ping", "priv_exec"}

    async def test_caller_missing_scope_does_not_see_backend(self):
        factory = FakeFactory(pub={"tools": ["ping"]}, priv={"tools": ["exec"]})
        pool = await _started(
            [
                make_definition("pub", required_scopes={"read"}),
                make_definition("priv", required_scopes={"read", "execute"}),
            ],
            factory,
        )
        reader = CallerIdentity.of("alice", ["read"])
        operator = CallerIdentity.of("bob", ["read", "execute", "admin"])

        assert [c.name for c in pool.get_capabilities_for(reader)] == ["pub_ping"]
        assert {c.name for c in pool.get_capabilities_for(operator)} == {
            "pub_ping",
            "priv_exec",
        }

    async def test_caller_without_scopes_sees_unrestricted(self):
        factory = FakeFactory(pub={"tools": ["ping"]}, priv={"tools": ["exec"]})
        pool = await _started(
            [make_definition("pub"), make_definition("priv", required_scopes={"admin"})],
            factory,
        )

        visible = pool.get_capabilities_for(CallerIdentity.of("anon"))

        assert [c.name for c in visible] == ["pub_ping"]


class TestDispatch:
    async def test_end_to_end_routing(self):
        factory = FakeFactory(a={"tools": ["ping"]}, b={"tools": ["ping"]})
        pool = await _started([make_definition("a"), make_definition("b")], factory)

        assert sorted(c.name for c in pool.get_capabilities_for()) == ["a_ping", "b_ping"]

        result = await pool.dispatch("a_ping", {})

        assert result == {"backend": "a", "tool": "ping", "arguments": {}}
        assert factory.latest("a").invocations == [("ping", {})]
        assert factory.latest("b").invocations == []

    async def test_original_name_with_separator(self):
        factory = FakeFactory(fs={"tools": ["read_file"]})
        pool = await _started([make_definition("fs")], factory)

        await pool.dispatch("fs_read_file", {"path": "/tmp/a"})

        assert factory.latest("fs").invocations == [("read_file", {"path": "/tmp/a"})]

    async def test_unknown_capability(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a")], factory)

        with pytest.raises(NotFoundError):
            await pool.dispatch("nonexistent_tool", {})

        assert factory.latest("a").invocations == []

    async def test_insufficient_scopes(self):
        factory = FakeFactory(priv={"tools": ["exec"]})
        pool = await _started(
            [make_definition("priv", required_scopes={"read", "execute"})], factory
        )

        with pytest.raises(AuthorizationError) as exc_info:
            await pool.dispatch("priv_exec", {}, CallerIdentity.of("alice", ["read"]))

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["required"] == ["execute", "read"]
        assert factory.latest("priv").invocations == []

    async def test_sufficient_scopes(self):
        factory = FakeFactory(priv={"tools": ["exec"]})
        pool = await _started(
            [make_definition("priv", required_scopes={"read", "execute"})], factory
        )

        result = await pool.dispatch(
            "priv_exec", {"cmd": "ls"}, CallerIdentity.of("bob", ["read", "execute"])
        )

        assert result["tool"] == "exec"

    async def test_execution_error_propagates_unchanged(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a")], factory)
        error = BackendExecutionError("a", "ping", "backend crashed")
        factory.latest("a").invoke_error = error

        with pytest.raises(BackendExecutionError) as exc_info:
            await pool.dispatch("a_ping", {})

        assert exc_info.value is error
        assert "a_ping" in pool.registry

    async def test_lost_backend_removed_from_catalog(self):
        factory = FakeFactory(a={"tools": ["ping"]}, b={"tools": ["ping"]})
        pool = await _started([make_definition("a"), make_definition("b")], factory)
        lost = factory.latest("a")
        lost.connected = False
        lost.last_error = "channel closed"
        lost.invoke_error = BackendConnectionError("a", "channel closed")

        with pytest.raises(BackendConnectionError):
            await pool.dispatch("a_ping", {})

        assert [c.name for c in pool.get_capabilities_for()] == ["b_ping"]
        status = {s.id: s for s in pool.status()}
        assert status["a"].connected is False
        assert status["a"].error == "channel closed"
        with pytest.raises(CapabilityNotFoundError):
            await pool.dispatch("a_ping", {})

    async def test_status_reports_connection_error(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a")], factory)
        dropped = factory.latest("a")
        dropped.connected = False
        dropped.last_error = "server process exited"

        [status] = pool.status()

        assert status.connected is False
        assert status.error == "server process exited"
        assert pool.get_capabilities_for() == []


class TestRestartAndRefresh:
    async def test_restart_backend(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a")], factory)
        first = factory.latest("a")

        connection = await pool.restart_backend("a")

        assert first.disconnect_calls == 1
        assert connection is factory.latest("a") and connection is not first
        assert pool.get_connection("a") is connection
        assert [c.name for c in pool.get_capabilities_for()] == ["a_ping"]

    async def test_restart_unknown_backend(self):
        pool = await _started([make_definition("a", enabled=False)], FakeFactory())

        with pytest.raises(BackendNotFoundError):
            await pool.restart_backend("a")

    async def test_restart_failure_recorded(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a"), make_definition("b")], factory)
        factory.per_backend["a"] = {"fail": "crashed on boot"}

        with pytest.raises(BackendConnectionError):
            await pool.restart_backend("a")

        status = {s.id: s for s in pool.status()}
        assert status["a"].connected is False
        assert status["a"].error == "crashed on boot"
        assert pool.get_capabilities_for() == []

    async def test_restart_before_start_rejected(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = PoolManager([make_definition("a")], connection_factory=factory)

        with pytest.raises(PoolNotReadyError) as exc_info:
            await pool.restart_backend("a")

        assert exc_info.value.status_code == 503
        assert factory.created == []

        await pool.start_all()
        await pool.stop_all()

        assert [c.disconnect_calls for c in factory.created] == [1]
        assert not any(c.connected for c in factory.created)

    async def test_restart_after_stop_rejected(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a")], factory)
        await pool.stop_all()

        with pytest.raises(PoolNotReadyError):
            await pool.restart_backend("a")

        assert len(factory.created) == 1
        assert pool.connected_count == 0

    async def test_restart_keeps_definition_order(self):
        factory = FakeFactory(a={"tools": ["ping"]}, b={"tools": ["ping"]})
        pool = await _started([make_definition("a"), make_definition("b")], factory)

        await pool.restart_backend("a")

        assert [c.name for c in pool.get_capabilities_for()] == ["a_ping", "b_ping"]

    async def test_refresh_capabilities(self):
        factory = FakeFactory(a={"tools": ["ping"]})
        pool = await _started([make_definition("a")], factory)
        factory.latest("a").set_tools(["ping", "pong"])

        capabilities = await pool.refresh_capabilities()

        assert [c.name for c in capabilities] == ["a_ping", "a_pong"]
        assert factory.latest("a").refresh_calls == 1

    def test_get_connection_unknown(self):
        pool = PoolManager([], connection_factory=FakeFactory())
        with pytest.raises(BackendNotFoundError):
            pool.get_connection("ghost")
