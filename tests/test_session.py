"""Tests for the client session."""

import asyncio

import pytest
from structlog.testing import capture_logs

from port_surgeon.config import Config
from port_surgeon.errors import BackendError, FetchError, ValidationError
from port_surgeon.favorites import FavoritesRegistry
from port_surgeon.models import ActionKind, Protocol
from port_surgeon.session import Session
from tests.conftest import FakeBackend, make_container, make_process, make_snapshot


def fast_config() -> Config:
    config = Config()
    config.polling.interval = 0.01
    config.actions.process_settle_delay = 0.01
    config.actions.container_settle_delay = 0.01
    return config


@pytest.fixture
def session(backend: FakeBackend) -> Session:
    return Session(backend, fast_config(), FavoritesRegistry())


class TestInitialState:
    def test_empty_before_first_fetch(self, session):
        assert session.snapshot is None
        assert session.is_loading is False
        assert session.last_error is None
        assert session.view() == []
        assert session.audit_entries == []
        assert session.is_polling is False

    def test_config_seeds_view_state(self, backend):
        config = Config()
        config.polling.show_all_connections = True
        config.view.sort_field = "cpu"
        config.view.sort_direction = "desc"
        config.audit.max_entries = 5
        session = Session(backend, config, FavoritesRegistry())
        assert session.filter.include_non_listening is True
        assert session.sort.field == "cpu"
        assert session.sort.direction == "desc"
        assert session.audit_log.capacity == 5
        assert session.polling_interval == 2.0


class TestRefresh:
    @pytest.mark.asyncio
    async def test_replaces_snapshot(self, session, backend):
        first = make_snapshot(make_process(pid=1), make_process(pid=2))
        second = make_snapshot(make_process(pid=3))
        backend.snapshot = first
        assert await session.refresh() is True
        backend.snapshot = second
        assert await session.refresh() is True
        assert session.snapshot is second
        assert [p.pid for p in session.snapshot.processes] == [3]

    @pytest.mark.asyncio
    async def test_passes_include_non_listening(self, session, backend):
        session.set_filter(include_non_listening=True)
        await session.refresh()
        assert backend.calls_to("get_processes") == [("get_processes", True)]

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_snapshot(self, session, backend):
        backend.snapshot = make_snapshot(make_process(pid=1))
        await session.refresh()
        kept = session.snapshot
        backend.error = BackendError("TIMEOUT", "Backend did not answer")

        assert await session.refresh() is False
        assert session.snapshot is kept
        assert isinstance(session.last_error, FetchError)
        assert session.last_error.code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_success_clears_last_error(self, session, backend):
        backend.error = RuntimeError("boom")
        await session.refresh()
        assert session.last_error is not None
        backend.error = None
        await session.refresh()
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_callbacks(self, session, backend):
        seen = []
        errors = []
        session.on_snapshot = seen.append
        session.on_error = errors.append
        await session.refresh()
        backend.error = BackendError("CONNECTION", "lost")
        await session.refresh()
        assert seen == [backend.snapshot]
        assert [e.code for e in errors] == ["CONNECTION"]

    @pytest.mark.asyncio
    async def test_raising_callbacks_are_logged_not_raised(self, session, backend):
        def explode(_value):
            raise RuntimeError("listener bug")

        session.on_snapshot = explode
        session.on_error = explode
        with capture_logs() as logs:
            assert await session.refresh() is True
            backend.error = BackendError("CONNECTION", "lost")
            assert await session.refresh() is False

        assert session.snapshot is not None
        assert session.last_error.code == "CONNECTION"
        failures = [e for e in logs if e["event"] == "session_callback_failed"]
        assert [e["callback"] for e in failures] == ["explode", "explode"]

    @pytest.mark.asyncio
    async def test_is_loading_while_in_flight(self, session, backend):
        backend.delay = 0.05
        task = asyncio.create_task(session.refresh())
        await asyncio.sleep(0.01)
        assert session.is_loading is True
        await task
        assert session.is_loading is False

    @pytest.mark.asyncio
    async def test_overlapping_fetches_last_completion_wins(self, session, backend):
        slow = make_snapshot(make_process(pid=1))
        fast = make_snapshot(make_process(pid=2))
        backend.snapshot = slow
        backend.delay = 0.05
        first = asyncio.create_task(session.refresh())
        await asyncio.sleep(0.01)
        backend.snapshot = fast
        backend.delay = 0.0
        await session.refresh()
        assert session.snapshot is fast
        await first
        # No sequence guard: the older, slower scan lands last
        assert session.snapshot is slow


class TestFindPort:
    @pytest.mark.asyncio
    async def test_out_of_range_rejected_without_remote_call(self, session, backend):
        with pytest.raises(ValidationError):
            await session.find_port(70000)
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_returns_matches(self, session, backend):
        proc = make_process(pid=9, ports=(5432,))
        backend.port_results[5432] = [proc]
        assert await session.find_port(5432) == [proc]
        assert await session.find_port(5433) == []

    @pytest.mark.asyncio
    async def test_backend_failure_raises_fetch_error(self, session, backend):
        backend.error = BackendError("UNAVAILABLE", "Backend service is not running")
        with pytest.raises(FetchError) as exc_info:
            await session.find_port(80)
        assert exc_info.value.code == "UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_does_not_touch_snapshot(self, session, backend):
        await session.refresh()
        before = session.snapshot
        await session.find_port(80)
        assert session.snapshot is before


class TestViewState:
    @pytest.mark.asyncio
    async def test_view_pins_favorites(self, session, backend):
        backend.snapshot = make_snapshot(
            make_process(pid=100, ports=(8080,)), make_process(pid=200, ports=(3000,))
        )
        session.favorites.add(8080)
        await session.refresh()
        assert [p.pid for p in session.view()] == [100, 200]

    @pytest.mark.asyncio
    async def test_set_filter_partial(self, session, backend):
        backend.snapshot = make_snapshot(make_process(pid=100), make_process(pid=200))
        await session.refresh()
        session.set_filter(protocol="udp")
        assert session.view() == []
        session.set_filter(search_query="zzz")
        assert session.filter.protocol is Protocol.UDP

    def test_set_filter_rejects_bad_values(self, session):
        with pytest.raises(ValidationError):
            session.set_filter(state="napping")

    def test_set_sort(self, session):
        session.set_sort(direction="desc")
        assert session.sort.field == "port"
        assert session.sort.direction == "desc"

    @pytest.mark.asyncio
    async def test_select_all_includes_filtered_out(self, session, backend):
        backend.snapshot = make_snapshot(make_process(pid=1, name="a"), make_process(pid=2, name="b"))
        await session.refresh()
        session.set_filter(search_query="a")
        session.select_all()
        assert session.selection.selected_pids == frozenset({1, 2})
        assert [p.pid for p in session.selected_processes()] == [1, 2]


class TestPolling:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, session, backend):
        session.start_polling()
        assert session.is_polling
        await asyncio.sleep(0.05)
        session.stop_polling()
        assert not session.is_polling
        assert len(backend.calls_to("get_processes")) >= 2
        await session.aclose()

    @pytest.mark.asyncio
    async def test_polling_survives_failures(self, session, backend):
        backend.error = BackendError("TIMEOUT", "slow")
        session.start_polling()
        await asyncio.sleep(0.05)
        assert session.is_polling
        assert session.last_error is not None
        await session.aclose()

    def test_interval_setter_validates(self, session):
        session.polling_interval = 5.0
        assert session.polling_interval == 5.0
        with pytest.raises(ValueError):
            session.polling_interval = 0


class TestActions:
    @pytest.mark.asyncio
    async def test_kill_audits_and_refreshes(self, session, backend):
        backend.snapshot = make_snapshot(make_process(pid=100, name="node", ports=(3000,)))
        await session.refresh()
        fetches = len(backend.calls_to("get_processes"))

        result = await session.kill_process(100)

        assert result.success is True
        assert len(session.audit_entries) == 1
        assert session.audit_entries[0].action_kind is ActionKind.GRACEFUL_TERMINATE
        await asyncio.sleep(0.05)
        assert len(backend.calls_to("get_processes")) == fetches + 1

    @pytest.mark.asyncio
    async def test_protected_kill_never_reaches_backend(self, session, backend):
        backend.snapshot = make_snapshot(make_process(pid=1, name="init", is_protected=True))
        await session.refresh()
        result = await session.kill_process(1, force=True)
        assert result.success is False
        assert backend.calls_to("kill_process") == []
        assert len(session.audit_entries) == 1

    @pytest.mark.asyncio
    async def test_container_action(self, session, backend):
        container = make_container("feedface00000000", name="api")
        backend.snapshot = make_snapshot(make_process(pid=50, container=container))
        await session.refresh()
        result = await session.container_action("feedface00000000", "remove")
        assert result.success is True
        assert session.audit_entries[0].target_name == "api"
        assert session.audit_entries[0].action_kind is ActionKind.CONTAINER_REMOVE
        await session.aclose()

    @pytest.mark.asyncio
    async def test_list_containers(self, session, backend):
        backend.containers = [make_container()]
        assert await session.list_containers() == backend.containers
        backend.error = BackendError("DOCKER_ERROR", "Docker not available")
        with pytest.raises(FetchError):
            await session.list_containers()


@pytest.mark.asyncio
async def test_context_manager_closes(backend):
    async with Session(backend, fast_config(), FavoritesRegistry()) as session:
        session.start_polling()
        await asyncio.sleep(0.02)
    assert not session.is_polling
