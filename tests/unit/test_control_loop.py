"""
Unit tests for the control loop.

Why: The control loop is the single place where shutdown, reload,
     forced checks and change handling are decided; it must process one
     item at a time, honour source priority and never die on a bad item.

What: Tests change-event handling and result folding, signal handling,
      configuration reload and the run loop's ordering.

How: Uses a mocked ActionRunner, the in-memory version-control client and
     a real StateStore.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
import yaml

from gitops_agent.actions.runner import ActionRunner
from gitops_agent.config.loader import ConfigurationLoader
from gitops_agent.control_loop import ControlLoop, ControlSignal, PollerRegistry
from gitops_agent.monitor.change_detection import ChangeDetector
from gitops_agent.monitor.events import ChangeEventQueue
from gitops_agent.monitor.models import ChangeEvent, ExecutionResult, WatchSpec
from gitops_agent.monitor.poller import RepositoryPoller
from gitops_agent.state.models import ActionStatus


def make_event(name: str = "svc-a") -> ChangeEvent:
    return ChangeEvent(
        repository_name=name,
        files=("deploy/app.yaml",),
        old_hash="c1",
        new_hash="c2",
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def runner():
    """Mocked action runner reporting success."""
    runner = AsyncMock(spec=ActionRunner)
    runner.execute.return_value = ExecutionResult(
        repository_name="svc-a", success=True, output="ok"
    )
    return runner


@pytest.fixture
def registry(config, fake_vcs, store):
    """Registry with one poller per configured repository."""
    registry = PollerRegistry()
    detector = ChangeDetector(client=fake_vcs)
    for repo in config.repositories:
        registry.upsert(
            RepositoryPoller(
                spec=WatchSpec.from_config(config, repo),
                detector=detector,
                store=store,
                events=ChangeEventQueue(),
            )
        )
    return registry


@pytest.fixture
def control_loop(config_loader, store, runner, registry):
    """Control loop with a short maintenance interval."""
    return ControlLoop(
        config_loader=config_loader,
        store=store,
        runner=runner,
        registry=registry,
        events=ChangeEventQueue(),
        stop_event=asyncio.Event(),
        maintenance_interval=60.0,
    )


class TestPollerRegistry:
    """Tests for PollerRegistry."""

    def test_registry_operations(self, registry):
        """Test lookup, snapshot and removal."""
        assert len(registry) == 1
        poller = registry.get("svc-a")
        assert poller is not None

        snapshot = registry.snapshot()
        assert registry.remove("svc-a") is poller
        assert registry.get("svc-a") is None
        assert "svc-a" in snapshot
        assert registry.remove("svc-a") is None


class TestHandleChangeEvent:
    """Tests for change-event handling."""

    @pytest.mark.asyncio
    async def test_success_is_recorded(self, control_loop, runner, store, config):
        """Test that a successful action is folded into state."""
        store.upsert("svc-a", last_error="previous failure")

        result = await control_loop.handle_change_event(make_event())

        assert result.success
        action, event, repo, local_path = runner.execute.call_args.args
        assert action is repo.action
        assert repo.name == "svc-a"
        assert local_path == config.repository_local_path("svc-a")

        state = store.get("svc-a")
        assert state.last_action_status == ActionStatus.SUCCESS
        assert state.last_action_executed is not None
        assert state.last_error == ""
        assert control_loop.stats["actions_succeeded"] == 1

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, control_loop, runner, store):
        """Test that a failed action keeps its error text."""
        runner.execute.return_value = ExecutionResult(
            repository_name="svc-a",
            success=False,
            error="shell action timed out after 5 seconds",
        )

        await control_loop.handle_change_event(make_event())

        state = store.get("svc-a")
        assert state.last_action_status == ActionStatus.FAILURE
        assert state.last_error == "shell action timed out after 5 seconds"
        assert control_loop.stats["actions_failed"] == 1

    @pytest.mark.asyncio
    async def test_failure_without_message_gets_placeholder(
        self, control_loop, runner, store
    ):
        """Test that a failure always leaves a non-empty error."""
        runner.execute.return_value = ExecutionResult(
            repository_name="svc-a", success=False
        )

        await control_loop.handle_change_event(make_event())

        assert store.get("svc-a").last_error == "action failed"

    @pytest.mark.asyncio
    async def test_runner_exception_is_recorded_as_failure(
        self, control_loop, runner, store
    ):
        """
        Why: A crashing runner must not stop event processing
        What: Tests that an exception becomes a failure record
        How: Makes the mocked runner raise and inspects stored state
        """
        runner.execute.side_effect = RuntimeError("runner exploded")

        result = await control_loop.handle_change_event(make_event())

        assert not result.success
        state = store.get("svc-a")
        assert state.last_action_status == ActionStatus.FAILURE
        assert state.last_error == "runner exploded"

    @pytest.mark.asyncio
    async def test_action_result_keeps_watermark(self, control_loop, store):
        """Test that recording a result does not touch the watermark."""
        store.upsert("svc-a", current_hash="c2")

        await control_loop.handle_change_event(make_event())

        assert store.get("svc-a").current_hash == "c2"

    @pytest.mark.asyncio
    async def test_unknown_repository_is_skipped(self, control_loop, runner, store):
        """Test that events for unconfigured repositories are ignored."""
        result = await control_loop.handle_change_event(make_event("removed"))

        assert result is None
        runner.execute.assert_not_called()
        assert store.get("removed") is None


class TestSignals:
    """Tests for control signals."""

    @pytest.mark.asyncio
    async def test_shutdown_sets_stop_event(self, control_loop):
        """Test that shutdown stops the loop and notifies pollers."""
        assert await control_loop.handle_signal(ControlSignal.SHUTDOWN) is True
        assert control_loop.stop_event.is_set()

    @pytest.mark.asyncio
    async def test_force_check_reaches_every_poller(self, control_loop, registry):
        """Test that force-check is forwarded and coalesced."""
        assert await control_loop.handle_signal(ControlSignal.FORCE_CHECK) is False

        assert registry.get("svc-a").force_pending
        assert control_loop.force_check_all() == 0

    @pytest.mark.asyncio
    async def test_reload_without_file_fails_gracefully(self, control_loop):
        """Test that a failed reload is counted, not raised."""
        assert await control_loop.handle_signal(ControlSignal.RELOAD) is False

        assert control_loop.stats["failed_reloads"] == 1
        assert control_loop.stats["reloads"] == 0


class TestReload:
    """Tests for configuration reload."""

    @pytest.fixture
    def file_loader(self, tmp_path, config_dict):
        """Loader backed by a configuration file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump(config_dict))
        loader = ConfigurationLoader()
        loader.load_from_file(config_file)
        return loader

    def test_reload_does_not_change_pollers(
        self, control_loop, file_loader, config_dict, repository_dict, registry
    ):
        """Test that added repositories are reported but not started."""
        control_loop.config_loader = file_loader
        extra = dict(repository_dict, name="svc-b")
        config_dict["repositories"].append(extra)
        file_loader.config_file_path.write_text(yaml.safe_dump(config_dict))

        assert control_loop.reload_config() is True

        assert control_loop.stats["reloads"] == 1
        assert file_loader.config.get_repository("svc-b") is not None
        assert list(registry.snapshot()) == ["svc-a"]

    @pytest.mark.asyncio
    async def test_maintenance_tick_reloads_modified_config(
        self, control_loop, file_loader
    ):
        """Test that the tick reloads only when the file changed."""
        control_loop.config_loader = file_loader

        await control_loop.handle_maintenance_tick()
        assert control_loop.stats["reloads"] == 0

        file_loader.is_modified = Mock(return_value=True)
        await control_loop.handle_maintenance_tick()
        assert control_loop.stats["reloads"] == 1


class TestRunLoop:
    """Tests for the run loop."""

    @pytest.mark.asyncio
    async def test_processes_events_until_stopped(self, control_loop, runner, store):
        """Test that queued events are handled one by one."""
        task = asyncio.create_task(control_loop.run())

        control_loop.events.offer(make_event())
        await wait_until(lambda: runner.execute.await_count == 1)
        assert store.get("svc-a").last_action_status == ActionStatus.SUCCESS

        control_loop.stop_event.set()
        await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_stop_takes_priority_over_events(self, control_loop, runner):
        """Test that a pending stop wins over a ready event."""
        control_loop.events.offer(make_event())
        control_loop.stop_event.set()

        await asyncio.wait_for(control_loop.run(), timeout=1)

        runner.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_signal_takes_priority_over_events(self, control_loop, runner):
        """Test that a shutdown signal is handled before a ready event."""
        control_loop.events.offer(make_event())
        control_loop.post_signal(ControlSignal.SHUTDOWN)

        await asyncio.wait_for(control_loop.run(), timeout=1)

        runner.execute.assert_not_called()
        assert control_loop.stop_event.is_set()

    @pytest.mark.asyncio
    async def test_actions_are_serialized(self, control_loop, runner):
        """Test that a second event waits for the first action to finish."""
        active = 0
        max_active = 0

        async def slow_execute(action, event, repo, local_path):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.02)
            active -= 1
            return ExecutionResult(repository_name=event.repository_name, success=True)

        runner.execute.side_effect = slow_execute
        task = asyncio.create_task(control_loop.run())

        control_loop.events.offer(make_event())
        await wait_until(lambda: runner.execute.await_count == 1)
        control_loop.events.offer(make_event())
        await wait_until(lambda: runner.execute.await_count == 2)
        await wait_until(lambda: control_loop.stats["events_processed"] == 2)

        control_loop.stop_event.set()
        await asyncio.wait_for(task, timeout=1)
        assert max_active == 1

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_loop(self, control_loop, runner):
        """Test that an error in one handler is logged and the loop continues."""
        control_loop.maintenance_interval = 0.01
        control_loop.config_loader.is_modified = Mock(
            side_effect=RuntimeError("stat failed")
        )
        task = asyncio.create_task(control_loop.run())

        await wait_until(lambda: control_loop.config_loader.is_modified.call_count >= 2)
        control_loop.events.offer(make_event())
        await wait_until(lambda: runner.execute.await_count == 1)

        control_loop.stop_event.set()
        await asyncio.wait_for(task, timeout=1)
