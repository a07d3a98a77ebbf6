"""Unit tests for concordia.infra.taskiq."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from taskiq import InMemoryBroker, TaskiqScheduler
from taskiq_redis import RedisAsyncResultBackend, RedisStreamBroker

from concordia.domain.accounts.reconciliation import ReconciliationMode
from concordia.foundation.application import LIFESPAN_PRIORITY_TASKIQ, LifespanContribution
from concordia.infra.taskiq import (
    RECONCILE_DRIFT,
    RUN_RECONCILIATION,
    SWEEP_ORPHANS,
    TaskConfigurationError,
    TaskIQBrokerError,
    TaskIQError,
    TaskIQSettings,
    get_broker,
    get_result_backend,
    get_scheduler,
    get_taskiq_settings,
    register_reconciliation_tasks,
)
from concordia.infra.taskiq.lifespan import _taskiq_lifespan, lifespan_contribution


def _clear_caches() -> None:
    get_taskiq_settings.cache_clear()
    get_result_backend.cache_clear()
    get_broker.cache_clear()
    get_scheduler.cache_clear()


@pytest.fixture(autouse=True)
def _isolated_settings() -> Iterator[None]:
    _clear_caches()
    yield
    _clear_caches()


class TestTaskIQSettings:
    @pytest.mark.unit
    def test_defaults(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            settings = TaskIQSettings(_env_file=None)  # type: ignore[call-arg]
        assert settings.redis_url == "redis://localhost:6379/1"
        assert settings.queue_name == "concordia"
        assert settings.drift_repair_cron == "0 3 * * *"
        assert settings.orphan_sweep_cron == "30 3 * * *"

    @pytest.mark.unit
    def test_empty_cron_disables_schedule(self) -> None:
        settings = TaskIQSettings(drift_repair_cron="  ")
        assert settings.drift_repair_cron == ""

    @pytest.mark.unit
    def test_malformed_cron_rejected(self) -> None:
        with pytest.raises(PydanticValidationError, match="five fields"):
            TaskIQSettings(orphan_sweep_cron="every night")

    @pytest.mark.unit
    def test_result_ttl_bounds(self) -> None:
        with pytest.raises(PydanticValidationError):
            TaskIQSettings(result_ttl=10)

    @pytest.mark.unit
    def test_from_env(self) -> None:
        env = {"TASKIQ_REDIS_URL": "redis://cache:6379/2", "TASKIQ_QUEUE_NAME": "recon"}
        with patch.dict("os.environ", env, clear=True):
            settings = get_taskiq_settings()
        assert settings.redis_url == "redis://cache:6379/2"
        assert settings.queue_name == "recon"


class TestErrors:
    @pytest.mark.unit
    def test_transience(self) -> None:
        assert TaskIQBrokerError("down").transient is True
        assert TaskConfigurationError("bad").transient is False
        assert issubclass(TaskConfigurationError, TaskIQError)


class TestFactoryFunctions:
    @pytest.mark.unit
    def test_broker_and_backend(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            broker = get_broker()
            backend = get_result_backend()
        assert isinstance(broker, RedisStreamBroker)
        assert isinstance(backend, RedisAsyncResultBackend)
        assert broker.result_backend is backend

    @pytest.mark.unit
    def test_cached(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            assert get_broker() is get_broker()

    @pytest.mark.unit
    def test_scheduler_uses_broker(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            scheduler = get_scheduler()
            broker = get_broker()
        assert isinstance(scheduler, TaskiqScheduler)
        assert scheduler.broker is broker
        assert len(scheduler.sources) == 2


class TestLifespan:
    @pytest.mark.unit
    def test_contribution(self) -> None:
        assert isinstance(lifespan_contribution, LifespanContribution)
        assert lifespan_contribution.priority == LIFESPAN_PRIORITY_TASKIQ

    @pytest.mark.unit
    @pytest.mark.asyncio
    @patch("concordia.infra.taskiq.lifespan.get_broker")
    async def test_starts_and_stops_broker(self, mock_get_broker: MagicMock) -> None:
        broker = AsyncMock()
        mock_get_broker.return_value = broker

        async with _taskiq_lifespan(MagicMock()):
            broker.startup.assert_awaited_once()
            broker.shutdown.assert_not_called()

        broker.shutdown.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    @patch("concordia.infra.taskiq.lifespan.get_broker")
    async def test_shutdown_on_error(self, mock_get_broker: MagicMock) -> None:
        broker = AsyncMock()
        mock_get_broker.return_value = broker

        with pytest.raises(RuntimeError, match="pass failed"):
            async with _taskiq_lifespan(MagicMock()):
                raise RuntimeError("pass failed")

        broker.shutdown.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    @patch("concordia.infra.taskiq.lifespan.get_broker")
    async def test_unreachable_redis(self, mock_get_broker: MagicMock) -> None:
        broker = AsyncMock()
        broker.startup.side_effect = RedisConnectionError("connection refused")
        mock_get_broker.return_value = broker

        with pytest.raises(TaskIQBrokerError, match="connection refused"):
            async with _taskiq_lifespan(MagicMock()):
                pass

        broker.shutdown.assert_not_called()


def _report(payload: dict[str, object]) -> MagicMock:
    report = MagicMock(fixed=1, deleted=2, errors=[], orphans=[])
    report.to_dict.return_value = payload
    return report


@pytest.fixture()
def service() -> MagicMock:
    service = MagicMock()
    service.repair_drift = AsyncMock(return_value=_report({"kind": "drift"}))
    service.sweep_orphans = AsyncMock(return_value=_report({"kind": "sweep"}))
    service.run_reconciliation = AsyncMock(return_value=_report({"kind": "run"}))
    return service


class TestReconciliationTasks:
    @pytest.mark.unit
    def test_registered_with_cron_labels(self, service: MagicMock) -> None:
        broker = InMemoryBroker()
        tasks = register_reconciliation_tasks(
            broker, lambda: service, TaskIQSettings(orphan_sweep_cron="")
        )

        assert tasks["reconcile_drift"].task_name == RECONCILE_DRIFT
        assert tasks["reconcile_drift"].labels["schedule"] == [{"cron": "0 3 * * *"}]
        assert tasks["sweep_orphans"].task_name == SWEEP_ORPHANS
        assert tasks["sweep_orphans"].labels["schedule"] == []
        assert tasks["run_reconciliation"].task_name == RUN_RECONCILIATION
        assert broker.find_task(RECONCILE_DRIFT) is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tasks_return_report_dicts(self, service: MagicMock) -> None:
        tasks = register_reconciliation_tasks(InMemoryBroker(), lambda: service, TaskIQSettings())

        assert await tasks["reconcile_drift"](dry_run=True) == {"kind": "drift"}
        assert await tasks["sweep_orphans"]() == {"kind": "sweep"}
        assert await tasks["run_reconciliation"]("apply") == {"kind": "run"}

        service.repair_drift.assert_awaited_once_with(dry_run=True)
        service.sweep_orphans.assert_awaited_once_with(dry_run=False)
        service.run_reconciliation.assert_awaited_once_with(ReconciliationMode.APPLY)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_mode_rejected(self, service: MagicMock) -> None:
        tasks = register_reconciliation_tasks(InMemoryBroker(), lambda: service, TaskIQSettings())

        with pytest.raises(TaskConfigurationError, match="unknown reconciliation mode"):
            await tasks["run_reconciliation"]("nuke")
        service.run_reconciliation.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_kiq_through_in_memory_broker(self, service: MagicMock) -> None:
        broker = InMemoryBroker()
        tasks = register_reconciliation_tasks(broker, lambda: service, TaskIQSettings())
        await broker.startup()
        try:
            handle = await tasks["reconcile_drift"].kiq(dry_run=True)
            result = await handle.wait_result(timeout=2)
        finally:
            await broker.shutdown()

        assert not result.is_err
        assert result.return_value == {"kind": "drift"}


class TestWorkerModule:
    @pytest.mark.unit
    def test_exposes_broker_scheduler_and_tasks(self) -> None:
        from concordia import worker

        assert isinstance(worker.broker, RedisStreamBroker)
        assert worker.scheduler.broker is worker.broker
        assert set(worker.tasks) == {"reconcile_drift", "sweep_orphans", "run_reconciliation"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_startup_enters_and_shutdown_leaves_lifespan(self) -> None:
        from contextlib import AsyncExitStack, asynccontextmanager

        from concordia import worker

        events: list[str] = []

        @asynccontextmanager
        async def fake_lifespan(state: object):  # type: ignore[no-untyped-def]
            events.append("enter")
            yield
            events.append("exit")

        with (
            patch.object(worker, "_lifespan", fake_lifespan),
            patch.object(worker, "_stack", AsyncExitStack()),
        ):
            await worker._startup(MagicMock())
            assert events == ["enter"]
            await worker._shutdown(MagicMock())

        assert events == ["enter", "exit"]
