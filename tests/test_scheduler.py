from __future__ import annotations

from threading import Event
from unittest.mock import MagicMock

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from hostel_inventory.services.scheduler import (
    FEED_SYNC_JOB_ID,
    HOLD_SWEEP_JOB_ID,
    InventoryScheduler,
    build_inventory_scheduler,
)


def _services():
    hold_service = MagicMock()
    hold_service.expire_holds = MagicMock(return_value=0)
    sync_service = MagicMock()
    sync_service.sync_all_active_feeds = MagicMock(return_value=[])
    return hold_service, sync_service


# --- Registration ---


def test_jobs_are_registered_as_single_instance_intervals() -> None:
    mock_scheduler = MagicMock()
    hold_service, sync_service = _services()

    build_inventory_scheduler(
        hold_service,
        sync_service,
        hold_sweep_interval_seconds=30,
        sync_interval_minutes=15,
        scheduler=mock_scheduler,
    )

    calls = {call.kwargs["id"]: call.kwargs for call in mock_scheduler.add_job.call_args_list}
    assert set(calls) == {HOLD_SWEEP_JOB_ID, FEED_SYNC_JOB_ID}
    assert calls[HOLD_SWEEP_JOB_ID]["seconds"] == 30
    assert calls[FEED_SYNC_JOB_ID]["seconds"] == 900
    for kwargs in calls.values():
        assert kwargs["trigger"] == "interval"
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        assert kwargs["replace_existing"] is True


def test_pending_jobs_keep_their_options_on_a_real_scheduler() -> None:
    hold_service, sync_service = _services()
    inventory_scheduler = build_inventory_scheduler(
        hold_service,
        sync_service,
        hold_sweep_interval_seconds=60,
        sync_interval_minutes=60,
        scheduler=BackgroundScheduler(timezone="UTC"),
    )

    sweep = inventory_scheduler.scheduler.get_job(HOLD_SWEEP_JOB_ID)
    assert sweep.max_instances == 1
    assert sweep.coalesce is True
    assert {job["id"] for job in inventory_scheduler.get_jobs()} == {HOLD_SWEEP_JOB_ID, FEED_SYNC_JOB_ID}


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        InventoryScheduler(MagicMock()).add_interval_job("broken", lambda: None, 0)


# --- Execution ---


def test_trigger_runs_wrapped_service_call() -> None:
    hold_service, sync_service = _services()
    inventory_scheduler = build_inventory_scheduler(
        hold_service,
        sync_service,
        hold_sweep_interval_seconds=60,
        sync_interval_minutes=60,
        scheduler=BackgroundScheduler(timezone="UTC"),
    )

    inventory_scheduler.trigger_job(HOLD_SWEEP_JOB_ID)
    inventory_scheduler.trigger_job(FEED_SYNC_JOB_ID)

    hold_service.expire_holds.assert_called_once_with()
    sync_service.sync_all_active_feeds.assert_called_once_with()
    assert inventory_scheduler.runs == {HOLD_SWEEP_JOB_ID: 1, FEED_SYNC_JOB_ID: 1}

    with pytest.raises(ValueError):
        inventory_scheduler.trigger_job("missing")


def test_failing_run_is_counted_without_raising() -> None:
    def explode() -> None:
        raise RuntimeError("boom")

    inventory_scheduler = InventoryScheduler(BackgroundScheduler(timezone="UTC"))
    inventory_scheduler.add_interval_job("manual", explode, 60)

    inventory_scheduler.trigger_job("manual")
    inventory_scheduler.trigger_job("manual")

    assert inventory_scheduler.runs["manual"] == 2
    assert inventory_scheduler.failures["manual"] == 2


def test_started_scheduler_keeps_running_after_failures() -> None:
    attempts: list[int] = []
    recovered = Event()

    def flaky() -> None:
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("transient failure")
        recovered.set()

    inventory_scheduler = InventoryScheduler(BackgroundScheduler(timezone="UTC"))
    inventory_scheduler.add_interval_job("flaky", flaky, 0.05)
    inventory_scheduler.start()
    try:
        assert inventory_scheduler.running
        assert recovered.wait(timeout=5.0)
    finally:
        inventory_scheduler.shutdown()

    assert not inventory_scheduler.running
    assert inventory_scheduler.failures["flaky"] == 2


def test_start_and_shutdown_are_idempotent() -> None:
    mock_scheduler = MagicMock()
    mock_scheduler.running = False
    inventory_scheduler = InventoryScheduler(mock_scheduler)

    inventory_scheduler.start()
    mock_scheduler.start.assert_called_once()
    inventory_scheduler.shutdown()
    mock_scheduler.shutdown.assert_not_called()

    mock_scheduler.running = True
    inventory_scheduler.start()
    mock_scheduler.start.assert_called_once()
    inventory_scheduler.shutdown()
    mock_scheduler.shutdown.assert_called_once_with(wait=False)
