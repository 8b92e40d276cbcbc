# tests/test_scan_service.py
"""Unit tests for the scan orchestrator — batch and incremental runs."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import time
import pytest
from unittest.mock import MagicMock, patch
from datetime import datetime
from fleet_integrity.models.maintenance_task import MaintenanceTask
from fleet_integrity.models.trip import Trip
from fleet_integrity.services.record_store import RecordStoreError
from fleet_integrity.services.scan_service import (
    _persist_all,
    run_alert_scan,
    scan_maintenance_task,
    scan_trip,
    trip_drafts,
)


def make_trip(id=1, end_km=1300, fuel=6, route_deviation=None):
    return Trip(
        id=id,
        vehicle_id=1,
        driver_id=7,
        trip_serial_number=f"T24-1234-{id:04d}",
        trip_start_date=datetime(2024, 3, 10, 8),
        trip_end_date=datetime(2024, 3, 10, 18),
        start_km=1000,
        end_km=end_km,
        fuel_quantity=fuel,
        refueling_done=True,
        short_trip=False,
        route_deviation=route_deviation,
    )


def make_task(id=1, actual_cost=15000):
    return MaintenanceTask(id=id, vehicle_id=1, start_date=datetime(2024, 3, 1), actual_cost=actual_cost)


def make_store(trips, tasks):
    store = MagicMock()
    store.list.side_effect = lambda model, **kwargs: trips if model is Trip else tasks
    store.sibling.return_value = store
    return store


class TestRunAlertScan:
    @pytest.mark.asyncio
    async def test_counts_created_alerts(self):
        # anomalous trip + normal trip + expensive task
        store = make_store([make_trip(1), make_trip(2, end_km=1100, fuel=10)], [make_task()])

        with patch("fleet_integrity.services.scan_service.create_alert") as mock_alert:
            created = await run_alert_scan(store)

        assert created == 2
        assert mock_alert.call_count == 2
        types = sorted(call.args[1].alert_type for call in mock_alert.call_args_list)
        assert types == ["fuel_anomaly", "high_expense_spike"]

    @pytest.mark.asyncio
    async def test_suppressed_alerts_not_counted(self):
        store = make_store([make_trip(1)], [make_task()])

        with patch("fleet_integrity.services.scan_service.create_alert",
                   return_value=None):
            assert await run_alert_scan(store) == 0

    @pytest.mark.asyncio
    async def test_failed_write_does_not_stop_scan(self):
        store = make_store([make_trip(1, route_deviation=20)], [make_task()])

        with patch("fleet_integrity.services.scan_service.create_alert") as mock_alert:
            mock_alert.side_effect = [RecordStoreError("write failed"), MagicMock(), MagicMock()]
            created = await run_alert_scan(store)

        assert mock_alert.call_count == 3
        assert created == 2

    @pytest.mark.asyncio
    async def test_failing_detector_is_isolated(self):
        store = make_store([make_trip(1, route_deviation=20)], [])

        with patch("fleet_integrity.services.scan_service.detect_route_deviation",
                   side_effect=TypeError("bad record")), \
             patch("fleet_integrity.services.scan_service.create_alert") as mock_alert:
            created = await run_alert_scan(store)

        assert created == 1
        assert mock_alert.call_args.args[1].alert_type == "fuel_anomaly"

    @pytest.mark.asyncio
    async def test_empty_store(self):
        with patch("fleet_integrity.services.scan_service.create_alert") as mock_alert:
            assert await run_alert_scan(make_store([], [])) == 0
            mock_alert.assert_not_called()


class TestWriteTimeout:
    @pytest.mark.asyncio
    async def test_blocking_insert_is_abandoned(self):
        store = make_store([], [])
        store.list.side_effect = None
        store.list.return_value = []
        store.insert.side_effect = lambda record: time.sleep(0.5) or record

        drafts = trip_drafts(make_trip(1), [])
        with patch("fleet_integrity.services.scan_service.settings") as mock_settings:
            mock_settings.ALERT_WRITE_TIMEOUT_SECONDS = 0.05
            started = time.monotonic()
            created = await _persist_all(store, drafts)
            elapsed = time.monotonic() - started

        assert len(drafts) == 1
        assert created == 0
        assert elapsed < 0.4

    @pytest.mark.asyncio
    async def test_each_write_uses_its_own_session(self):
        store = make_store([], [])
        worker = MagicMock()
        worker.list.return_value = []
        worker.insert.side_effect = lambda record: record
        store.sibling.return_value = worker

        created = await _persist_all(store, trip_drafts(make_trip(1), []))

        assert created == 1
        worker.insert.assert_called_once()
        worker.close.assert_called_once()
        store.insert.assert_not_called()


class TestIncrementalScan:
    @pytest.mark.asyncio
    async def test_scan_trip_loads_vehicle_history(self):
        trip = make_trip(1)
        store = make_store([trip], [])

        with patch("fleet_integrity.services.scan_service.create_alert") as mock_alert:
            created = await scan_trip(store, trip)

        assert created == 1
        mock_alert.assert_called_once()
        assert store.list.call_args.kwargs["filters"] == {"vehicle_id": 1, "deleted_at": None}

    @pytest.mark.asyncio
    async def test_scan_task_uses_given_context(self):
        task = make_task(actual_cost=500)
        store = MagicMock()

        with patch("fleet_integrity.services.scan_service.create_alert") as mock_alert:
            created = await scan_maintenance_task(store, task, context_tasks=[])

        assert created == 0
        mock_alert.assert_not_called()
        store.list.assert_not_called()
