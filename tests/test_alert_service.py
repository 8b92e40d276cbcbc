# tests/test_alert_service.py
"""Unit tests for alert creation, duplicate suppression and resolution."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from unittest.mock import MagicMock
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fleet_integrity.database import create_tables
from fleet_integrity.models.alert import Alert
from fleet_integrity.models.maintenance_task import MaintenanceTask
from fleet_integrity.models.vehicle import Vehicle
from fleet_integrity.services.alert_service import (
    create_alert,
    is_suppressed,
    list_alerts,
    process_alert_action,
)
from fleet_integrity.services.anomaly_rules import detect_high_expense_spike
from fleet_integrity.services.record_store import RecordNotFoundError, RecordStore, RecordStoreError


def make_draft(task_id=11, vehicle_id=1, cost=15000):
    task = MaintenanceTask(id=task_id, vehicle_id=vehicle_id, start_date=datetime(2024, 3, 1), actual_cost=cost)
    return detect_high_expense_spike(task)


def make_alert(id=5, status="pending", metadata=None):
    return Alert(
        id=id,
        alert_type="high_expense_spike",
        severity="high",
        status=status,
        title="High maintenance expense",
        description="test",
        affected_entity_type="vehicle",
        affected_entity_id=1,
        source_record_id=11,
        alert_metadata=metadata if metadata is not None else {"expected_value": 10000},
        created_at=datetime(2024, 3, 1),
    )


def make_store(alert=None, existing=None):
    """MagicMock store whose update applies the patch to `alert`."""
    store = MagicMock()
    store.get.return_value = alert if alert is not None else MagicMock()
    store.list.return_value = existing or []
    store.insert.side_effect = lambda record: record

    def apply(model, record_id, patch):
        for field, value in patch.items():
            setattr(alert, field, value)
        return alert

    store.update.side_effect = apply
    return store


class TestCreateAlert:
    def test_creates_pending_alert(self):
        store = make_store()
        alert = create_alert(store, make_draft())

        store.insert.assert_called_once()
        assert alert.status == "pending"
        assert alert.alert_type == "high_expense_spike"
        assert alert.affected_entity == {"type": "vehicle", "id": 1}
        assert alert.source_record_id == 11
        assert alert.alert_metadata["alert_type"] == "high_expense_spike"
        assert alert.alert_metadata["actual_value"] == 15000.0

    def test_missing_entity_is_skipped(self):
        store = make_store()
        store.get.return_value = None

        assert create_alert(store, make_draft()) is None
        store.insert.assert_not_called()

    def test_existing_alert_suppresses_duplicate(self):
        store = make_store(existing=[make_alert()])

        assert create_alert(store, make_draft()) is None
        store.insert.assert_not_called()

    def test_store_failure_propagates(self):
        store = make_store()
        store.insert.side_effect = RecordStoreError("disk full")

        with pytest.raises(RecordStoreError):
            create_alert(store, make_draft())


class TestSuppression:
    def test_ignored_for_week_expires(self):
        now = datetime(2024, 3, 20)
        ignored = make_alert(status="ignored", metadata={
            "ignore_duration": "week",
            "resolved_at": (now - timedelta(days=8)).isoformat(),
        })
        assert is_suppressed(make_store(existing=[ignored]), make_draft(), now=now) is False

    def test_ignored_for_week_still_active(self):
        now = datetime(2024, 3, 20)
        ignored = make_alert(status="ignored", metadata={
            "ignore_duration": "week",
            "resolved_at": (now - timedelta(days=2)).isoformat(),
        })
        assert is_suppressed(make_store(existing=[ignored]), make_draft(), now=now) is True

    def test_permanently_ignored_never_expires(self):
        ignored = make_alert(status="ignored", metadata={
            "ignore_duration": "permanent",
            "resolved_at": datetime(2020, 1, 1).isoformat(),
        })
        assert is_suppressed(make_store(existing=[ignored]), make_draft()) is True


class TestProcessAlertAction:
    @pytest.mark.asyncio
    async def test_accept_records_resolution(self):
        alert = make_alert()
        store = make_store(alert=alert)

        result = await process_alert_action(store, 5, "accept", reason="Verified with workshop")

        assert result.status == "accepted"
        assert result.alert_metadata["resolution_reason"] == "Verified with workshop"
        assert result.alert_metadata["resolution_comment"] == "Verified with workshop"
        assert "resolved_at" in result.alert_metadata
        assert result.alert_metadata["expected_value"] == 10000
        assert "ignore_duration" not in result.alert_metadata

    @pytest.mark.asyncio
    async def test_ignore_with_duration(self):
        alert = make_alert()
        result = await process_alert_action(make_store(alert=alert), 5, "ignore", duration="week")

        assert result.status == "ignored"
        assert result.alert_metadata["ignore_duration"] == "week"

    @pytest.mark.asyncio
    async def test_last_write_wins(self):
        alert = make_alert()
        store = make_store(alert=alert)

        await process_alert_action(store, 5, "accept", reason="first")
        result = await process_alert_action(store, 5, "deny", reason="second")

        assert result.status == "denied"
        assert result.alert_metadata["resolution_reason"] == "second"
        assert store.update.call_count == 2

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self):
        store = make_store(alert=make_alert())
        with pytest.raises(ValueError):
            await process_alert_action(store, 5, "escalate")
        with pytest.raises(ValueError):
            await process_alert_action(store, 5, "ignore", duration="forever")
        store.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_alert_raises(self):
        store = MagicMock()
        store.get.return_value = None
        with pytest.raises(RecordNotFoundError):
            await process_alert_action(store, 99, "accept")

    @pytest.mark.asyncio
    async def test_write_failure_surfaces(self):
        store = make_store(alert=make_alert())
        store.update.side_effect = RecordStoreError("timeout")
        with pytest.raises(RecordStoreError):
            await process_alert_action(store, 5, "deny")


class TestAlertLifecycleWithStore:
    @pytest.fixture
    def store(self):
        engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        create_tables(bind=engine)
        db = sessionmaker(bind=engine)()
        store = RecordStore(db)
        store.insert(Vehicle(id=1, registration_number="KA01AB1234"))
        yield store
        db.close()
        engine.dispose()

    def test_repeated_scan_does_not_duplicate(self, store):
        first = create_alert(store, make_draft())
        second = create_alert(store, make_draft())

        assert first is not None and first.id is not None
        assert second is None
        assert len(list_alerts(store)) == 1

    @pytest.mark.asyncio
    async def test_resolution_persists(self, store):
        alert = create_alert(store, make_draft())
        await process_alert_action(store, alert.id, "ignore", reason="known issue", duration="permanent")

        stored = list_alerts(store, status="ignored")
        assert len(stored) == 1
        assert stored[0].alert_metadata["ignore_duration"] == "permanent"
        assert list_alerts(store, status="pending") == []
