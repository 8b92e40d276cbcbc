# tests/test_record_store.py
"""Tests for the record store gateway against an in-memory SQLite database."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from unittest.mock import MagicMock
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fleet_integrity.database import create_tables
from fleet_integrity.models.trip import Trip
from fleet_integrity.models.vehicle import Vehicle
from fleet_integrity.services.record_store import RecordNotFoundError, RecordStore, RecordStoreError


@pytest.fixture
def store():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_tables(bind=engine)
    db = sessionmaker(bind=engine)()
    yield RecordStore(db)
    db.close()
    engine.dispose()


def add_trips(store, count=3):
    store.insert(Vehicle(id=1, registration_number="KA01AB1234"))
    for i in range(count):
        store.insert(Trip(
            vehicle_id=1,
            trip_serial_number=f"T24-1234-{i + 1:04d}",
            trip_start_date=datetime(2024, 3, i + 1, 8),
            trip_end_date=datetime(2024, 3, i + 1, 18),
            start_km=i * 100,
            end_km=(i + 1) * 100,
            deleted_at=datetime(2024, 4, 1) if i == 1 else None,
        ))


class TestRecordStore:
    def test_insert_assigns_id(self, store):
        vehicle = store.insert(Vehicle(registration_number="MH12XY0001"))
        assert vehicle.id is not None
        assert store.get(Vehicle, vehicle.id).registration_number == "MH12XY0001"

    def test_get_missing_returns_none(self, store):
        assert store.get(Vehicle, 404) is None

    def test_list_filters_null_and_orders(self, store):
        add_trips(store)
        trips = store.list(Trip, filters={"vehicle_id": 1, "deleted_at": None},
                           order_by="trip_end_date", descending=True)
        assert [t.trip_serial_number for t in trips] == ["T24-1234-0003", "T24-1234-0001"]

    def test_list_limit(self, store):
        add_trips(store)
        assert len(store.list(Trip, order_by="trip_start_date", limit=2)) == 2

    def test_update_applies_patch(self, store):
        add_trips(store, count=1)
        trip = store.list(Trip)[0]
        updated = store.update(Trip, trip.id, {"calculated_kmpl": 12.5})
        assert updated.calculated_kmpl == 12.5

    def test_update_missing_record(self, store):
        with pytest.raises(RecordNotFoundError):
            store.update(Trip, 999, {"calculated_kmpl": 1})

    def test_sibling_has_its_own_session(self, store):
        vehicle = store.insert(Vehicle(registration_number="TN09ZZ4321"))
        worker = store.sibling()
        try:
            assert worker.db is not store.db
            assert worker.get(Vehicle, vehicle.id).registration_number == "TN09ZZ4321"
        finally:
            worker.close()


class TestRecordStoreErrors:
    def test_query_failure_rolls_back(self):
        db = MagicMock()
        db.query.side_effect = OperationalError("SELECT", {}, Exception("server closed the connection"))
        store = RecordStore(db)

        with pytest.raises(RecordStoreError):
            store.list(Trip)
        db.rollback.assert_called_once()

    def test_commit_failure_rolls_back(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("deadlock"))
        store = RecordStore(db)

        with pytest.raises(RecordStoreError):
            store.insert(Vehicle(registration_number="X"))
        db.rollback.assert_called_once()
