# tests/test_mileage_service.py
"""Unit tests for tank-to-tank mileage and the recalculation cascade."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from unittest.mock import MagicMock
from datetime import datetime
from fleet_integrity.models.trip import Trip
from fleet_integrity.services.record_store import RecordStoreError
from fleet_integrity.services.mileage_service import calculate_trip_mileage, recalculate_mileage_cascade


def make_trip(id, day, start_km, end_km, fuel=20, refueling_done=True, short_trip=False, kmpl=None):
    return Trip(
        id=id,
        vehicle_id=1,
        trip_start_date=datetime(2024, 3, day, 6),
        trip_end_date=datetime(2024, 3, day, 20),
        start_km=start_km,
        end_km=end_km,
        fuel_quantity=fuel,
        refueling_done=refueling_done,
        short_trip=short_trip,
        calculated_kmpl=kmpl,
    )


def make_store(trips):
    store = MagicMock()
    store.list.return_value = trips
    return store


class TestCalculateTripMileage:
    def test_distance_since_previous_refuel(self):
        previous = make_trip(1, 1, 600, 1000)
        empty_run = make_trip(2, 2, 1000, 1100, fuel=None, refueling_done=False)
        current = make_trip(3, 3, 1100, 1500)
        assert calculate_trip_mileage(current, [previous, empty_run, current]) == 25.0

    def test_first_refuel_uses_own_distance(self):
        trip = make_trip(1, 1, 600, 1000)
        assert calculate_trip_mileage(trip, [trip]) == 20.0

    def test_rounds_up_to_two_places(self):
        trip = make_trip(1, 1, 0, 100, fuel=3)
        assert calculate_trip_mileage(trip, []) == 33.34

    def test_not_applicable(self):
        assert calculate_trip_mileage(make_trip(1, 1, 0, 100, refueling_done=False), []) is None
        assert calculate_trip_mileage(make_trip(1, 1, 0, 100, short_trip=True), []) is None
        assert calculate_trip_mileage(make_trip(1, 1, 0, 100, fuel=0), []) is None
        assert calculate_trip_mileage(make_trip(1, 1, 100, 100), []) is None


class TestMileageCascade:
    def vehicle_trips(self):
        return [
            make_trip(1, 1, 600, 1000),
            make_trip(2, 2, 1000, 1500, kmpl=99),
            make_trip(3, 3, 1500, 2000, fuel=25, kmpl=99),
        ]

    @pytest.mark.asyncio
    async def test_recomputes_edited_and_later_trips_in_order(self):
        trips = self.vehicle_trips()
        store = make_store(trips)

        updated = await recalculate_mileage_cascade(store, trips[0])

        assert updated == 3
        calls = store.update.call_args_list
        assert [c.args[1] for c in calls] == [1, 2, 3]
        assert [c.args[2]["calculated_kmpl"] for c in calls] == [20.0, 25.0, 20.0]

    @pytest.mark.asyncio
    async def test_unchanged_trips_are_not_rewritten(self):
        trips = self.vehicle_trips()
        trips[1].calculated_kmpl = 25.0
        store = make_store(trips)

        updated = await recalculate_mileage_cascade(store, trips[0])

        assert updated == 2
        assert [c.args[1] for c in store.update.call_args_list] == [1, 3]

    @pytest.mark.asyncio
    async def test_failed_update_is_skipped(self):
        trips = self.vehicle_trips()
        store = make_store(trips)
        store.update.side_effect = [None, RecordStoreError("deadlock"), None]

        updated = await recalculate_mileage_cascade(store, trips[0])

        assert updated == 2
        assert store.update.call_count == 3

    @pytest.mark.asyncio
    async def test_earlier_trips_untouched(self):
        trips = self.vehicle_trips()
        store = make_store(trips)

        await recalculate_mileage_cascade(store, trips[2])

        assert [c.args[1] for c in store.update.call_args_list] == [3]

    @pytest.mark.asyncio
    async def test_edited_trip_without_end_date(self):
        trip = make_trip(1, 1, 0, 100)
        trip.trip_end_date = None
        store = make_store([trip])

        assert await recalculate_mileage_cascade(store, trip) == 0
        store.update.assert_not_called()
