# fleet_integrity/services/mileage_service.py
"""
Tank-to-tank mileage (km/L) and the recalculation cascade.

A refuelling trip's mileage is the distance driven since the previous
refuelling of the same vehicle divided by the fuel put in now. Editing a trip
therefore changes the mileage of every later refuelling trip of that vehicle,
which is what recalculate_mileage_cascade() repairs.

Within one vehicle the cascade must run in chronological order, so cascades
are serialised per vehicle with an asyncio.Lock. Different vehicles run freely.
"""

import asyncio
import math
from collections import defaultdict
from datetime import datetime
from typing import Optional

from fleet_integrity.models.trip import Trip
from fleet_integrity.services.record_store import RecordStore
from fleet_integrity.utils.dates import to_datetime
from fleet_integrity.utils.logger import get_logger

logger = get_logger(__name__)

_vehicle_locks = defaultdict(asyncio.Lock)


def _round_up(value: float, places: int = 2) -> float:
    factor = 10 ** places
    return math.ceil(round(value * factor, 6)) / factor


def _end(trip) -> Optional[datetime]:
    return to_datetime(trip.trip_end_date)


def calculate_trip_mileage(trip, vehicle_trips: list) -> Optional[float]:
    """km/L for a refuelling trip, or None when it cannot be meaningfully computed."""
    fuel = trip.fuel_quantity or 0
    current_end = _end(trip)
    if not trip.refueling_done or fuel <= 0 or trip.short_trip or current_end is None:
        return None

    previous = [
        t for t in vehicle_trips
        if t is not trip
        and (t.id is None or t.id != trip.id)
        and t.vehicle_id == trip.vehicle_id
        and t.refueling_done
        and _end(t) is not None
        and _end(t) < current_end
    ]
    if previous:
        last_refuel = max(previous, key=_end)
        distance = (trip.end_km or 0) - (last_refuel.end_km or 0)
    else:
        # first refuelling on record: only this trip's own distance is known
        distance = (trip.end_km or 0) - (trip.start_km or 0)

    if distance <= 0:
        return None
    return _round_up(distance / fuel)


async def recalculate_mileage_cascade(store: RecordStore, edited_trip) -> int:
    """
    Recompute calculated_kmpl for the edited trip and every later refuelling
    trip of its vehicle. Each update is written on its own; a failed update is
    logged and the cascade moves on. Returns the number of trips updated.
    """
    async with _vehicle_locks[edited_trip.vehicle_id]:
        vehicle_trips = store.list(
            Trip,
            filters={"vehicle_id": edited_trip.vehicle_id, "deleted_at": None},
            order_by="trip_start_date",
        )
        edited_end = _end(edited_trip)
        if edited_end is None:
            logger.warning(f"[MILEAGE] Trip {edited_trip.id} has no end date — cascade skipped")
            return 0

        later = [
            t for t in vehicle_trips
            if t.id != edited_trip.id
            and to_datetime(t.trip_start_date) is not None
            and to_datetime(t.trip_start_date) >= edited_end
            and t.refueling_done
            and (t.fuel_quantity or 0) > 0
        ]
        later.sort(key=lambda t: (to_datetime(t.trip_start_date), _end(t) or datetime.max))

        updated = 0
        for trip in [edited_trip] + later:
            try:
                kmpl = calculate_trip_mileage(trip, vehicle_trips)
                if kmpl == trip.calculated_kmpl:
                    continue
                store.update(Trip, trip.id, {"calculated_kmpl": kmpl, "updated_at": datetime.utcnow()})
                trip.calculated_kmpl = kmpl
                updated += 1
                logger.debug(f"[MILEAGE] Trip {trip.id} → {kmpl} km/L")
            except Exception as e:
                logger.error(f"[MILEAGE] Recalculation failed for trip {trip.id}: {e}", exc_info=True)
            await asyncio.sleep(0)

        logger.info(
            f"[MILEAGE] Vehicle {edited_trip.vehicle_id}: {updated} trip(s) updated "
            f"after edit of trip {edited_trip.id}"
        )
        return updated
