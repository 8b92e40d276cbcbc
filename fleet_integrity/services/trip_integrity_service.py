# fleet_integrity/services/trip_integrity_service.py
"""
Per-trip data integrity validation.

validate_trip() checks one trip against its vehicle's previous trip and the
vehicle's other trips: odometer continuity, distance and fuel bounds, timing,
overlapping trips, negative values and inactive vehicle / driver. Errors carry
a severity and a suggested fix; warnings carry a recommendation. A quality
score starts at 100 and loses points per finding.

validate_vehicle_trips() and get_data_quality_summary() load from the record
store. The summary is best-effort: one vehicle failing is logged and skipped.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Optional

from fleet_integrity.config import settings
from fleet_integrity.models.driver import Driver
from fleet_integrity.models.trip import Trip
from fleet_integrity.models.vehicle import Vehicle
from fleet_integrity.services.record_store import RecordNotFoundError, RecordStore
from fleet_integrity.utils.dates import to_datetime
from fleet_integrity.utils.logger import get_logger

logger = get_logger(__name__)

ERROR_PENALTY = {"critical": 25, "high": 15, "medium": 10, "low": 5}
WARNING_PENALTY = 2
EXPENSE_FIELDS = ("total_expense", "total_fuel_cost", "total_road_expenses", "gross_weight")


@dataclass
class IntegrityIssue:
    field: str
    message: str
    severity: str               # low | medium | high | critical
    suggested_fix: str = ""


@dataclass
class IntegrityWarning:
    field: str
    message: str
    recommendation: str


@dataclass
class TripValidation:
    trip_id: int
    trip_serial_number: Optional[str]
    is_valid: bool
    score: int
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)


def _check_odometer_continuity(trip, previous_trip, errors, warnings):
    if previous_trip is None or previous_trip.end_km is None or trip.start_km is None:
        return
    gap = trip.start_km - previous_trip.end_km
    if gap < 0:
        errors.append(IntegrityIssue(
            "start_km",
            f"Start odometer {trip.start_km:g} is below the previous trip's end odometer {previous_trip.end_km:g}",
            "critical",
            "Verify the odometer readings of both trips",
        ))
    elif gap > settings.MAX_ODOMETER_GAP_KM:
        warnings.append(IntegrityWarning(
            "start_km",
            f"{gap:g} km unaccounted for since the previous trip",
            "Check for maintenance runs, personal use or a missing trip",
        ))


def _check_distance(trip, errors, warnings):
    if trip.start_km is None or trip.end_km is None:
        return
    distance = trip.end_km - trip.start_km
    if distance < settings.MIN_TRIP_DISTANCE_KM:
        errors.append(IntegrityIssue(
            "distance",
            f"Trip distance {distance:g} km is too short",
            "medium",
            "Verify the odometer readings",
        ))
    elif distance > settings.MAX_TRIP_DISTANCE_KM:
        warnings.append(IntegrityWarning(
            "distance",
            f"Trip distance {distance:g} km is unusually long",
            "Verify the odometer readings and trip duration",
        ))


def _check_fuel(trip, errors, warnings):
    fuel = trip.fuel_quantity
    if not fuel:
        return
    if fuel < 0:
        errors.append(IntegrityIssue(
            "fuel_quantity", "Fuel quantity cannot be negative", "high",
            "Enter the correct fuel quantity or leave it empty",
        ))
    elif fuel > settings.MAX_FUEL_QUANTITY_L:
        warnings.append(IntegrityWarning(
            "fuel_quantity",
            f"Fuel quantity {fuel:g} L is unusually high",
            "Verify the fuel bill against the tank capacity",
        ))

    kmpl = trip.calculated_kmpl
    if kmpl and kmpl < settings.MIN_PLAUSIBLE_KMPL:
        warnings.append(IntegrityWarning(
            "calculated_kmpl", f"Mileage {kmpl:g} km/L is very low",
            "Check the fuel quantity and distance",
        ))
    elif kmpl and kmpl > settings.MAX_PLAUSIBLE_KMPL:
        warnings.append(IntegrityWarning(
            "calculated_kmpl", f"Mileage {kmpl:g} km/L is unusually high",
            "Check the fuel quantity and distance",
        ))


def _check_timing(trip, errors, warnings):
    start, end = to_datetime(trip.trip_start_date), to_datetime(trip.trip_end_date)
    if start is None or end is None:
        return
    hours = (end - start).total_seconds() / 3600
    if hours < 0:
        errors.append(IntegrityIssue(
            "trip_end_date", "Trip ends before it starts", "critical", "Correct the trip end date",
        ))
    elif hours > settings.MAX_TRIP_DURATION_HOURS:
        warnings.append(IntegrityWarning(
            "trip_end_date",
            f"Trip duration {hours:.1f} hours is unusually long",
            "Verify the trip start and end times",
        ))


def find_overlapping_trips(trip, vehicle_trips: list) -> list:
    """Same-vehicle trips whose time span overlaps this one. Back-to-back trips do not overlap."""
    start, end = to_datetime(trip.trip_start_date), to_datetime(trip.trip_end_date)
    if start is None or end is None:
        return []
    overlapping = []
    for other in vehicle_trips:
        if other is trip or (other.id is not None and other.id == trip.id):
            continue
        if other.vehicle_id != trip.vehicle_id:
            continue
        o_start, o_end = to_datetime(other.trip_start_date), to_datetime(other.trip_end_date)
        if o_start is not None and o_end is not None and o_start < end and start < o_end:
            overlapping.append(other)
    return overlapping


def _check_value_ranges(trip, errors):
    if (trip.start_km or 0) < 0 or (trip.end_km or 0) < 0:
        errors.append(IntegrityIssue(
            "odometer", "Odometer readings cannot be negative", "high", "Enter the correct odometer readings",
        ))
    for name in EXPENSE_FIELDS:
        value = getattr(trip, name)
        if value is not None and value < 0:
            errors.append(IntegrityIssue(
                name, f"{name} cannot be negative", "medium", "Enter the correct amount",
            ))


def _check_status(vehicle, driver, warnings):
    if driver is not None and driver.status not in (None, "active"):
        warnings.append(IntegrityWarning(
            "driver_id", f"Driver {driver.name} is not active",
            "Verify the driver's status or assign an active driver",
        ))
    if vehicle is not None and vehicle.status not in (None, "active"):
        warnings.append(IntegrityWarning(
            "vehicle_id", f"Vehicle {vehicle.registration_number} is {vehicle.status}",
            "Verify the vehicle's status",
        ))


def quality_score(errors: list, warnings: list) -> int:
    score = 100 - sum(ERROR_PENALTY[e.severity] for e in errors) - WARNING_PENALTY * len(warnings)
    return max(0, score)


def validate_trip(trip, previous_trip=None, vehicle_trips=(), vehicle=None, driver=None) -> TripValidation:
    errors, warnings = [], []
    _check_odometer_continuity(trip, previous_trip, errors, warnings)
    _check_distance(trip, errors, warnings)
    _check_fuel(trip, errors, warnings)
    _check_timing(trip, errors, warnings)

    overlapping = find_overlapping_trips(trip, vehicle_trips)
    if overlapping:
        errors.append(IntegrityIssue(
            "trip_timing",
            f"Vehicle has {len(overlapping)} overlapping trip(s): {[t.id for t in overlapping]}",
            "high",
            "Check the trip dates of the overlapping trips",
        ))

    _check_value_ranges(trip, errors)
    _check_status(vehicle, driver, warnings)

    return TripValidation(
        trip_id=trip.id,
        trip_serial_number=trip.trip_serial_number,
        is_valid=not any(e.severity in ("critical", "high") for e in errors),
        score=quality_score(errors, warnings),
        errors=errors,
        warnings=warnings,
    )


def _validate_ordered(trips: list, vehicle=None, drivers: Optional[dict] = None) -> list:
    results = []
    previous = None
    for trip in trips:
        driver = (drivers or {}).get(trip.driver_id)
        results.append(validate_trip(trip, previous, trips, vehicle=vehicle, driver=driver))
        previous = trip
    return results


def _vehicle_trips(store: RecordStore, vehicle_id) -> list:
    return store.list(Trip, filters={"vehicle_id": vehicle_id, "deleted_at": None}, order_by="trip_start_date")


def validate_vehicle_trips(store: RecordStore, vehicle_id) -> list:
    """Validate every trip of one vehicle in chronological order."""
    vehicle = store.get(Vehicle, vehicle_id)
    if vehicle is None or vehicle.deleted_at is not None:
        raise RecordNotFoundError(Vehicle, vehicle_id)
    trips = _vehicle_trips(store, vehicle_id)
    drivers = {}
    for driver_id in {t.driver_id for t in trips if t.driver_id is not None}:
        drivers[driver_id] = store.get(Driver, driver_id)
    return _validate_ordered(trips, vehicle, drivers)


def get_data_quality_summary(store: RecordStore) -> dict:
    """Fleet-wide counts of integrity errors by severity, warnings and the mean quality score."""
    vehicles = store.list(Vehicle, filters={"deleted_at": None}, order_by="id")
    by_vehicle = defaultdict(list)
    for trip in store.list(Trip, filters={"deleted_at": None}, order_by="trip_start_date"):
        by_vehicle[trip.vehicle_id].append(trip)

    results = []
    for vehicle in vehicles:
        try:
            results.extend(_validate_ordered(by_vehicle.get(vehicle.id, []), vehicle))
        except Exception as e:
            logger.error(f"[INTEGRITY] Validation failed for vehicle {vehicle.id}: {e}", exc_info=True)

    severities = Counter(e.severity for r in results for e in r.errors)
    summary = {
        "total_trips": len(results),
        "average_score": round(sum(r.score for r in results) / len(results), 2) if results else 100.0,
        "invalid_trips": sum(1 for r in results if not r.is_valid),
        "critical_issues": severities["critical"],
        "high_issues": severities["high"],
        "medium_issues": severities["medium"],
        "low_issues": severities["low"],
        "warnings": sum(len(r.warnings) for r in results),
    }
    logger.info(
        f"[INTEGRITY] {summary['total_trips']} trips checked, average score {summary['average_score']}, "
        f"{summary['invalid_trips']} invalid"
    )
    return summary
