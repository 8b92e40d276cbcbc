# fleet_integrity/services/anomaly_rules.py
"""
Anomaly rule set — five independent detectors.

Trip rules:         fuel_anomaly, route_deviation, low_mileage_streak
Maintenance rules:  frequent_maintenance, high_expense_spike

Each detector is a pure function of one record (plus, where needed, the
surrounding records already in memory) and returns at most one AlertDraft.
Missing or malformed fields mean "not applicable": the detector returns None
instead of raising. Persistence is the caller's job (alert_service).
"""

from datetime import timedelta
from typing import Optional, Tuple

from fleet_integrity.config import settings
from fleet_integrity.schemas.alert import (
    AffectedEntity,
    AlertDraft,
    FrequentMaintenanceMetadata,
    FuelAnomalyMetadata,
    HighExpenseSpikeMetadata,
    LowMileageStreakMetadata,
    RouteDeviationMetadata,
)
from fleet_integrity.utils.dates import to_date, to_datetime

HIGH_MILEAGE_RECOMMENDATIONS = [
    "Verify the odometer readings entered for this trip",
    "Check whether the fuel quantity was under-reported or a refuel was missed",
    "Confirm the trip was not merged with another trip's distance",
]
LOW_MILEAGE_RECOMMENDATIONS = [
    "Inspect the vehicle for fuel leaks or engine faults",
    "Check for fuel pilferage against the fuel bill",
    "Review driving behaviour: idling, overloading, harsh acceleration",
]
ROUTE_DEVIATION_RECOMMENDATIONS = [
    "Review the GPS track against the planned route",
    "Ask the driver for the reason of the detour",
    "Check whether the planned route needs updating for road closures",
]
LOW_STREAK_RECOMMENDATIONS = [
    "Schedule an engine and fuel system inspection",
    "Check tyre pressure and wheel alignment",
    "Compare fuel bills with station records for the affected trips",
]
FREQUENT_MAINTENANCE_RECOMMENDATIONS = [
    "Look for a recurring root cause across the recent tasks",
    "Review workshop quality for repeated repairs",
    "Consider a full inspection or replacement evaluation for this vehicle",
]
HIGH_EXPENSE_RECOMMENDATIONS = [
    "Verify the bills and line items for this task",
    "Obtain a second quotation for major repairs",
    "Check whether any parts are covered by warranty",
]


def _pct(actual: float, threshold: float) -> float:
    if not threshold:
        return 0.0
    return round(abs(actual - threshold) / threshold * 100, 2)


def _vehicle(record) -> AffectedEntity:
    return AffectedEntity(type="vehicle", id=record.vehicle_id)


def trip_distance(trip) -> float:
    return (trip.end_km or 0) - (trip.start_km or 0)


def _end_key(trip):
    return to_datetime(trip.trip_end_date) or to_datetime(trip.trip_start_date)


# ── Trip detectors ──────────────────────────────────────────────────────────

def detect_mileage_anomaly(trip) -> Optional[AlertDraft]:
    """Flag refuelling trips whose distance / fuel falls outside the plausible band."""
    fuel = trip.fuel_quantity or 0
    distance = trip_distance(trip)
    if not trip.refueling_done or fuel <= 0 or trip.short_trip or distance <= 0:
        return None

    mileage = distance / fuel
    if mileage > settings.MILEAGE_MAX_KMPL:
        direction, threshold, severity = "high", settings.MILEAGE_MAX_KMPL, "medium"
        title = "Unusually high mileage"
        recommendations = HIGH_MILEAGE_RECOMMENDATIONS
    elif mileage < settings.MILEAGE_MIN_KMPL:
        direction, threshold, severity = "low", settings.MILEAGE_MIN_KMPL, "high"
        title = "Unusually low mileage"
        recommendations = LOW_MILEAGE_RECOMMENDATIONS
    else:
        return None

    return AlertDraft(
        alert_type="fuel_anomaly",
        severity=severity,
        title=title,
        description=(
            f"Trip {trip.trip_serial_number or trip.id}: {mileage:.2f} km/L "
            f"({distance:.0f} km on {fuel:.2f} L) is {direction}er than the "
            f"{threshold:g} km/L limit"
        ),
        affected_entity=_vehicle(trip),
        source_record_id=trip.id,
        metadata=FuelAnomalyMetadata(
            expected_value=threshold,
            actual_value=round(mileage, 2),
            deviation=_pct(mileage, threshold),
            recommendations=list(recommendations),
            trip_id=trip.id,
            trip_serial_number=trip.trip_serial_number,
            distance=distance,
            fuel_quantity=fuel,
            direction=direction,
        ),
    )


def detect_route_deviation(trip) -> Optional[AlertDraft]:
    deviation = trip.route_deviation
    threshold = settings.ROUTE_DEVIATION_THRESHOLD_PCT
    if deviation is None or trip.short_trip or deviation <= threshold:
        return None

    return AlertDraft(
        alert_type="route_deviation",
        severity="medium",
        title="Route deviation detected",
        description=(
            f"Trip {trip.trip_serial_number or trip.id} deviated {deviation:.1f}% "
            f"from the planned route (limit {threshold:g}%)"
        ),
        affected_entity=_vehicle(trip),
        source_record_id=trip.id,
        metadata=RouteDeviationMetadata(
            expected_value=threshold,
            actual_value=deviation,
            deviation=_pct(deviation, threshold),
            recommendations=list(ROUTE_DEVIATION_RECOMMENDATIONS),
            trip_id=trip.id,
            trip_serial_number=trip.trip_serial_number,
        ),
    )


def detect_low_mileage_streak(trip, context_trips: list) -> Optional[AlertDraft]:
    """
    Walk back from `trip` through the same vehicle's measured trips (newest
    first, at most LOW_MILEAGE_LOOKBACK) and fire once LOW_MILEAGE_STREAK_MIN
    consecutive values sit below LOW_MILEAGE_KMPL. A trip whose next newer
    measured trip is also low belongs to a streak headed by that trip and
    does not fire on its own.
    """
    limit = settings.LOW_MILEAGE_KMPL
    if trip.calculated_kmpl is None or trip.short_trip or trip.calculated_kmpl >= limit:
        return None
    current_end = _end_key(trip)
    if current_end is None:
        return None

    measured = [
        t for t in context_trips
        if t.vehicle_id == trip.vehicle_id
        and t is not trip
        and (t.id is None or t.id != trip.id)
        and t.calculated_kmpl is not None
        and not t.short_trip
        and _end_key(t) is not None
    ]

    # only the newest member of a streak raises it
    newer = [t for t in measured if _end_key(t) > current_end]
    if newer and min(newer, key=_end_key).calculated_kmpl < limit:
        return None

    history = sorted(
        (t for t in measured if _end_key(t) <= current_end),
        key=_end_key,
        reverse=True,
    )
    window = [trip] + history[: settings.LOW_MILEAGE_LOOKBACK - 1]

    streak = []
    for t in window:
        if t.calculated_kmpl >= limit:
            break
        streak.append(t)

    if len(streak) < settings.LOW_MILEAGE_STREAK_MIN:
        return None

    values = [round(t.calculated_kmpl, 2) for t in streak]
    average = sum(values) / len(values)
    return AlertDraft(
        alert_type="low_mileage_streak",
        severity="medium",
        title="Consistently low mileage",
        description=(
            f"{len(streak)} consecutive trips below {limit:g} km/L "
            f"(average {average:.2f} km/L)"
        ),
        affected_entity=_vehicle(trip),
        source_record_id=trip.id,
        metadata=LowMileageStreakMetadata(
            expected_value=limit,
            actual_value=round(average, 2),
            deviation=_pct(average, limit),
            recommendations=list(LOW_STREAK_RECOMMENDATIONS),
            trip_id=trip.id,
            streak_length=len(streak),
            streak_trip_ids=[t.id for t in streak],
            streak_kmpl=values,
        ),
    )


# ── Maintenance detectors ───────────────────────────────────────────────────

def resolve_task_cost(task) -> Optional[Tuple[float, str]]:
    """Total cost of a task and where it came from: service groups, actual, then estimate."""
    groups = task.service_groups or []
    if groups:
        total = sum((g or {}).get("cost") or 0 for g in groups)
        if total > 0:
            return float(total), "service_groups"
    if task.actual_cost:
        return float(task.actual_cost), "actual_cost"
    if task.estimated_cost:
        return float(task.estimated_cost), "estimated_cost"
    return None


def detect_frequent_maintenance(task, context_tasks: list) -> Optional[AlertDraft]:
    """Count same-vehicle tasks starting within ±window days of this one (itself included)."""
    start = to_date(task.start_date)
    if start is None:
        return None
    window = timedelta(days=settings.FREQUENT_MAINTENANCE_WINDOW_DAYS)

    nearby = [task]
    for other in context_tasks:
        if other is task or (other.id is not None and other.id == task.id):
            continue
        other_start = to_date(other.start_date)
        if other.vehicle_id == task.vehicle_id and other_start and abs(other_start - start) <= window:
            nearby.append(other)

    threshold = settings.FREQUENT_MAINTENANCE_MIN_TASKS
    if len(nearby) < threshold:
        return None

    return AlertDraft(
        alert_type="frequent_maintenance",
        severity="medium",
        title="Frequent maintenance",
        description=(
            f"{len(nearby)} maintenance tasks within ±{settings.FREQUENT_MAINTENANCE_WINDOW_DAYS} "
            f"days of {start.isoformat()}"
        ),
        affected_entity=_vehicle(task),
        source_record_id=task.id,
        metadata=FrequentMaintenanceMetadata(
            expected_value=threshold,
            actual_value=len(nearby),
            deviation=_pct(len(nearby), threshold),
            recommendations=list(FREQUENT_MAINTENANCE_RECOMMENDATIONS),
            task_id=task.id,
            window_days=settings.FREQUENT_MAINTENANCE_WINDOW_DAYS,
            task_ids=[t.id for t in nearby],
        ),
    )


def detect_high_expense_spike(task) -> Optional[AlertDraft]:
    resolved = resolve_task_cost(task)
    threshold = settings.HIGH_EXPENSE_THRESHOLD
    if resolved is None or resolved[0] <= threshold:
        return None
    cost, source = resolved

    return AlertDraft(
        alert_type="high_expense_spike",
        severity="high",
        title="High maintenance expense",
        description=f"Maintenance cost ₹{cost:,.2f} exceeds the ₹{threshold:,.0f} limit",
        affected_entity=_vehicle(task),
        source_record_id=task.id,
        metadata=HighExpenseSpikeMetadata(
            expected_value=threshold,
            actual_value=round(cost, 2),
            deviation=_pct(cost, threshold),
            recommendations=list(HIGH_EXPENSE_RECOMMENDATIONS),
            task_id=task.id,
            cost_source=source,
        ),
    )
