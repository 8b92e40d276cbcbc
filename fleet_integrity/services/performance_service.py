# fleet_integrity/services/performance_service.py
"""
Driver performance metrics and comparative insights.

get_driver_performance_metrics() aggregates trips, the driver's assigned
vehicle and its maintenance tasks over an inclusive date range. The four
insight functions are pure and independently callable; get_driver_insights()
computes the fleet averages once and runs all four per driver.
"""

from dataclasses import dataclass, field
from typing import Optional

from fleet_integrity.config import settings
from fleet_integrity.models.driver import Driver
from fleet_integrity.models.maintenance_task import MaintenanceTask
from fleet_integrity.models.trip import Trip
from fleet_integrity.models.vehicle import Vehicle
from fleet_integrity.services.anomaly_rules import resolve_task_cost, trip_distance
from fleet_integrity.services.record_store import RecordStore
from fleet_integrity.utils.dates import DateRange, to_date
from fleet_integrity.utils.logger import get_logger

logger = get_logger(__name__)

BREAKDOWN_TASK_TYPES = {"accidental", "emergency_breakdown"}
DOCUMENT_COST_FIELDS = ("insurance_premium_amount", "fitness_cost", "permit_cost", "puc_cost", "tax_amount")


@dataclass
class PerformanceMetrics:
    driver_id: int
    name: str
    total_trips: int = 0
    total_distance: float = 0.0
    total_fuel: float = 0.0
    avg_mileage: float = 0.0
    total_gross_weight: float = 0.0
    avg_load_per_trip: float = 0.0
    total_expenses: float = 0.0
    cost_per_km: float = 0.0
    utilization_days: int = 0
    utilization_percentage: float = 0.0
    days_under_maintenance: float = 0.0
    documentation_expense: float = 0.0
    last_trip_date: Optional[str] = None


@dataclass
class Insight:
    type: str                   # cost_comparison | mileage_drop | breakdown_frequency | maintenance_cost
    driver_id: int
    message: str
    severity: str
    metadata: dict = field(default_factory=dict)


def _tasks_in_range(tasks: list, vehicle_id, date_range: DateRange) -> list:
    return [t for t in tasks if t.vehicle_id == vehicle_id and date_range.contains(t.start_date)]


def _documentation_expense(vehicle) -> float:
    total = sum(getattr(vehicle, f) or 0 for f in DOCUMENT_COST_FIELDS)
    for doc in vehicle.other_documents or []:
        total += (doc or {}).get("cost") or 0
    return float(total)


def get_driver_performance_metrics(
    drivers: list,
    trips: list,
    vehicles: list,
    tasks: list,
    date_range: DateRange,
) -> list:
    vehicles_by_id = {v.id: v for v in vehicles}
    metrics = []

    for driver in drivers:
        driver_trips = [t for t in trips if t.driver_id == driver.id and date_range.contains(t.trip_start_date)]

        total_trips = len(driver_trips)
        total_distance = sum(trip_distance(t) for t in driver_trips)
        total_fuel = sum(t.fuel_quantity or 0 for t in driver_trips)
        total_weight = sum(t.gross_weight or 0 for t in driver_trips)
        total_expenses = sum(t.total_expense or 0 for t in driver_trips)
        trip_days = {to_date(t.trip_start_date) for t in driver_trips}
        end_dates = [to_date(t.trip_end_date) for t in driver_trips if to_date(t.trip_end_date)]

        m = PerformanceMetrics(
            driver_id=driver.id,
            name=driver.name,
            total_trips=total_trips,
            total_distance=total_distance,
            total_fuel=total_fuel,
            avg_mileage=total_distance / total_fuel if total_fuel > 0 else 0.0,
            total_gross_weight=total_weight,
            avg_load_per_trip=total_weight / total_trips if total_trips else 0.0,
            total_expenses=total_expenses,
            cost_per_km=total_expenses / total_distance if total_distance > 0 else 0.0,
            utilization_days=len(trip_days),
            utilization_percentage=len(trip_days) / date_range.days * 100 if date_range.days > 0 else 0.0,
            last_trip_date=max(end_dates).isoformat() if end_dates else None,
        )

        vehicle = vehicles_by_id.get(driver.primary_vehicle_id)
        if vehicle is not None:
            m.days_under_maintenance = sum(
                t.downtime_days or 0 for t in _tasks_in_range(tasks, vehicle.id, date_range)
            )
            m.documentation_expense = _documentation_expense(vehicle)

        metrics.append(m)
    return metrics


# ── Fleet averages ──────────────────────────────────────────────────────────

def get_fleet_average_cost_per_km(metrics: list) -> float:
    moving = [m.cost_per_km for m in metrics if m.total_distance > 0]
    return sum(moving) / len(moving) if moving else 0.0


def vehicle_maintenance_cost(tasks: list, vehicle_id, date_range: DateRange) -> float:
    total = 0.0
    for task in _tasks_in_range(tasks, vehicle_id, date_range):
        resolved = resolve_task_cost(task)
        if resolved:
            total += resolved[0]
    return total


def get_fleet_average_maintenance_cost(vehicles: list, tasks: list, date_range: DateRange) -> float:
    """Mean maintenance spend over vehicles that had at least one task in range."""
    costs = [
        vehicle_maintenance_cost(tasks, v.id, date_range)
        for v in vehicles
        if _tasks_in_range(tasks, v.id, date_range)
    ]
    return sum(costs) / len(costs) if costs else 0.0


# ── Insights ────────────────────────────────────────────────────────────────

def get_cost_comparison_insight(driver_id, driver_cost_per_km: float, fleet_avg_cost_per_km: float) -> Insight:
    if fleet_avg_cost_per_km == 0:
        return Insight(
            type="cost_comparison",
            driver_id=driver_id,
            message="Cannot compare cost/km: fleet average cost/km is zero.",
            severity="low",
            metadata={"driver_cost_per_km": driver_cost_per_km, "fleet_avg_cost_per_km": 0.0},
        )

    diff = (driver_cost_per_km - fleet_avg_cost_per_km) / fleet_avg_cost_per_km * 100
    figures = f"(₹{driver_cost_per_km:.2f} vs ₹{fleet_avg_cost_per_km:.2f})"
    if diff > 25:
        severity, message = "high", f"Cost/km is {diff:.1f}% above fleet average {figures}."
    elif diff > 10:
        severity, message = "medium", f"Cost/km is {diff:.1f}% above fleet average {figures}."
    elif diff < 0:
        severity, message = "low", f"Cost/km is {abs(diff):.1f}% below fleet average {figures}. Well done."
    else:
        severity, message = "low", f"Cost/km is in line with fleet average {figures}."

    return Insight(
        type="cost_comparison",
        driver_id=driver_id,
        message=message,
        severity=severity,
        metadata={
            "driver_cost_per_km": driver_cost_per_km,
            "fleet_avg_cost_per_km": fleet_avg_cost_per_km,
            "percent_difference": round(diff, 2),
        },
    )


def _average_kmpl(trips: list, driver_id, date_range: DateRange) -> Optional[float]:
    values = [
        t.calculated_kmpl for t in trips
        if t.driver_id == driver_id
        and not t.short_trip
        and t.calculated_kmpl is not None and t.calculated_kmpl > 0
        and date_range.contains(t.trip_start_date)
    ]
    if len(values) < settings.MILEAGE_DROP_MIN_TRIPS:
        return None
    return sum(values) / len(values)


def get_mileage_drop_insight(driver_id, trips: list, date_range: DateRange) -> Optional[Insight]:
    """Compare this range's average km/L with the preceding range of equal length."""
    current = _average_kmpl(trips, driver_id, date_range)
    if current is None:
        return None
    previous_range = date_range.previous()
    previous = _average_kmpl(trips, driver_id, previous_range)
    if not previous:
        return None

    drop = (previous - current) / previous * 100
    if drop <= 10:
        return None

    return Insight(
        type="mileage_drop",
        driver_id=driver_id,
        message=(
            f"Average mileage dropped {drop:.1f}% from {previous:.2f} km/L "
            f"to {current:.2f} km/L."
        ),
        severity="high" if drop > 25 else "medium" if drop > 15 else "low",
        metadata={
            "current_avg_mileage": round(current, 2),
            "previous_avg_mileage": round(previous, 2),
            "percent_drop": round(drop, 2),
            "previous_range": {"start": previous_range.start.isoformat(), "end": previous_range.end.isoformat()},
        },
    )


def get_breakdown_insight(driver_id, vehicle_id, tasks: list, date_range: DateRange) -> Optional[Insight]:
    if vehicle_id is None:
        return None
    breakdowns = [
        t for t in _tasks_in_range(tasks, vehicle_id, date_range)
        if (t.task_type or "").lower() in BREAKDOWN_TASK_TYPES or (t.category or "").lower() == "breakdown"
    ]
    if len(breakdowns) < 2:
        return None

    return Insight(
        type="breakdown_frequency",
        driver_id=driver_id,
        message=(
            f"{len(breakdowns)} breakdowns between {date_range.start:%d %b %Y} "
            f"and {date_range.end:%d %b %Y}."
        ),
        severity="high" if len(breakdowns) >= 3 else "medium",
        metadata={"breakdown_count": len(breakdowns), "task_ids": [t.id for t in breakdowns]},
    )


def get_maintenance_cost_insight(
    driver_id,
    vehicle_id,
    tasks: list,
    date_range: DateRange,
    fleet_avg_maintenance_cost: float,
) -> Optional[Insight]:
    if vehicle_id is None or fleet_avg_maintenance_cost == 0:
        return None
    cost = vehicle_maintenance_cost(tasks, vehicle_id, date_range)
    above = (cost - fleet_avg_maintenance_cost) / fleet_avg_maintenance_cost * 100
    if above <= 20:
        return None

    return Insight(
        type="maintenance_cost",
        driver_id=driver_id,
        message=(
            f"Maintenance cost ₹{cost:,.2f} is {above:.1f}% above the fleet average "
            f"(₹{fleet_avg_maintenance_cost:,.2f})."
        ),
        severity="high" if above > 40 else "medium",
        metadata={
            "maintenance_cost": round(cost, 2),
            "fleet_avg_maintenance_cost": round(fleet_avg_maintenance_cost, 2),
            "percent_above_fleet": round(above, 2),
        },
    )


def get_driver_insights(
    drivers: list,
    trips: list,
    vehicles: list,
    tasks: list,
    date_range: DateRange,
    metrics: list = None,
) -> list:
    """All four insights for every driver, with fleet averages computed once."""
    if metrics is None:
        metrics = get_driver_performance_metrics(drivers, trips, vehicles, tasks, date_range)
    fleet_cost_per_km = get_fleet_average_cost_per_km(metrics)
    fleet_maintenance = get_fleet_average_maintenance_cost(vehicles, tasks, date_range)
    metrics_by_driver = {m.driver_id: m for m in metrics}

    insights = []
    for driver in drivers:
        m = metrics_by_driver.get(driver.id)
        if m is not None and m.total_distance > 0:
            insights.append(get_cost_comparison_insight(driver.id, m.cost_per_km, fleet_cost_per_km))
        for insight in (
            get_mileage_drop_insight(driver.id, trips, date_range),
            get_breakdown_insight(driver.id, driver.primary_vehicle_id, tasks, date_range),
            get_maintenance_cost_insight(driver.id, driver.primary_vehicle_id, tasks, date_range, fleet_maintenance),
        ):
            if insight is not None:
                insights.append(insight)
    return insights


def load_driver_insights(store: RecordStore, date_range: DateRange) -> dict:
    """Load everything needed from the store and return metrics plus insights."""
    drivers = store.list(Driver, order_by="id")
    vehicles = store.list(Vehicle, filters={"deleted_at": None})
    trips = store.list(Trip, filters={"deleted_at": None})
    tasks = store.list(MaintenanceTask)

    metrics = get_driver_performance_metrics(drivers, trips, vehicles, tasks, date_range)
    insights = get_driver_insights(drivers, trips, vehicles, tasks, date_range, metrics=metrics)
    logger.info(
        f"[INSIGHTS] {len(drivers)} drivers, {len(insights)} insights for "
        f"{date_range.start} → {date_range.end}"
    )
    return {"metrics": metrics, "insights": insights}
