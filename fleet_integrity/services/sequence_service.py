# fleet_integrity/services/sequence_service.py
"""
Trip serial sequence integrity.

Every vehicle numbers its trips with a serial whose trailing digits increase
month by month. This module finds serials used by more than one trip
(duplicates), numbers skipped inside a month (gaps), and serials whose embedded
vehicle digits do not belong to the vehicle (mismatches).

analyze_vehicle_sequence() is pure. get_system_wide_sequence_issues() loads
vehicles and trips from the record store and never lets one vehicle's failure
abort the report.
"""

import itertools
import math
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from fleet_integrity.models.trip import Trip
from fleet_integrity.models.vehicle import Vehicle
from fleet_integrity.services.record_store import RecordNotFoundError, RecordStore
from fleet_integrity.utils.dates import month_key, to_date, to_datetime
from fleet_integrity.utils.logger import get_logger

logger = get_logger(__name__)

_TRAILING_DIGITS = re.compile(r"(\d+)$")
SEVERITIES = ("low", "medium", "high")
MAX_LISTED_MISSING = 100


@dataclass
class SequenceIssue:
    type: str                                   # gap | duplicate
    vehicle_id: int
    vehicle_registration: str
    serial_number: str
    severity: str
    description: str
    date_range: Optional[dict] = None           # {"start_date", "end_date"} (gaps)
    missing_serials: list = field(default_factory=list)
    duplicate_trips: list = field(default_factory=list)


@dataclass
class SerialMismatch:
    trip_id: int
    trip_serial_number: str
    serial_vehicle_digits: str
    actual_vehicle_digits: str


@dataclass
class SequenceAnalysis:
    vehicle_id: int
    vehicle_registration: str
    total_trips: int = 0
    expected_sequence_length: int = 0
    actual_sequence_length: int = 0
    gaps: int = 0
    duplicates: int = 0
    latest_serial: str = ""
    issues: list = field(default_factory=list)
    serial_mismatches: list = field(default_factory=list)


def _sorted_by_start(trips: list) -> list:
    return sorted(
        (t for t in trips if to_datetime(t.trip_start_date) is not None),
        key=lambda t: to_datetime(t.trip_start_date),
    )


def detect_duplicate_serials(trips: list, vehicle_id, registration: str) -> list:
    groups = defaultdict(list)
    for trip in trips:
        if trip.trip_serial_number:
            groups[trip.trip_serial_number].append(trip)

    issues = []
    for serial, group in groups.items():
        if len(group) < 2:
            continue
        issues.append(SequenceIssue(
            type="duplicate",
            vehicle_id=vehicle_id,
            vehicle_registration=registration,
            serial_number=serial,
            severity="high" if len(group) >= 3 else "medium",
            description=f"Serial number {serial} is used by {len(group)} trips",
            duplicate_trips=[
                {
                    "id": t.id,
                    "trip_start_date": str(to_date(t.trip_start_date)),
                    "driver_id": t.driver_id,
                }
                for t in group
            ],
        ))
    return issues


def _serial_parts(serial: str):
    """(prefix, number, digit width), or None when the serial has no trailing number."""
    match = _TRAILING_DIGITS.search(serial or "")
    if not match:
        return None
    return serial[:match.start()], int(match.group(1)), len(match.group(1))


def _gap_issue(group: list, prefix: str, vehicle_id, registration: str) -> Optional[SequenceIssue]:
    """Gap issue for trips of one month that share a serial prefix."""
    parts = [_serial_parts(t.trip_serial_number) for t in group]
    numbers = sorted({p[1] for p in parts})
    width = max(p[2] for p in parts)
    if len(numbers) < 2:
        return None

    ranges = [(cur + 1, nxt) for cur, nxt in zip(numbers, numbers[1:]) if nxt - cur > 1]
    if not ranges:
        return None

    count = sum(stop - start for start, stop in ranges)
    missing = itertools.chain.from_iterable(range(start, stop) for start, stop in ranges)
    missing_serials = [f"{prefix}{n:0{width}d}" for n in itertools.islice(missing, MAX_LISTED_MISSING)]
    last_missing = f"{prefix}{ranges[-1][1] - 1:0{width}d}"
    return SequenceIssue(
        type="gap",
        vehicle_id=vehicle_id,
        vehicle_registration=registration,
        serial_number=f"{missing_serials[0]} - {last_missing}",
        severity="high" if count > 5 else "medium" if count > 2 else "low",
        description=f"{count} missing serial numbers detected in sequence",
        date_range={
            "start_date": str(to_date(group[0].trip_start_date)),
            "end_date": str(to_date(group[-1].trip_start_date)),
        },
        missing_serials=missing_serials,
    )


def detect_sequence_gaps(trips: list, vehicle_id, registration: str) -> list:
    """
    One gap issue per calendar month and serial prefix. Serials of different
    formats are numbered independently, so they are never compared. At most
    MAX_LISTED_MISSING missing serials are listed per issue; the description
    carries the full count.
    """
    dated = _sorted_by_start([t for t in trips if _serial_parts(t.trip_serial_number)])
    if len(dated) < 2:
        return []

    groups = defaultdict(list)
    for trip in dated:
        prefix = _serial_parts(trip.trip_serial_number)[0]
        groups[(month_key(trip.trip_start_date), prefix)].append(trip)

    issues = []
    for month, prefix in sorted(groups):
        issue = _gap_issue(groups[(month, prefix)], prefix, vehicle_id, registration)
        if issue:
            issues.append(issue)
    return issues


def calculate_expected_sequence_length(trips: list) -> int:
    """Rough completeness indicator: span in days × average trips per day."""
    dated = _sorted_by_start(trips)
    if len(dated) < 2:
        return len(dated)
    span = to_datetime(dated[-1].trip_start_date) - to_datetime(dated[0].trip_start_date)
    days = math.ceil(span.total_seconds() / 86400)
    trips_per_day = len(dated) / max(days, 1)
    return math.ceil(days * trips_per_day)


# ── Serial / vehicle mismatch ───────────────────────────────────────────────

def extract_serial_vehicle_digits(serial: Optional[str]) -> Optional[str]:
    """Vehicle digits from a TYY-####-XXXX serial; None for any other shape."""
    parts = (serial or "").split("-")
    if len(parts) != 3:
        return None
    return parts[1]


def extract_vehicle_digits(registration: Optional[str]) -> str:
    digits = re.sub(r"[^0-9]", "", registration or "")
    return digits[-4:].rjust(4, "0")


def validate_trip_serial(serial: str, registration: str) -> bool:
    return extract_serial_vehicle_digits(serial) == extract_vehicle_digits(registration)


def find_serial_mismatches(vehicle, trips: list) -> list:
    expected = extract_vehicle_digits(vehicle.registration_number)
    mismatches = []
    for trip in trips:
        found = extract_serial_vehicle_digits(trip.trip_serial_number)
        if found is not None and found != expected:
            mismatches.append(SerialMismatch(
                trip_id=trip.id,
                trip_serial_number=trip.trip_serial_number,
                serial_vehicle_digits=found,
                actual_vehicle_digits=expected,
            ))
    return mismatches


# ── Analysis ────────────────────────────────────────────────────────────────

def analyze_vehicle_sequence(vehicle, trips: list) -> SequenceAnalysis:
    """Full sequence analysis for one vehicle's non-deleted trips."""
    registration = vehicle.registration_number or ""
    ordered = _sorted_by_start(trips)
    serials = [t.trip_serial_number for t in ordered if t.trip_serial_number]

    duplicates = detect_duplicate_serials(ordered, vehicle.id, registration)
    gaps = detect_sequence_gaps(ordered, vehicle.id, registration)

    return SequenceAnalysis(
        vehicle_id=vehicle.id,
        vehicle_registration=registration,
        total_trips=len(trips),
        expected_sequence_length=calculate_expected_sequence_length(ordered),
        actual_sequence_length=len(set(serials)),
        gaps=len(gaps),
        duplicates=len(duplicates),
        latest_serial=serials[-1] if serials else "",
        issues=duplicates + gaps,
        serial_mismatches=find_serial_mismatches(vehicle, ordered),
    )


def suggest_missing_serials(analysis: SequenceAnalysis, limit: int = 5) -> list:
    """First few missing serials, offered at trip entry before issuing a new one."""
    missing = [s for issue in analysis.issues if issue.type == "gap" for s in issue.missing_serials]
    return missing[:limit]


def _load_vehicle_trips(store: RecordStore, vehicle_id) -> list:
    return store.list(
        Trip,
        filters={"vehicle_id": vehicle_id, "deleted_at": None},
        order_by="trip_start_date",
    )


def analyze_vehicle_by_id(store: RecordStore, vehicle_id) -> SequenceAnalysis:
    vehicle = store.get(Vehicle, vehicle_id)
    if vehicle is None or vehicle.deleted_at is not None:
        raise RecordNotFoundError(Vehicle, vehicle_id)
    return analyze_vehicle_sequence(vehicle, _load_vehicle_trips(store, vehicle_id))


def get_system_wide_sequence_issues(store: RecordStore) -> dict:
    """Run the sequence analysis over every active vehicle."""
    vehicles = [
        v for v in store.list(Vehicle, filters={"deleted_at": None}, order_by="id")
        if v.status != "archived"
    ]
    analyses = []
    by_severity = {s: 0 for s in SEVERITIES}

    for vehicle in vehicles:
        try:
            analysis = analyze_vehicle_sequence(vehicle, _load_vehicle_trips(store, vehicle.id))
        except Exception as e:
            logger.error(f"[SEQ] Analysis failed for vehicle {vehicle.id}: {e}", exc_info=True)
            continue
        analyses.append(analysis)
        for issue in analysis.issues:
            by_severity[issue.severity] += 1

    report = {
        "total_vehicles_checked": len(vehicles),
        "vehicles_with_issues": sum(1 for a in analyses if a.issues),
        "total_issues": sum(len(a.issues) for a in analyses),
        "issues_by_severity": by_severity,
        "vehicle_analyses": analyses,
    }
    logger.info(
        f"[SEQ] Checked {report['total_vehicles_checked']} vehicles — "
        f"{report['total_issues']} issues on {report['vehicles_with_issues']} vehicles"
    )
    return report
