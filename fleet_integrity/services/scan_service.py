# fleet_integrity/services/scan_service.py
"""
Scan orchestrator — batch and incremental runs of the anomaly rule set.

Full scan: the newest SCAN_TRIP_LIMIT trips and SCAN_TASK_LIMIT maintenance
tasks are loaded once and every detector runs against each record, using the
loaded window as context. This is a bounded-window approximation: streak and
frequency rules only see records inside the window.

Incremental: after a single trip/task write, only that record's detectors run,
with the record's own vehicle history as context.

Every detector call and every alert write is isolated: a failure is logged and
the scan continues. Writes run in worker threads on their own sessions and the
scan waits at most ALERT_WRITE_TIMEOUT_SECONDS for each. A write the scan has
given up on may still finish in its thread; it is a single commit, so it either
lands whole or not at all, and the next scan's duplicate suppression covers it.
"""

import asyncio
import time

from fleet_integrity.config import settings
from fleet_integrity.database import SessionLocal
from fleet_integrity.models.maintenance_task import MaintenanceTask
from fleet_integrity.models.trip import Trip
from fleet_integrity.services.alert_service import create_alert
from fleet_integrity.services.anomaly_rules import (
    detect_frequent_maintenance,
    detect_high_expense_spike,
    detect_low_mileage_streak,
    detect_mileage_anomaly,
    detect_route_deviation,
)
from fleet_integrity.services.record_store import RecordStore
from fleet_integrity.utils.logger import get_logger

logger = get_logger(__name__)


def _run_detectors(kind: str, record, detectors) -> list:
    drafts = []
    for name, detect in detectors:
        try:
            draft = detect()
        except Exception as e:
            logger.error(f"[SCAN] {name} failed on {kind} {record.id}: {e}", exc_info=True)
            continue
        if draft is not None:
            drafts.append(draft)
    return drafts


def trip_drafts(trip, context_trips: list) -> list:
    return _run_detectors("trip", trip, (
        ("fuel_anomaly", lambda: detect_mileage_anomaly(trip)),
        ("route_deviation", lambda: detect_route_deviation(trip)),
        ("low_mileage_streak", lambda: detect_low_mileage_streak(trip, context_trips)),
    ))


def task_drafts(task, context_tasks: list) -> list:
    return _run_detectors("task", task, (
        ("frequent_maintenance", lambda: detect_frequent_maintenance(task, context_tasks)),
        ("high_expense_spike", lambda: detect_high_expense_spike(task)),
    ))


def _write(store: RecordStore, draft) -> bool:
    # runs in a worker thread, so it gets its own session
    worker = store.sibling()
    try:
        return create_alert(worker, draft) is not None
    finally:
        worker.close()


async def _persist(store: RecordStore, draft) -> bool:
    return await asyncio.wait_for(
        asyncio.to_thread(_write, store, draft),
        timeout=settings.ALERT_WRITE_TIMEOUT_SECONDS,
    )


async def _persist_all(store: RecordStore, drafts: list) -> int:
    """Write every draft; returns how many alerts were actually created."""
    if not drafts:
        return 0
    results = await asyncio.gather(*(_persist(store, d) for d in drafts), return_exceptions=True)

    created = 0
    for draft, result in zip(drafts, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, asyncio.TimeoutError):
            logger.error(f"[SCAN] Timed out writing {draft.alert_type} for record {draft.source_record_id}")
        elif isinstance(result, Exception):
            logger.error(
                f"[SCAN] Failed to write {draft.alert_type} for record {draft.source_record_id}: {result}",
                exc_info=result,
            )
        elif result:
            created += 1
    return created


async def run_alert_scan(store: RecordStore) -> int:
    """Full batch pass over recent trips and maintenance tasks. Returns alerts created."""
    started = time.time()
    trips = store.list(
        Trip,
        filters={"deleted_at": None},
        order_by="trip_end_date",
        descending=True,
        limit=settings.SCAN_TRIP_LIMIT,
    )
    tasks = store.list(
        MaintenanceTask,
        order_by="start_date",
        descending=True,
        limit=settings.SCAN_TASK_LIMIT,
    )
    logger.info(f"[SCAN] Scanning {len(trips)} trips and {len(tasks)} maintenance tasks")

    drafts = []
    for trip in trips:
        drafts.extend(trip_drafts(trip, trips))
    for task in tasks:
        drafts.extend(task_drafts(task, tasks))

    created = await _persist_all(store, drafts)
    duration = round((time.time() - started) * 1000, 2)
    logger.info(f"[SCAN] Complete — {len(drafts)} candidate(s), {created} alert(s) created ({duration}ms)")
    return created


async def scan_trip(store: RecordStore, trip, context_trips: list = None) -> int:
    """Run the trip rules for one trip after it is written."""
    if context_trips is None:
        context_trips = store.list(
            Trip,
            filters={"vehicle_id": trip.vehicle_id, "deleted_at": None},
            order_by="trip_end_date",
            descending=True,
        )
    return await _persist_all(store, trip_drafts(trip, context_trips))


async def scan_maintenance_task(store: RecordStore, task, context_tasks: list = None) -> int:
    """Run the maintenance rules for one task after it is written."""
    if context_tasks is None:
        context_tasks = store.list(
            MaintenanceTask,
            filters={"vehicle_id": task.vehicle_id},
            order_by="start_date",
            descending=True,
        )
    return await _persist_all(store, task_drafts(task, context_tasks))


async def start_periodic_scan(interval_minutes: int):
    """
    Background loop started at app startup when SCAN_INTERVAL_MINUTES > 0.
    Uses a fresh DB session per pass and never exits on a failed pass.
    """
    logger.info(f"⏱  Periodic alert scan every {interval_minutes} min")
    while True:
        db = SessionLocal()
        try:
            await run_alert_scan(RecordStore(db))
        except Exception as e:
            logger.error(f"[SCAN] Periodic scan failed: {e}", exc_info=True)
        finally:
            db.close()
        await asyncio.sleep(interval_minutes * 60)
