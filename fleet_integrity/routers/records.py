# fleet_integrity/routers/records.py
"""
Record-changed hooks, called by the trip / maintenance entry system after a write.
A trip change re-runs the trip rules and the mileage recalculation cascade;
a maintenance change re-runs the maintenance rules.
"""

from fastapi import APIRouter, Depends, HTTPException
from fleet_integrity.database import get_store
from fleet_integrity.models.maintenance_task import MaintenanceTask
from fleet_integrity.models.trip import Trip
from fleet_integrity.services.mileage_service import recalculate_mileage_cascade
from fleet_integrity.services.record_store import RecordStore, RecordStoreError
from fleet_integrity.services.scan_service import scan_maintenance_task, scan_trip
from fleet_integrity.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/trips/{trip_id}/changed", summary="Trip written — rescan and recalculate mileage")
async def trip_changed(trip_id: int, store: RecordStore = Depends(get_store)):
    try:
        trip = store.get(Trip, trip_id)
        if trip is None or trip.deleted_at is not None:
            raise HTTPException(status_code=404, detail=f"Trip {trip_id} not found")
        updated = await recalculate_mileage_cascade(store, trip)
        created = await scan_trip(store, trip)
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    logger.info(f"[HOOK] Trip {trip_id}: {updated} mileage update(s), {created} alert(s)")
    return {"trip_id": trip_id, "trips_recalculated": updated, "alerts_created": created}


@router.post("/maintenance/{task_id}/changed", summary="Maintenance task written — rescan")
async def maintenance_changed(task_id: int, store: RecordStore = Depends(get_store)):
    try:
        task = store.get(MaintenanceTask, task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Maintenance task {task_id} not found")
        created = await scan_maintenance_task(store, task)
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    logger.info(f"[HOOK] Maintenance task {task_id}: {created} alert(s)")
    return {"task_id": task_id, "alerts_created": created}
