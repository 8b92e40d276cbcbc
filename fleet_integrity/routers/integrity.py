# fleet_integrity/routers/integrity.py
"""Trip data integrity: fleet-wide quality summary and per-vehicle trip validation."""

from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException
from fleet_integrity.database import get_store
from fleet_integrity.services.record_store import RecordNotFoundError, RecordStore, RecordStoreError
from fleet_integrity.services.trip_integrity_service import get_data_quality_summary, validate_vehicle_trips

router = APIRouter()


@router.get("/integrity/summary", summary="Trip data quality across the fleet")
def get_integrity_summary(store: RecordStore = Depends(get_store)):
    try:
        return get_data_quality_summary(store)
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/integrity/vehicles/{vehicle_id}", summary="Validate every trip of one vehicle")
def get_vehicle_integrity(vehicle_id: int, store: RecordStore = Depends(get_store)):
    try:
        results = validate_vehicle_trips(store, vehicle_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {
        "vehicle_id": vehicle_id,
        "total_trips": len(results),
        "invalid_trips": sum(1 for r in results if not r.is_valid),
        "trips": [asdict(r) for r in results],
    }
