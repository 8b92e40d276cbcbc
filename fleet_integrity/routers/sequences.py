# fleet_integrity/routers/sequences.py
"""Trip serial sequence integrity — fleet-wide report and per-vehicle analysis."""

from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException
from fleet_integrity.database import get_store
from fleet_integrity.services.record_store import RecordNotFoundError, RecordStore, RecordStoreError
from fleet_integrity.services.sequence_service import (
    analyze_vehicle_by_id,
    get_system_wide_sequence_issues,
    suggest_missing_serials,
)

router = APIRouter()


@router.get("/sequences/issues", summary="Sequence gaps and duplicates across the fleet")
def get_sequence_issues(store: RecordStore = Depends(get_store)):
    try:
        report = get_system_wide_sequence_issues(store)
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    report["vehicle_analyses"] = [asdict(a) for a in report["vehicle_analyses"]]
    return report


@router.get("/sequences/vehicles/{vehicle_id}", summary="Sequence analysis for one vehicle")
def get_vehicle_sequence(vehicle_id: int, store: RecordStore = Depends(get_store)):
    """Includes the first few missing serials, to offer before issuing a new one."""
    try:
        analysis = analyze_vehicle_by_id(store, vehicle_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    result = asdict(analysis)
    result["suggested_serials"] = suggest_missing_serials(analysis)
    return result
