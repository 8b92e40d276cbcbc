# fleet_integrity/routers/alerts.py
"""
Alert endpoints.
GET  /alerts              — list alerts, filterable by type and status.
POST /alerts/scan         — run a full anomaly scan now.
POST /alerts/{id}/action  — accept / deny / ignore an alert.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
from fleet_integrity.database import get_store
from fleet_integrity.schemas.alert import AlertActionIn, AlertOut, ScanResultOut
from fleet_integrity.services.alert_service import list_alerts, process_alert_action
from fleet_integrity.services.record_store import RecordNotFoundError, RecordStore, RecordStoreError
from fleet_integrity.services.scan_service import run_alert_scan
from fleet_integrity.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("/alerts", response_model=list[AlertOut], summary="All alerts — filterable by type and status")
def get_all_alerts(
    alert_type: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    store: RecordStore = Depends(get_store),
):
    """Newest first."""
    try:
        return list_alerts(store, alert_type=alert_type, status=status, limit=limit)
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/alerts/scan", response_model=ScanResultOut, summary="Run a full anomaly scan")
async def trigger_scan(store: RecordStore = Depends(get_store)):
    try:
        created = await run_alert_scan(store)
    except RecordStoreError as e:
        logger.error(f"[SCAN] Could not load records: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    return {"alerts_created": created}


@router.post("/alerts/{alert_id}/action", response_model=AlertOut, summary="Resolve an alert")
async def resolve_alert(alert_id: int, body: AlertActionIn, store: RecordStore = Depends(get_store)):
    try:
        return await process_alert_action(
            store, alert_id, body.action, reason=body.reason, duration=body.duration
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
