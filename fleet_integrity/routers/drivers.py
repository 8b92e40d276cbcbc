# fleet_integrity/routers/drivers.py
"""Driver performance metrics and insights over an inclusive date range."""

from dataclasses import asdict
from datetime import date, timedelta
from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
from fleet_integrity.database import get_store
from fleet_integrity.services.performance_service import load_driver_insights
from fleet_integrity.services.record_store import RecordStore, RecordStoreError
from fleet_integrity.utils.dates import DateRange

router = APIRouter()

DEFAULT_RANGE_DAYS = 30


def _date_range(start: Optional[date], end: Optional[date]) -> DateRange:
    end = end or date.today()
    start = start or end - timedelta(days=DEFAULT_RANGE_DAYS - 1)
    if start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    return DateRange(start=start, end=end)


def _load(store: RecordStore, start, end) -> dict:
    try:
        return load_driver_insights(store, _date_range(start, end))
    except RecordStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/drivers/performance", summary="Per-driver performance metrics")
def get_driver_performance(
    start: Optional[date] = None,
    end: Optional[date] = None,
    store: RecordStore = Depends(get_store),
):
    """Defaults to the last 30 days."""
    return [asdict(m) for m in _load(store, start, end)["metrics"]]


@router.get("/drivers/insights", summary="Cost, mileage, breakdown and maintenance insights")
def get_driver_insights(
    start: Optional[date] = None,
    end: Optional[date] = None,
    driver_id: Optional[int] = None,
    store: RecordStore = Depends(get_store),
):
    insights = _load(store, start, end)["insights"]
    if driver_id is not None:
        insights = [i for i in insights if i.driver_id == driver_id]
    return [asdict(i) for i in insights]
