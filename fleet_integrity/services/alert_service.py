# fleet_integrity/services/alert_service.py
"""
Alert lifecycle: creation, duplicate suppression and resolution.

create_alert() is the single write path used by the scan orchestrator and the
incremental record hooks. It is blocking; the orchestrator runs it in a worker
thread. process_alert_action() applies a user's decision
(accept / deny / ignore); it is a deliberate single-record action, so any
failure propagates to the caller instead of being logged and skipped.

Status machine: pending → accepted | denied | ignored. A second action on a
resolved alert simply overwrites the first (last write wins).
"""

from datetime import datetime, timedelta
from typing import Optional

from fleet_integrity.config import settings
from fleet_integrity.models.alert import Alert
from fleet_integrity.models.driver import Driver
from fleet_integrity.models.vehicle import Vehicle
from fleet_integrity.schemas.alert import AlertDraft
from fleet_integrity.services.record_store import RecordNotFoundError, RecordStore
from fleet_integrity.utils.dates import to_datetime
from fleet_integrity.utils.logger import get_logger

logger = get_logger(__name__)

ACTION_STATUS = {"accept": "accepted", "deny": "denied", "ignore": "ignored"}
IGNORE_DURATIONS = {"week", "permanent"}
_ENTITY_MODELS = {"vehicle": Vehicle, "driver": Driver}


def _ignore_expired(alert: Alert, now: datetime) -> bool:
    meta = alert.alert_metadata or {}
    if alert.status != "ignored" or meta.get("ignore_duration") != "week":
        return False
    resolved_at = to_datetime(meta.get("resolved_at"))
    return resolved_at is not None and now - resolved_at > timedelta(days=settings.IGNORE_WEEK_DAYS)


def is_suppressed(store: RecordStore, draft: AlertDraft, now: Optional[datetime] = None) -> bool:
    """
    True if the same rule already raised an alert for the same source record.
    An alert ignored for a week stops suppressing once the week is over.
    """
    if draft.source_record_id is None:
        return False
    now = now or datetime.utcnow()
    existing = store.list(
        Alert,
        filters={"alert_type": draft.alert_type, "source_record_id": draft.source_record_id},
    )
    return any(not _ignore_expired(alert, now) for alert in existing)


def create_alert(store: RecordStore, draft: AlertDraft) -> Optional[Alert]:
    """Persist a detector's draft as a pending alert. Returns None if skipped."""
    entity = draft.affected_entity
    if store.get(_ENTITY_MODELS[entity.type], entity.id) is None:
        logger.warning(
            f"[ALERT] {draft.alert_type} skipped — {entity.type} {entity.id} does not exist"
        )
        return None
    if is_suppressed(store, draft):
        logger.debug(f"[ALERT] {draft.alert_type} for record {draft.source_record_id} already raised")
        return None

    now = datetime.utcnow()
    alert = store.insert(Alert(
        alert_type=draft.alert_type,
        severity=draft.severity,
        status="pending",
        title=draft.title,
        description=draft.description,
        affected_entity_type=entity.type,
        affected_entity_id=entity.id,
        source_record_id=draft.source_record_id,
        alert_metadata=draft.metadata.model_dump(mode="json"),
        created_at=now,
        updated_at=now,
    ))
    logger.warning(f"[ALERT][{draft.alert_type.upper()}] {draft.description}")
    return alert


async def process_alert_action(
    store: RecordStore,
    alert_id: int,
    action: str,
    reason: Optional[str] = None,
    duration: Optional[str] = None,
) -> Alert:
    """Resolve an alert. Raises ValueError, RecordNotFoundError or RecordStoreError."""
    if action not in ACTION_STATUS:
        raise ValueError(f"Unknown alert action '{action}'")
    if duration is not None and duration not in IGNORE_DURATIONS:
        raise ValueError(f"Unknown ignore duration '{duration}'")

    alert = store.get(Alert, alert_id)
    if alert is None:
        raise RecordNotFoundError(Alert, alert_id)

    now = datetime.utcnow()
    metadata = dict(alert.alert_metadata or {})
    metadata["resolution_reason"] = reason
    metadata["resolution_comment"] = reason
    metadata["resolved_at"] = now.isoformat()
    if action == "ignore" and duration:
        metadata["ignore_duration"] = duration
    else:
        metadata.pop("ignore_duration", None)

    status = ACTION_STATUS[action]
    if alert.status != "pending":
        logger.info(f"[ALERT] Alert {alert_id} re-resolved: {alert.status} → {status}")

    updated = store.update(Alert, alert_id, {
        "status": status,
        "alert_metadata": metadata,
        "updated_at": now,
    })
    logger.info(f"[ALERT] Alert {alert_id} {status}" + (f" ({duration})" if metadata.get("ignore_duration") else ""))
    return updated


def list_alerts(
    store: RecordStore,
    alert_type: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> list:
    filters = {}
    if alert_type:
        filters["alert_type"] = alert_type
    if status:
        filters["status"] = status
    return store.list(Alert, filters=filters, order_by="created_at", descending=True, limit=limit)
