# fleet_integrity/schemas/alert.py
"""
Alert payloads.
Detector output is an AlertDraft whose metadata is a tagged union keyed on
alert_type, one variant per detector. Persisted alerts store the dumped
metadata as JSON and get resolution fields merged in by the resolution action.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

AlertType = Literal[
    "fuel_anomaly",
    "route_deviation",
    "low_mileage_streak",
    "frequent_maintenance",
    "high_expense_spike",
]
Severity = Literal["low", "medium", "high"]
AlertStatus = Literal["pending", "accepted", "denied", "ignored"]
AlertAction = Literal["accept", "deny", "ignore"]
IgnoreDuration = Literal["week", "permanent"]


class AffectedEntity(BaseModel):
    type: Literal["vehicle", "driver"]
    id: int


class _BaseAlertMetadata(BaseModel):
    expected_value: float
    actual_value: float
    deviation: float                  # % relative to the breached threshold
    recommendations: list[str]


class FuelAnomalyMetadata(_BaseAlertMetadata):
    alert_type: Literal["fuel_anomaly"] = "fuel_anomaly"
    trip_id: Optional[int]
    trip_serial_number: Optional[str]
    distance: float
    fuel_quantity: float
    direction: Literal["high", "low"]


class RouteDeviationMetadata(_BaseAlertMetadata):
    alert_type: Literal["route_deviation"] = "route_deviation"
    trip_id: Optional[int]
    trip_serial_number: Optional[str]


class LowMileageStreakMetadata(_BaseAlertMetadata):
    alert_type: Literal["low_mileage_streak"] = "low_mileage_streak"
    trip_id: Optional[int]
    streak_length: int
    streak_trip_ids: list[Optional[int]]
    streak_kmpl: list[float]


class FrequentMaintenanceMetadata(_BaseAlertMetadata):
    alert_type: Literal["frequent_maintenance"] = "frequent_maintenance"
    task_id: Optional[int]
    window_days: int
    task_ids: list[Optional[int]]


class HighExpenseSpikeMetadata(_BaseAlertMetadata):
    alert_type: Literal["high_expense_spike"] = "high_expense_spike"
    task_id: Optional[int]
    cost_source: Literal["service_groups", "actual_cost", "estimated_cost"]


AlertMetadata = Annotated[
    Union[
        FuelAnomalyMetadata,
        RouteDeviationMetadata,
        LowMileageStreakMetadata,
        FrequentMaintenanceMetadata,
        HighExpenseSpikeMetadata,
    ],
    Field(discriminator="alert_type"),
]


class AlertDraft(BaseModel):
    """An alert as emitted by a detector, before it is persisted."""
    alert_type: AlertType
    severity: Severity
    title: str
    description: str
    affected_entity: AffectedEntity
    source_record_id: Optional[int] = None
    metadata: AlertMetadata


class AlertOut(BaseModel):
    id: int
    alert_type: str
    severity: str
    status: str
    title: str
    description: Optional[str]
    affected_entity: AffectedEntity
    source_record_id: Optional[int]
    metadata: Optional[dict] = Field(default=None, validation_alias="alert_metadata")
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class AlertActionIn(BaseModel):
    action: AlertAction
    reason: Optional[str] = None
    duration: Optional[IgnoreDuration] = None


class ScanResultOut(BaseModel):
    alerts_created: int
