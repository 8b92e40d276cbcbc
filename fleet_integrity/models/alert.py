# fleet_integrity/models/alert.py
"""
Alerts table — stores every alert raised by the anomaly rule set.
status moves pending → accepted | denied | ignored via the resolution action.
source_record_id is the trip or maintenance task that triggered the alert
and is used to suppress duplicates across repeated scans.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from fleet_integrity.database import Base


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_type = Column(String(50), nullable=False, index=True)
    severity = Column(String(10), nullable=False)
    status = Column(String(20), default="pending", nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    affected_entity_type = Column(String(20), nullable=False)    # vehicle | driver
    affected_entity_id = Column(Integer, nullable=False, index=True)
    source_record_id = Column(Integer, index=True)
    alert_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime)

    @property
    def affected_entity(self) -> dict:
        return {"type": self.affected_entity_type, "id": self.affected_entity_id}

    def __repr__(self):
        return f"<Alert {self.id} type={self.alert_type} status={self.status}>"
