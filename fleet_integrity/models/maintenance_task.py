# fleet_integrity/models/maintenance_task.py
"""
Maintenance tasks table.
Cost resolution order: sum(service_groups[].cost) → actual_cost → estimated_cost.
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, JSON, ForeignKey
from fleet_integrity.database import Base


class MaintenanceTask(Base):
    __tablename__ = "maintenance_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    task_type = Column(String(50))        # general_scheduled | accidental | emergency_breakdown | ...
    category = Column(String(50))
    start_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime)
    service_groups = Column(JSON)         # [{"vendor": ..., "cost": ...}]
    actual_cost = Column(Float)
    estimated_cost = Column(Float)
    downtime_days = Column(Float, default=0)

    def __repr__(self):
        return f"<MaintenanceTask {self.id} type={self.task_type} vehicle={self.vehicle_id}>"
