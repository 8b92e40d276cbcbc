# fleet_integrity/models/vehicle.py
"""
Fleet vehicles table.
The last 4 digits of registration_number are embedded in every trip serial.
Document cost columns feed the driver documentation-expense metric.
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, JSON
from fleet_integrity.database import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    registration_number = Column(String(50), unique=True, nullable=False, index=True)
    current_odometer = Column(Float, default=0)
    status = Column(String(30), default="active", nullable=False)   # active | maintenance | archived

    # Document costs (INR)
    insurance_premium_amount = Column(Float)
    fitness_cost = Column(Float)
    permit_cost = Column(Float)
    puc_cost = Column(Float)
    tax_amount = Column(Float)
    other_documents = Column(JSON)            # [{"name": ..., "cost": ...}]

    deleted_at = Column(DateTime)

    def __repr__(self):
        return f"<Vehicle {self.registration_number} status={self.status}>"
