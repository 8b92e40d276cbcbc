# fleet_integrity/models/trip.py
"""
Trips table.
calculated_kmpl is derived (tank-to-tank) and is rewritten by the mileage
recalculation cascade whenever an earlier trip of the same vehicle changes.
Short trips are excluded from mileage and route-deviation analysis.
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, ForeignKey
from fleet_integrity.database import Base


class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), index=True)
    trip_serial_number = Column(String(50), index=True)     # vehicle-scoped
    trip_start_date = Column(DateTime, nullable=False, index=True)
    trip_end_date = Column(DateTime, nullable=False, index=True)
    start_km = Column(Float, nullable=False)
    end_km = Column(Float, nullable=False)                  # end_km >= start_km

    refueling_done = Column(Boolean, default=False, nullable=False)
    fuel_quantity = Column(Float)                           # litres
    calculated_kmpl = Column(Float)
    route_deviation = Column(Float)                         # percent, precomputed upstream
    gross_weight = Column(Float)

    total_expense = Column(Float)
    total_fuel_cost = Column(Float)
    total_road_expenses = Column(Float)

    short_trip = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime)
    updated_at = Column(DateTime)
    deleted_at = Column(DateTime)

    def __repr__(self):
        return f"<Trip {self.id} serial={self.trip_serial_number} vehicle={self.vehicle_id}>"
