# fleet_integrity/models/driver.py
from sqlalchemy import Column, Integer, String, ForeignKey
from fleet_integrity.database import Base


class Driver(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    primary_vehicle_id = Column(Integer, ForeignKey("vehicles.id"))   # back-reference, not ownership
    status = Column(String(30), default="active")

    def __repr__(self):
        return f"<Driver {self.id} name={self.name}>"
