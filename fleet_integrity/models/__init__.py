# Fleet Integrity Engine — Database Models
# Import all models here for SQLAlchemy discovery

from fleet_integrity.models.vehicle import Vehicle                   # noqa
from fleet_integrity.models.driver import Driver                     # noqa
from fleet_integrity.models.trip import Trip                         # noqa
from fleet_integrity.models.maintenance_task import MaintenanceTask  # noqa
from fleet_integrity.models.alert import Alert                       # noqa
