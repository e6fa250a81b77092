"""
Odometer Resolver

Derives a vehicle's latest known odometer from the two places it is
recorded: the highest fuel-log odometer and the highest end odometer of a
completed trip. 0 means "no usable data" and the caller skips the vehicle.
"""

import logging

from models import FuelRecord, Trip
from sqlalchemy import desc
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def latest_fuel_odometer(db: Session, vehicle_id: str) -> int:
    """Odometer of the fuel record with the highest reading, 0 if none."""
    record = (
        db.query(FuelRecord)
        .filter(FuelRecord.vehicle_id == vehicle_id)
        .order_by(desc(FuelRecord.odometer))
        .limit(1)
        .first()
    )
    return int(record.odometer or 0) if record else 0


def latest_trip_odometer(db: Session, vehicle_id: str) -> int:
    """End odometer of the completed trip with the highest reading, 0 if none."""
    trip = (
        db.query(Trip)
        .filter(
            Trip.vehicle_id == vehicle_id,
            Trip.is_active.is_(False),
            Trip.end_odometer.isnot(None),
        )
        .order_by(desc(Trip.end_odometer))
        .limit(1)
        .first()
    )
    return int(trip.end_odometer or 0) if trip else 0


class OdometerResolver:
    """
    Resolves and caches odometer readings for the duration of one run.

    Only non-zero results are cached; the cache must be cleared at the end of
    the run because fuel logs and trips change between runs.
    """

    def __init__(self, db: Session):
        self.db = db
        self._cache = {}

    def resolve(self, vehicle_id: str) -> int:
        """Return max(latest fuel odometer, latest completed trip end odometer)."""
        if vehicle_id in self._cache:
            return self._cache[vehicle_id]

        fuel_km = latest_fuel_odometer(self.db, vehicle_id)
        trip_km = latest_trip_odometer(self.db, vehicle_id)
        odometer = max(fuel_km, trip_km)

        if odometer > 0:
            self._cache[vehicle_id] = odometer
            logger.debug(f"Latest odometer for vehicle {vehicle_id}: {odometer} km (fuel {fuel_km}, trip {trip_km})")
        else:
            logger.info(f"No odometer reading found for vehicle {vehicle_id}")

        return odometer

    def clear(self):
        self._cache.clear()

    def __len__(self):
        return len(self._cache)
