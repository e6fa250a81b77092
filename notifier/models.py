import uuid as uuid_module
from datetime import datetime
from urllib.parse import quote

from sqlalchemy import (
    Column, Integer, String, Float, Boolean,
    Date, DateTime, ForeignKey, Text, create_engine, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.pool import StaticPool
from sqlalchemy import TypeDecorator


Base = declarative_base()


def new_id() -> str:
    """Generate a document-style string identifier."""
    return uuid_module.uuid4().hex


def encode_endpoint(endpoint: str) -> str:
    """URL-encode a push endpoint so it can serve as a subscription key."""
    return quote(endpoint, safe='')


# Custom JSON type that works with both PostgreSQL (JSONB) and SQLite (JSON)
class JSONType(TypeDecorator):
    """Platform-independent JSON type.

    Uses PostgreSQL's JSONB type when available, otherwise uses JSON.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB)
        else:
            return dialect.type_descriptor(JSON)


class Vehicle(Base):
    """A vehicle owned by a user. Read-only to the reminder engine."""

    __tablename__ = 'vehicles'

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(128), index=True)
    make = Column(String(64), nullable=False)
    model = Column(String(64), nullable=False)
    year = Column(Integer)
    plate = Column(String(32))
    image_url = Column(Text)
    image_hint = Column(String(128))
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    fuel_records = relationship('FuelRecord', back_populates='vehicle', cascade='all, delete-orphan')
    trips = relationship('Trip', back_populates='vehicle', cascade='all, delete-orphan')
    reminders = relationship('ServiceReminder', back_populates='vehicle', cascade='all, delete-orphan')

    @property
    def display_name(self):
        return f"{self.make} {self.model}"

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'make': self.make,
            'model': self.model,
            'year': self.year,
            'plate': self.plate,
            'image_url': self.image_url,
            'image_hint': self.image_hint,
        }


class FuelRecord(Base):
    """A fuel log entry. Its odometer is one of the two mileage sources."""

    __tablename__ = 'fuel_records'

    id = Column(String(64), primary_key=True, default=new_id)
    vehicle_id = Column(String(64), ForeignKey('vehicles.id'), nullable=False, index=True)
    date = Column(DateTime(timezone=True), default=datetime.utcnow)
    odometer = Column(Integer, nullable=False, index=True)
    liters = Column(Float)
    total_cost = Column(Float)
    fuel_type = Column(String(32))

    vehicle = relationship('Vehicle', back_populates='fuel_records')

    def to_dict(self):
        return {
            'id': self.id,
            'vehicle_id': self.vehicle_id,
            'date': self.date.isoformat() if self.date else None,
            'odometer': self.odometer,
            'liters': self.liters,
            'total_cost': self.total_cost,
            'fuel_type': self.fuel_type,
        }


class Trip(Base):
    """A trip. Only completed trips contribute their end odometer."""

    __tablename__ = 'trips'

    id = Column(String(64), primary_key=True, default=new_id)
    vehicle_id = Column(String(64), ForeignKey('vehicles.id'), nullable=False, index=True)
    start_odometer = Column(Integer)
    end_odometer = Column(Integer, index=True)
    is_active = Column(Boolean, default=False, nullable=False)
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))

    vehicle = relationship('Vehicle', back_populates='trips')

    @property
    def is_completed(self):
        return not self.is_active and self.end_odometer is not None

    def to_dict(self):
        return {
            'id': self.id,
            'vehicle_id': self.vehicle_id,
            'start_odometer': self.start_odometer,
            'end_odometer': self.end_odometer,
            'is_active': self.is_active,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
        }


class ServiceReminder(Base):
    """A maintenance reminder, due by odometer and/or calendar date."""

    __tablename__ = 'service_reminders'

    id = Column(String(64), primary_key=True, default=new_id)
    vehicle_id = Column(String(64), ForeignKey('vehicles.id'), nullable=False, index=True)
    service_type = Column(String(128), nullable=False)
    notes = Column(Text)
    due_odometer = Column(Integer)
    due_date = Column(Date)
    is_completed = Column(Boolean, default=False, nullable=False, index=True)
    completed_date = Column(DateTime(timezone=True))

    # ISO-8601 string; NULL means the reminder was never notified
    last_notification_sent = Column(String(64))

    vehicle = relationship('Vehicle', back_populates='reminders')

    def to_dict(self):
        return {
            'id': self.id,
            'vehicle_id': self.vehicle_id,
            'service_type': self.service_type,
            'notes': self.notes,
            'due_odometer': self.due_odometer,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'is_completed': self.is_completed,
            'completed_date': self.completed_date.isoformat() if self.completed_date else None,
            'last_notification_sent': self.last_notification_sent,
        }


class PushSubscription(Base):
    """A registered Web Push endpoint, keyed by its URL-encoded endpoint."""

    __tablename__ = 'push_subscriptions'

    id = Column(String(2048), primary_key=True)
    endpoint = Column(Text, nullable=False, unique=True)
    keys = Column(JSONType(), nullable=False)  # {"p256dh": ..., "auth": ...}
    user_id = Column(String(128), index=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    def subscription_info(self):
        """Shape expected by the Web Push transport."""
        return {
            'endpoint': self.endpoint,
            'keys': {
                'p256dh': (self.keys or {}).get('p256dh'),
                'auth': (self.keys or {}).get('auth'),
            },
        }

    def to_dict(self):
        return {
            'id': self.id,
            'endpoint': self.endpoint,
            'user_id': self.user_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


def get_engine(database_url):
    """Create database engine."""
    if database_url.startswith('sqlite') and ':memory:' in database_url:
        # One shared connection so every session sees the same in-memory database
        return create_engine(
            database_url,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)
