from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Float, Index, Integer, String, UniqueConstraint, create_engine
)
from sqlalchemy.orm import declarative_base

from calculations.records import EventRecord, SessionRecord, UserProfile
from utils.timezone import ensure_utc

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return ensure_utc(value).isoformat() if value else None


class ChargingEvent(Base):
    """Raw connect/disconnect event. Written once at ingestion, never updated."""

    __tablename__ = 'charging_events'
    __table_args__ = (
        Index('ix_charging_events_subject_time', 'group_id', 'user_id', 'event_timestamp', 'original_row_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    group_id = Column(String(64), index=True)  # Only set in the multi-tenant dataset
    original_row_id = Column(Integer, nullable=False, default=0)
    event_type = Column(String(32), nullable=False, index=True)  # 'power_connected' / 'power_disconnected'
    percentage = Column(Integer, nullable=False)
    event_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)  # Stored in UTC
    utc_offset = Column(String(8))  # Offset the source row was recorded in, e.g. '+05:30'
    source_file = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'group_id': self.group_id,
            'original_row_id': self.original_row_id,
            'event_type': self.event_type,
            'percentage': self.percentage,
            'event_timestamp': _iso(self.event_timestamp),
            'utc_offset': self.utc_offset,
            'source_file': self.source_file,
        }

    def to_record(self) -> EventRecord:
        return EventRecord(
            user_id=self.user_id,
            group_id=self.group_id,
            event_type=self.event_type,
            percentage=self.percentage,
            event_timestamp=ensure_utc(self.event_timestamp),
            original_row_id=self.original_row_id or 0,
            source_file=self.source_file,
        )


class ChargingSession(Base):
    """Session reconstructed from events. Regenerated wholesale, never edited."""

    __tablename__ = 'charging_sessions'
    __table_args__ = (
        Index('ix_charging_sessions_subject_connect', 'group_id', 'user_id', 'connect_time'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    group_id = Column(String(64), index=True)
    connect_time = Column(DateTime(timezone=True), nullable=False, index=True)
    disconnect_time = Column(DateTime(timezone=True))
    duration_minutes = Column(Float)
    start_percentage = Column(Integer, nullable=False)
    end_percentage = Column(Integer)
    charge_gained = Column(Integer)  # May be negative
    is_complete = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    @classmethod
    def from_record(cls, record: SessionRecord) -> "ChargingSession":
        return cls(
            user_id=record.user_id,
            group_id=record.group_id,
            connect_time=ensure_utc(record.connect_time),
            disconnect_time=ensure_utc(record.disconnect_time),
            duration_minutes=record.duration_minutes,
            start_percentage=record.start_percentage,
            end_percentage=record.end_percentage,
            charge_gained=record.charge_gained,
            is_complete=record.is_complete,
        )

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            user_id=self.user_id,
            group_id=self.group_id,
            connect_time=ensure_utc(self.connect_time),
            disconnect_time=ensure_utc(self.disconnect_time),
            duration_minutes=self.duration_minutes,
            start_percentage=self.start_percentage,
            end_percentage=self.end_percentage,
            charge_gained=self.charge_gained,
            is_complete=bool(self.is_complete),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'group_id': self.group_id,
            'connect_time': _iso(self.connect_time),
            'disconnect_time': _iso(self.disconnect_time),
            'duration_minutes': self.duration_minutes,
            'start_percentage': self.start_percentage,
            'end_percentage': self.end_percentage,
            'charge_gained': self.charge_gained,
            'is_complete': self.is_complete,
        }


class UserStats(Base):
    """Materialized per-subject profile, recomputed after every rebuild."""

    __tablename__ = 'user_stats'
    __table_args__ = (
        UniqueConstraint('group_id', 'user_id', name='uq_user_stats_subject'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    group_id = Column(String(64), index=True)
    total_events = Column(Integer, nullable=False, default=0)
    connect_count = Column(Integer, nullable=False, default=0)
    disconnect_count = Column(Integer, nullable=False, default=0)
    event_mismatch = Column(Integer, nullable=False, default=0, index=True)
    total_sessions = Column(Integer, nullable=False, default=0)
    complete_sessions = Column(Integer, nullable=False, default=0)
    avg_duration_minutes = Column(Float)
    avg_charge_gained = Column(Float)
    avg_connect_percentage = Column(Float)
    avg_disconnect_percentage = Column(Float)
    first_event = Column(DateTime(timezone=True))
    last_event = Column(DateTime(timezone=True))
    is_anomalous = Column(Boolean, nullable=False, default=False, index=True)
    source_file = Column(String(255))
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserStats":
        return cls(
            user_id=profile.user_id,
            group_id=profile.group_id,
            total_events=profile.total_events,
            connect_count=profile.connect_count,
            disconnect_count=profile.disconnect_count,
            event_mismatch=profile.event_mismatch,
            total_sessions=profile.total_sessions,
            complete_sessions=profile.complete_sessions,
            avg_duration_minutes=profile.avg_duration_minutes,
            avg_charge_gained=profile.avg_charge_gained,
            avg_connect_percentage=profile.avg_connect_percentage,
            avg_disconnect_percentage=profile.avg_disconnect_percentage,
            first_event=ensure_utc(profile.first_event),
            last_event=ensure_utc(profile.last_event),
            is_anomalous=profile.is_anomalous,
            source_file=profile.source_file,
        )

    def to_record(self) -> UserProfile:
        return UserProfile(
            user_id=self.user_id,
            group_id=self.group_id,
            total_events=self.total_events,
            connect_count=self.connect_count,
            disconnect_count=self.disconnect_count,
            event_mismatch=self.event_mismatch,
            total_sessions=self.total_sessions,
            complete_sessions=self.complete_sessions,
            avg_duration_minutes=self.avg_duration_minutes,
            avg_charge_gained=self.avg_charge_gained,
            avg_connect_percentage=self.avg_connect_percentage,
            avg_disconnect_percentage=self.avg_disconnect_percentage,
            first_event=ensure_utc(self.first_event),
            last_event=ensure_utc(self.last_event),
            is_anomalous=bool(self.is_anomalous),
            source_file=self.source_file,
        )

    def to_dict(self):
        return self.to_record().to_dict()


def get_engine(database_url):
    """Create database engine."""
    return create_engine(database_url, pool_pre_ping=True)
