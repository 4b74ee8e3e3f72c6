from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Double, Enum, ForeignKey, Index, Numeric, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, String, Time


class Base(DeclarativeBase):
    pass


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EntityKind(StrEnum):
    FACILITY = "facility"
    PROVIDER = "provider"


class RecordKind(StrEnum):
    APPOINTMENT = "appointment"
    STAY = "stay"


class UserRole(StrEnum):
    PATIENT = "patient"
    STAFF = "staff"
    ADMIN = "admin"


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(_str_enum(UserRole), nullable=False, default=UserRole.PATIENT)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Hospital(Base):
    __tablename__ = "hospitals"
    __table_args__ = (CheckConstraint("rating_count >= 0", name="chk_hospitals_rating_count"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    average_rating: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    doctors: Mapped[list["Doctor"]] = relationship(back_populates="hospital")


class Doctor(Base):
    __tablename__ = "doctors"
    __table_args__ = (
        CheckConstraint("consultation_fee >= 0", name="chk_doctors_fee"),
        CheckConstraint(
            "available_from_hour >= 0 AND available_to_hour < 24 AND available_from_hour < available_to_hour",
            name="chk_doctors_window",
        ),
        CheckConstraint("slot_minutes > 0", name="chk_doctors_slot_minutes"),
        CheckConstraint("rating_count >= 0", name="chk_doctors_rating_count"),
        Index("idx_doctors_hospital", "hospital_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    hospital_id: Mapped[int] = mapped_column(ForeignKey("hospitals.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    consultation_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    available_from_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    available_to_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=17)
    slot_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    telemedicine_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    average_rating: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    hospital: Mapped["Hospital"] = relationship(back_populates="doctors")
    appointments: Mapped[list["Appointment"]] = relationship(back_populates="doctor")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="chk_appt_duration"),
        CheckConstraint("consultation_fee >= 0", name="chk_appt_fee"),
        # Set only while the appointment occupies its slot, NULL afterwards.
        UniqueConstraint("occupancy_key", name="uq_appt_occupancy_key"),
        UniqueConstraint("idempotency_key", name="uq_appt_idempotency_key"),
        Index("idx_appt_doctor_date", "doctor_id", "appointment_date"),
        Index("idx_appt_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id"), nullable=False)
    hospital_id: Mapped[int] = mapped_column(ForeignKey("hospitals.id"), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    appointment_type: Mapped[str] = mapped_column(String(50), nullable=False, default="consultation")
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _str_enum(BookingStatus),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    consultation_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_telemedicine: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    occupancy_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    doctor: Mapped["Doctor"] = relationship(back_populates="appointments")


class AccommodationOption(Base):
    __tablename__ = "accommodation_options"
    __table_args__ = (
        CheckConstraint("price_per_night >= 0", name="chk_accom_price"),
        Index("idx_accom_hospital", "hospital_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    hospital_id: Mapped[int] = mapped_column(ForeignKey("hospitals.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_per_night: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    max_guests: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    stays: Mapped[list["Stay"]] = relationship(back_populates="accommodation")


class Stay(Base):
    __tablename__ = "accommodation_bookings"
    __table_args__ = (
        CheckConstraint("check_in_date < check_out_date", name="chk_stay_dates"),
        CheckConstraint("number_of_guests >= 1", name="chk_stay_guests"),
        CheckConstraint("nights >= 1", name="chk_stay_nights"),
        CheckConstraint(
            "user_id IS NOT NULL OR (guest_name IS NOT NULL AND guest_email IS NOT NULL)",
            name="chk_stay_requester",
        ),
        Index("idx_stay_accommodation", "accommodation_id"),
        Index("idx_stay_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    accommodation_id: Mapped[int] = mapped_column(ForeignKey("accommodation_options.id"), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    guest_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guest_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    number_of_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    nightly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    nights: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    emergency_contact: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[BookingStatus] = mapped_column(
        _str_enum(BookingStatus),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    accommodation: Mapped["AccommodationOption"] = relationship(back_populates="stays")


class RatingObservation(Base):
    """Append-only log of accepted scores; the running aggregate lives on the rated row."""

    __tablename__ = "rating_observations"
    __table_args__ = (Index("idx_rating_entity", "entity_kind", "entity_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    entity_kind: Mapped[EntityKind] = mapped_column(_str_enum(EntityKind), nullable=False)
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    reviewer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    review_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    treatment_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    visit_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class StatusTransition(Base):
    __tablename__ = "status_transitions"
    __table_args__ = (Index("idx_transition_record", "record_kind", "record_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    record_kind: Mapped[RecordKind] = mapped_column(_str_enum(RecordKind), nullable=False)
    record_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status_from: Mapped[Optional[BookingStatus]] = mapped_column(_str_enum(BookingStatus), nullable=True)
    status_to: Mapped[BookingStatus] = mapped_column(_str_enum(BookingStatus), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
