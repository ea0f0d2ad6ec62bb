from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


OWNER_SALON = "salon"
OWNER_STAFF = "staff"
OWNER_TYPES = {OWNER_SALON, OWNER_STAFF}

EXCEPTION_KINDS = {"holiday", "leave", "irregular_hours", "other"}

RESERVATION_STATUSES = {"pending", "confirmed", "completed", "cancelled"}


class Salon(Base):
    __tablename__ = "salons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), index=True)
    is_archive: Mapped[bool] = mapped_column(Boolean, default=False, index=True)


class Staff(Base):
    __tablename__ = "staff"
    __table_args__ = (UniqueConstraint("salon_id", "name", name="uq_staff_salon_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    salon_id: Mapped[int] = mapped_column(ForeignKey("salons.id"), index=True)
    name: Mapped[str] = mapped_column(String(120), index=True)
    is_archive: Mapped[bool] = mapped_column(Boolean, default=False, index=True)


class Menu(Base):
    __tablename__ = "menus"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    salon_id: Mapped[int] = mapped_column(ForeignKey("salons.id"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    duration_min: Mapped[int] = mapped_column(Integer, default=60)
    is_archive: Mapped[bool] = mapped_column(Boolean, default=False, index=True)


class WeeklySchedule(Base):
    __tablename__ = "weekly_schedules"
    __table_args__ = (
        UniqueConstraint(
            "owner_type", "owner_id", "day_of_week", name="uq_weekly_schedule_owner_day"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_type: Mapped[str] = mapped_column(String(16), index=True)
    owner_id: Mapped[int] = mapped_column(Integer, index=True)
    # 0 = Sunday .. 6 = Saturday
    day_of_week: Mapped[int] = mapped_column(Integer)
    is_open: Mapped[bool] = mapped_column(Boolean, default=False)
    start_hour: Mapped[str | None] = mapped_column(String(5), nullable=True)
    end_hour: Mapped[str | None] = mapped_column(String(5), nullable=True)
    is_archive: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, onupdate=utc_now_naive
    )


class ScheduleException(Base):
    __tablename__ = "schedule_exceptions"
    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", "date", name="uq_schedule_exception_owner_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_type: Mapped[str] = mapped_column(String(16), index=True)
    owner_id: Mapped[int] = mapped_column(Integer, index=True)
    date: Mapped[str] = mapped_column(String(10), index=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    kind: Mapped[str] = mapped_column(String(32), default="holiday")
    is_archive: Mapped[bool] = mapped_column(Boolean, default=False, index=True)


class ReservationConfig(Base):
    __tablename__ = "reservation_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    salon_id: Mapped[int] = mapped_column(ForeignKey("salons.id"), unique=True, index=True)
    available_sheets: Mapped[int] = mapped_column(Integer, default=3)
    reservation_limit_days: Mapped[int] = mapped_column(Integer, default=60)
    available_cancel_days: Mapped[int] = mapped_column(Integer, default=1)
    today_first_later_minutes: Mapped[int] = mapped_column(Integer, default=30)
    reservation_interval_minutes: Mapped[int] = mapped_column(Integer, default=30)


class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    master_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    salon_id: Mapped[int] = mapped_column(ForeignKey("salons.id"), index=True)
    staff_id: Mapped[int] = mapped_column(ForeignKey("staff.id"), index=True)
    customer_id: Mapped[str] = mapped_column(String(120))
    menu_id: Mapped[int | None] = mapped_column(ForeignKey("menus.id"), nullable=True)
    date: Mapped[str] = mapped_column(String(10), index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(16), default="confirmed", index=True)
    is_archive: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, onupdate=utc_now_naive
    )

    detail = relationship("ReservationDetail", back_populates="reservation", uselist=False)


class ReservationDetail(Base):
    __tablename__ = "reservation_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reservation_id: Mapped[int] = mapped_column(
        ForeignKey("reservations.id"), unique=True, index=True
    )
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    extra_charge: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    is_archive: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    reservation = relationship("Reservation", back_populates="detail")
