from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, String

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class Member(Base):
    __tablename__ = "members"
    __table_args__ = (UniqueConstraint("email", name="uq_members_email"),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    member_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)


class Equipment(Base):
    __tablename__ = "equipment"
    __table_args__ = (Index("idx_equipment_device_type", "device_type"),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    device_type: Mapped[str] = mapped_column(String(100), nullable=False)


class TimeSlot(Base):
    """A bookable interval of the day. Times are HHMM integers (``930`` is 09:30)."""

    __tablename__ = "time_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_time_slots_time"),
        UniqueConstraint("start_time", "end_time", name="uq_time_slots"),
        Index("idx_time_slots_start", "start_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    start_time: Mapped[int] = mapped_column(Integer, nullable=False)
    end_time: Mapped[int] = mapped_column(Integer, nullable=False)
    part_of_day: Mapped[str] = mapped_column(String(50), nullable=False)


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        Index("idx_res_member_date", "member_id", "date"),
        Index("idx_res_equipment_date", "equipment_id", "date"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False)
    equipment_id: Mapped[int] = mapped_column(ForeignKey("equipment.id"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slots: Mapped[list["ReservationSlot"]] = relationship(
        back_populates="reservation",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ReservationSlot.time_slot_id",
    )

    @property
    def slot_ids(self) -> list[int]:
        return [claim.time_slot_id for claim in self.slots]


class ReservationSlot(Base):
    """One slot claim of a reservation.

    ``equipment_id`` and ``date`` are copied from the owning reservation so the
    database can enforce that a piece of equipment is claimed at most once per
    slot and day.
    """

    __tablename__ = "reservation_slots"
    __table_args__ = (
        UniqueConstraint("equipment_id", "date", "time_slot_id", name="uq_reservation_slots_claim"),
        Index("idx_res_slots_reservation", "reservation_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    reservation_id: Mapped[int] = mapped_column(
        ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False
    )
    equipment_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time_slot_id: Mapped[int] = mapped_column(ForeignKey("time_slots.id"), nullable=False)

    reservation: Mapped["Reservation"] = relationship(back_populates="slots")
