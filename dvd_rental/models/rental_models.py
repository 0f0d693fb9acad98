import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class ReservationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class RentalStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    INACTIVE = "INACTIVE"


class RecordKind(str, enum.Enum):
    INVOICE = "INVOICE"
    RECEIPT = "RECEIPT"


TERMINAL_RESERVATION_STATES = {
    ReservationStatus.ACCEPTED,
    ReservationStatus.REJECTED,
    ReservationStatus.CANCELLED,
}


class Item(Base):
    __tablename__ = "Items"
    __table_args__ = (
        CheckConstraint(
            "AvailableCopies >= 0 AND AvailableCopies <= TotalCopies",
            name="ck_items_available_copies",
        ),
    )

    ItemID = Column(Integer, primary_key=True)
    Title = Column(String(255), nullable=False)
    Description = Column(String(2000))
    RentalPricePerDay = Column(Numeric(8, 2), nullable=False, default=0)
    IsRentable = Column(Boolean, nullable=False, default=False)
    TotalCopies = Column(Integer, nullable=False, default=0)
    AvailableCopies = Column(Integer, nullable=False, default=0)
    Version = Column(Integer, nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Reservations = relationship("Reservation", back_populates="Item")
    Rentals = relationship("Rental", back_populates="Item")

    __mapper_args__ = {"version_id_col": Version}


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    Email = Column(String(255), nullable=False)
    DisplayName = Column(String(255))
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())

    Reservations = relationship("Reservation", back_populates="User")
    Rentals = relationship("Rental", back_populates="User")


class Reservation(Base):
    __tablename__ = "Reservations"

    ReservationID = Column(Integer, primary_key=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    RentalStart = Column(DateTime, nullable=False)
    RentalEnd = Column(DateTime, nullable=False)
    Count = Column(Integer, nullable=False)
    Status = Column(
        Enum(ReservationStatus, native_enum=False, length=20),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    CreatedAt = Column(DateTime, nullable=False)
    UpdatedAt = Column(DateTime)
    Version = Column(Integer, nullable=False)

    Item = relationship("Item", back_populates="Reservations")
    User = relationship("User", back_populates="Reservations")

    __mapper_args__ = {"version_id_col": Version}


class Rental(Base):
    __tablename__ = "Rentals"

    RentalID = Column(Integer, primary_key=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    Count = Column(Integer, nullable=False)
    RentalStart = Column(DateTime, nullable=False)
    RentalEnd = Column(DateTime, nullable=False)
    Status = Column(
        Enum(RentalStatus, native_enum=False, length=20),
        nullable=False,
        default=RentalStatus.ACTIVE,
    )
    ReturnDate = Column(DateTime)
    CreatedAt = Column(DateTime, nullable=False)
    UpdatedAt = Column(DateTime)
    Version = Column(Integer, nullable=False)

    # Financial record, replaced as a whole (provisional invoice -> final receipt).
    InvoiceID = Column(String(20), unique=True)
    ItemTitle = Column(String(255))
    RentalPeriodDays = Column(Integer)
    PricePerDay = Column(Numeric(10, 2))
    LateFee = Column(Numeric(10, 2))
    TotalAmount = Column(Numeric(10, 2))
    GeneratedAt = Column(DateTime)
    BillType = Column(Enum(RecordKind, native_enum=False, length=10))

    Item = relationship("Item", back_populates="Rentals")
    User = relationship("User", back_populates="Rentals")

    __mapper_args__ = {"version_id_col": Version}


class ItemReminder(Base):
    __tablename__ = "ItemReminders"
    __table_args__ = (UniqueConstraint("UserID", "ItemID", name="uq_item_reminders_user_item"),)

    ReminderID = Column(Integer, primary_key=True)
    UserID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    ItemID = Column(Integer, ForeignKey("Items.ItemID"), nullable=False)
    CreatedAt = Column(DateTime, server_default=func.now())

    Item = relationship("Item")
    User = relationship("User")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())


class NotificationQueue(Base):
    __tablename__ = "NotificationQueue"

    NotificationID = Column(Integer, primary_key=True)
    UserID = Column(Integer)
    ItemID = Column(Integer)
    RentalID = Column(Integer)
    NotificationType = Column(String(50), nullable=False)
    Payload = Column(String(2000))
    CreatedAt = Column(DateTime, server_default=func.now())
    SentAt = Column(DateTime)
