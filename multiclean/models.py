from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    type = Column(String(50), nullable=False, default="homeowner")  # homeowner, cleaner, owner, admin
    expo_push_token = Column(String(255), nullable=True)  # Expo token for mobile push
    account_frozen = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    homes = relationship("Home", back_populates="owner", foreign_keys="Home.user_id")

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or "Cleaner"


class Home(Base):
    __tablename__ = "homes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    address = Column(String(500), nullable=True)
    city = Column(String(255), nullable=True)
    state = Column(String(100), nullable=True)
    zipcode = Column(String(20), nullable=True)
    num_beds = Column(Float, nullable=True)
    num_baths = Column(Float, nullable=True)  # 2.5 = two full baths and a half bath
    square_footage = Column(Integer, nullable=True)
    # Primary preferred cleaner; more live in home_preferred_cleaners
    preferred_cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    owner = relationship("User", back_populates="homes", foreign_keys=[user_id])
    preferred_cleaners = relationship("HomePreferredCleaner", back_populates="home")


class HomePreferredCleaner(Base):
    __tablename__ = "home_preferred_cleaners"

    id = Column(Integer, primary_key=True, index=True)
    home_id = Column(Integer, ForeignKey("homes.id"), nullable=False, index=True)
    cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())

    home = relationship("Home", back_populates="preferred_cleaners")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # Homeowner
    home_id = Column(Integer, ForeignKey("homes.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    completed = Column(Boolean, default=False, nullable=False)

    # Cleaner assignment
    employees_assigned = Column(JSON, default=list, nullable=True)  # Cleaner user IDs
    has_been_assigned = Column(Boolean, default=False, nullable=False)
    cleaner_slots_remaining = Column(Integer, nullable=True)

    # Multi-cleaner linkage
    is_multi_cleaner_job = Column(Boolean, default=False, nullable=False)
    multi_cleaner_job_id = Column(Integer, nullable=True)
    solo_cleaner_consent = Column(Boolean, default=False, nullable=False)
    homeowner_solo_warning_acknowledged = Column(Boolean, default=False, nullable=False)
    reschedule_requested_date = Column(Date, nullable=True)

    # Payment
    payment_status = Column(String(50), default="pending", nullable=True)  # pending, captured, cancelled

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    home = relationship("Home")
    user = relationship("User", foreign_keys=[user_id])


class Notification(Base):
    """In-app notification shown in the notifications tab"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(100), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    action_required = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class JobPhoto(Base):
    """Before/after photo marker for a room; the files live in object storage"""

    __tablename__ = "job_photos"

    id = Column(Integer, primary_key=True, index=True)
    room_assignment_id = Column(Integer, ForeignKey("room_assignments.id"), nullable=False, index=True)
    cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    photo_type = Column(String(20), nullable=False)  # before, after
    photo_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
