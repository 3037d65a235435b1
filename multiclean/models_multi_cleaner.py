"""
Multi-Cleaner Job Models
One job per appointment that needs more than one cleaner, with its rooms,
per-cleaner completion history, offers and join requests.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Job statuses: open → partially_filled → filled → completed, or cancelled before completion
JOB_OPEN = "open"
JOB_PARTIALLY_FILLED = "partially_filled"
JOB_FILLED = "filled"
JOB_COMPLETED = "completed"
JOB_CANCELLED = "cancelled"
JOB_TERMINAL_STATUSES = (JOB_COMPLETED, JOB_CANCELLED)
JOB_UNFILLED_STATUSES = (JOB_OPEN, JOB_PARTIALLY_FILLED)

# Completion statuses; dropped_out and no_show no longer hold a slot
COMPLETION_ASSIGNED = "assigned"
COMPLETION_STARTED = "started"
COMPLETION_COMPLETED = "completed"
COMPLETION_DROPPED_OUT = "dropped_out"
COMPLETION_NO_SHOW = "no_show"
INACTIVE_COMPLETION_STATUSES = (COMPLETION_DROPPED_OUT, COMPLETION_NO_SHOW)

ROOM_PENDING = "pending"
ROOM_IN_PROGRESS = "in_progress"
ROOM_COMPLETED = "completed"

OFFER_TYPES = ("primary_invite", "market_open", "urgent_fill")
OFFER_PENDING = "pending"
OFFER_ACCEPTED = "accepted"
OFFER_DECLINED = "declined"
OFFER_EXPIRED = "expired"
OFFER_WITHDRAWN = "withdrawn"

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_DECLINED = "declined"
REQUEST_CANCELLED = "cancelled"
REQUEST_AUTO_APPROVED = "auto_approved"

# Homeowner decision on an edge-sized job with one of two cleaners
DECISION_PENDING = "pending"
DECISION_PROCEED = "proceed"
DECISION_CANCEL = "cancel"
DECISION_AUTO_PROCEEDED = "auto_proceeded"
DECISIONS_TO_PROCEED = (DECISION_PROCEED, DECISION_AUTO_PROCEEDED)


class MultiCleanerJob(Base):
    __tablename__ = "multi_cleaner_jobs"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)

    total_cleaners_required = Column(Integer, nullable=False)
    # Cached projection of active completion rows, recomputed on every mutation
    cleaners_confirmed = Column(Integer, default=0, nullable=False)
    status = Column(String(30), default=JOB_OPEN, nullable=False, index=True)

    is_auto_generated = Column(Boolean, default=False, nullable=False)
    primary_cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    total_estimated_minutes = Column(Integer, nullable=True)
    opened_to_market_at = Column(DateTime, nullable=True)

    # Escalation markers
    urgent_notification_sent_at = Column(DateTime, nullable=True)
    final_warning_at = Column(DateTime, nullable=True)

    # Edge case decision
    edge_case_decision_required = Column(Boolean, default=False, nullable=False)
    edge_case_decision_sent_at = Column(DateTime, nullable=True)
    edge_case_decision_expires_at = Column(DateTime, nullable=True)
    homeowner_decision = Column(String(30), nullable=True)  # pending, proceed, cancel, auto_proceeded
    homeowner_decision_at = Column(DateTime, nullable=True)

    # Solo completion offer to the last remaining cleaner
    solo_offer_sent_at = Column(DateTime, nullable=True)
    solo_offer_expires_at = Column(DateTime, nullable=True)
    solo_offer_declined = Column(Boolean, default=False, nullable=False)
    solo_offer_expired = Column(Boolean, default=False, nullable=False)

    # Extra work offers to the remaining cleaners after a dropout
    extra_work_offers_sent_at = Column(DateTime, nullable=True)
    extra_work_offers_expire_at = Column(DateTime, nullable=True)
    extra_work_offers_expired = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    appointment = relationship("Appointment")
    room_assignments = relationship(
        "RoomAssignment", back_populates="job", order_by="RoomAssignment.id"
    )
    completions = relationship(
        "CleanerJobCompletion", back_populates="job", order_by="CleanerJobCompletion.id"
    )

    def is_filled(self) -> bool:
        return self.cleaners_confirmed >= self.total_cleaners_required

    def remaining_slots(self) -> int:
        return max(0, self.total_cleaners_required - self.cleaners_confirmed)


class RoomAssignment(Base):
    """One physical room unit of a job; count fixed at creation"""

    __tablename__ = "room_assignments"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("multi_cleaner_jobs.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    room_type = Column(String(30), nullable=False)  # bedroom, bathroom, kitchen, living_room, dining_room
    room_number = Column(Integer, nullable=False)
    room_label = Column(String(100), nullable=False)
    estimated_minutes = Column(Integer, nullable=False)
    cleaner_slot_index = Column(Integer, nullable=True)  # Split group from creation
    cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String(20), default=ROOM_PENDING, nullable=False)
    earnings_share = Column(Integer, nullable=True)  # cents
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    job = relationship("MultiCleanerJob", back_populates="room_assignments")
    cleaner = relationship("User")

    def display_label(self) -> str:
        return self.room_label or f"{self.room_type.replace('_', ' ').title()} {self.room_number}"


class CleanerJobCompletion(Base):
    """Append-only history of who has held a slot on a job"""

    __tablename__ = "cleaner_job_completions"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("multi_cleaner_jobs.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False)
    cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), default=COMPLETION_ASSIGNED, nullable=False)
    dropout_reason = Column(Text, nullable=True)

    solo_accepted_at = Column(DateTime, nullable=True)
    solo_declined = Column(Boolean, default=False, nullable=False)
    solo_declined_at = Column(DateTime, nullable=True)
    extra_work_accepted = Column(Boolean, default=False, nullable=False)
    extra_work_accepted_at = Column(DateTime, nullable=True)
    extra_work_declined = Column(Boolean, default=False, nullable=False)
    extra_work_declined_at = Column(DateTime, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    auto_complete_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    job = relationship("MultiCleanerJob", back_populates="completions")
    cleaner = relationship("User")


class CleanerJobOffer(Base):
    __tablename__ = "cleaner_job_offers"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("multi_cleaner_jobs.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False)
    cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    offer_type = Column(String(30), default="market_open", nullable=False)
    status = Column(String(20), default=OFFER_PENDING, nullable=False, index=True)
    earnings_offered = Column(Integer, nullable=True)  # cents
    rooms_offered = Column(JSON, nullable=True)
    declined_reason = Column(Text, nullable=True)
    offered_at = Column(DateTime, server_default=func.now())
    expires_at = Column(DateTime, nullable=False, index=True)
    responded_at = Column(DateTime, nullable=True)

    job = relationship("MultiCleanerJob")


class CleanerJoinRequest(Base):
    """Approval gate for a non-preferred cleaner joining a job"""

    __tablename__ = "cleaner_join_requests"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("multi_cleaner_jobs.id"), nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False)
    home_id = Column(Integer, ForeignKey("homes.id"), nullable=True)
    cleaner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    homeowner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), default=REQUEST_PENDING, nullable=False, index=True)
    room_assignment_ids = Column(JSON, default=list, nullable=True)  # Tentative rooms
    declined_reason = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    job = relationship("MultiCleanerJob")
    cleaner = relationship("User", foreign_keys=[cleaner_id])
