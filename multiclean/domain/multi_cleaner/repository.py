"""Multi-cleaner repository - Database operations for jobs, rooms, completions, offers and join requests"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models import Appointment, Home, HomePreferredCleaner, JobPhoto, User
from ...models_multi_cleaner import (
    COMPLETION_COMPLETED,
    INACTIVE_COMPLETION_STATUSES,
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FILLED,
    JOB_OPEN,
    JOB_PARTIALLY_FILLED,
    OFFER_ACCEPTED,
    OFFER_PENDING,
    REQUEST_PENDING,
    ROOM_COMPLETED,
    ROOM_PENDING,
    CleanerJobCompletion,
    CleanerJobOffer,
    CleanerJoinRequest,
    MultiCleanerJob,
    RoomAssignment,
)

ROOM_TYPE_ORDER = ("bedroom", "bathroom", "kitchen", "living_room", "dining_room", "other")


def derive_job_status(cleaners_confirmed: int, total_cleaners_required: int) -> str:
    """Fill status is a pure function of the confirmed/required pair"""
    if cleaners_confirmed <= 0:
        return JOB_OPEN
    if cleaners_confirmed >= total_cleaners_required:
        return JOB_FILLED
    return JOB_PARTIALLY_FILLED


def room_sort_key(room: RoomAssignment):
    try:
        type_rank = ROOM_TYPE_ORDER.index(room.room_type)
    except ValueError:
        type_rank = len(ROOM_TYPE_ORDER)
    return (type_rank, room.room_number, room.id)


class MultiCleanerRepository:
    """Repository for multi-cleaner job database operations"""

    # ==================== Jobs ====================

    @staticmethod
    def get_job(db: Session, job_id: int, for_update: bool = False) -> Optional[MultiCleanerJob]:
        query = db.query(MultiCleanerJob).filter(MultiCleanerJob.id == job_id)
        if for_update:
            # Row lock on server databases; SQLite serializes writers already
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_job_by_appointment(db: Session, appointment_id: int) -> Optional[MultiCleanerJob]:
        return db.query(MultiCleanerJob).filter(MultiCleanerJob.appointment_id == appointment_id).first()

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_user(db: Session, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_open_jobs(db: Session, exclude_cleaner_id: Optional[int] = None, limit: int = 20) -> list[MultiCleanerJob]:
        """Open or partially filled jobs, optionally skipping ones a cleaner already touched"""
        query = db.query(MultiCleanerJob).filter(
            MultiCleanerJob.status.in_((JOB_OPEN, JOB_PARTIALLY_FILLED))
        )

        if exclude_cleaner_id is not None:
            offered = db.query(CleanerJobOffer.job_id).filter(CleanerJobOffer.cleaner_id == exclude_cleaner_id)
            held = db.query(CleanerJobCompletion.job_id).filter(
                CleanerJobCompletion.cleaner_id == exclude_cleaner_id
            )
            query = query.filter(~MultiCleanerJob.id.in_(offered), ~MultiCleanerJob.id.in_(held))

        return query.order_by(MultiCleanerJob.created_at.asc(), MultiCleanerJob.id.asc()).limit(limit).all()

    @staticmethod
    def get_jobs_due(
        db: Session, statuses: tuple[str, ...], on_or_before: date, *criteria
    ) -> list[tuple[MultiCleanerJob, Appointment]]:
        """Jobs in ``statuses`` whose unfinished appointment falls on or before a date"""
        return (
            db.query(MultiCleanerJob, Appointment)
            .join(Appointment, Appointment.id == MultiCleanerJob.appointment_id)
            .filter(
                MultiCleanerJob.status.in_(statuses),
                Appointment.date <= on_or_before,
                Appointment.completed.is_(False),
                *criteria,
            )
            .order_by(MultiCleanerJob.id.asc())
            .all()
        )

    @staticmethod
    def get_jobs_past_deadline(db: Session, column: str, now: datetime, *criteria) -> list[MultiCleanerJob]:
        """Live jobs whose ``column`` deadline has passed"""
        deadline = getattr(MultiCleanerJob, column)
        return (
            db.query(MultiCleanerJob)
            .filter(
                deadline.isnot(None),
                deadline < now,
                ~MultiCleanerJob.status.in_((JOB_COMPLETED, JOB_CANCELLED)),
                *criteria,
            )
            .order_by(MultiCleanerJob.id.asc())
            .all()
        )

    @staticmethod
    def update_job_if(db: Session, job_id: int, column: str, expected, **values) -> int:
        """
        Write ``values`` only while ``column`` still holds ``expected``.
        Returns 0 when another request or sweep got there first.
        """
        guard = getattr(MultiCleanerJob, column)
        condition = guard.is_(None) if expected is None else guard == expected
        updates = {getattr(MultiCleanerJob, key): value for key, value in values.items()}
        return (
            db.query(MultiCleanerJob)
            .filter(MultiCleanerJob.id == job_id, condition)
            .update(updates, synchronize_session="fetch")
        )

    @staticmethod
    def stamp_urgent_notification(db: Session, job_id: int, resend_before: datetime, now: datetime) -> int:
        """Claim the next urgent fill round; 0 if one went out within the interval"""
        return (
            db.query(MultiCleanerJob)
            .filter(
                MultiCleanerJob.id == job_id,
                or_(
                    MultiCleanerJob.urgent_notification_sent_at.is_(None),
                    MultiCleanerJob.urgent_notification_sent_at <= resend_before,
                ),
            )
            .update({MultiCleanerJob.urgent_notification_sent_at: now}, synchronize_session="fetch")
        )

    # ==================== Rooms ====================

    @staticmethod
    def create_rooms(db: Session, job: MultiCleanerJob, groups: list[list[dict]]) -> list[RoomAssignment]:
        rooms = []
        for slot_index, group in enumerate(groups):
            for room in group:
                assignment = RoomAssignment(
                    job_id=job.id,
                    appointment_id=job.appointment_id,
                    room_type=room["room_type"],
                    room_number=room["room_number"],
                    room_label=room["room_label"],
                    estimated_minutes=room["estimated_minutes"],
                    cleaner_slot_index=slot_index,
                    status=ROOM_PENDING,
                )
                db.add(assignment)
                rooms.append(assignment)
        db.flush()
        return rooms

    @staticmethod
    def get_rooms(db: Session, job_id: int) -> list[RoomAssignment]:
        rooms = db.query(RoomAssignment).filter(RoomAssignment.job_id == job_id).all()
        return sorted(rooms, key=room_sort_key)

    @staticmethod
    def get_room(db: Session, room_id: int) -> Optional[RoomAssignment]:
        return db.query(RoomAssignment).filter(RoomAssignment.id == room_id).first()

    @staticmethod
    def get_cleaner_rooms(db: Session, job_id: int, cleaner_id: int) -> list[RoomAssignment]:
        rooms = (
            db.query(RoomAssignment)
            .filter(RoomAssignment.job_id == job_id, RoomAssignment.cleaner_id == cleaner_id)
            .all()
        )
        return sorted(rooms, key=room_sort_key)

    @staticmethod
    def get_unassigned_rooms(db: Session, job_id: int) -> list[RoomAssignment]:
        rooms = (
            db.query(RoomAssignment)
            .filter(RoomAssignment.job_id == job_id, RoomAssignment.cleaner_id.is_(None))
            .all()
        )
        return sorted(rooms, key=room_sort_key)

    @staticmethod
    def claim_rooms(db: Session, job_id: int, room_ids: list[int], cleaner_id: int) -> int:
        """
        Compare-and-swap on cleaner_id: only rooms of this job that are still
        unassigned are touched. Returns the number of rooms claimed; a racing
        caller that lost gets 0.
        """
        if not room_ids:
            return 0
        return (
            db.query(RoomAssignment)
            .filter(
                RoomAssignment.job_id == job_id,
                RoomAssignment.id.in_(room_ids),
                RoomAssignment.cleaner_id.is_(None),
            )
            .update({RoomAssignment.cleaner_id: cleaner_id}, synchronize_session="fetch")
        )

    @staticmethod
    def release_rooms(db: Session, job_id: int, cleaner_id: int) -> int:
        """Unassign a cleaner's rooms that are not finished yet"""
        return (
            db.query(RoomAssignment)
            .filter(
                RoomAssignment.job_id == job_id,
                RoomAssignment.cleaner_id == cleaner_id,
                RoomAssignment.status != ROOM_COMPLETED,
            )
            .update(
                {RoomAssignment.cleaner_id: None, RoomAssignment.status: ROOM_PENDING},
                synchronize_session="fetch",
            )
        )

    @staticmethod
    def complete_cleaner_rooms(db: Session, job_id: int, cleaner_id: int) -> int:
        return (
            db.query(RoomAssignment)
            .filter(
                RoomAssignment.job_id == job_id,
                RoomAssignment.cleaner_id == cleaner_id,
                RoomAssignment.status != ROOM_COMPLETED,
            )
            .update(
                {RoomAssignment.status: ROOM_COMPLETED, RoomAssignment.completed_at: datetime.utcnow()},
                synchronize_session="fetch",
            )
        )

    @staticmethod
    def count_rooms(db: Session, job_id: int, status: Optional[str] = None) -> int:
        query = db.query(func.count(RoomAssignment.id)).filter(RoomAssignment.job_id == job_id)
        if status is not None:
            query = query.filter(RoomAssignment.status == status)
        return query.scalar() or 0

    @staticmethod
    def count_photos(db: Session, room_id: int, photo_type: str) -> int:
        return (
            db.query(func.count(JobPhoto.id))
            .filter(JobPhoto.room_assignment_id == room_id, JobPhoto.photo_type == photo_type)
            .scalar()
            or 0
        )

    # ==================== Completions ====================

    @staticmethod
    def get_active_completions(db: Session, job_id: int) -> list[CleanerJobCompletion]:
        return (
            db.query(CleanerJobCompletion)
            .filter(
                CleanerJobCompletion.job_id == job_id,
                ~CleanerJobCompletion.status.in_(INACTIVE_COMPLETION_STATUSES),
            )
            .order_by(CleanerJobCompletion.id.asc())
            .all()
        )

    @staticmethod
    def get_all_completions(db: Session, job_id: int) -> list[CleanerJobCompletion]:
        return (
            db.query(CleanerJobCompletion)
            .filter(CleanerJobCompletion.job_id == job_id)
            .order_by(CleanerJobCompletion.id.asc())
            .all()
        )

    @staticmethod
    def get_active_completion(db: Session, job_id: int, cleaner_id: int) -> Optional[CleanerJobCompletion]:
        return (
            db.query(CleanerJobCompletion)
            .filter(
                CleanerJobCompletion.job_id == job_id,
                CleanerJobCompletion.cleaner_id == cleaner_id,
                ~CleanerJobCompletion.status.in_(INACTIVE_COMPLETION_STATUSES),
            )
            .first()
        )

    @staticmethod
    def count_active_completions(db: Session, job_id: int) -> int:
        return (
            db.query(func.count(CleanerJobCompletion.id))
            .filter(
                CleanerJobCompletion.job_id == job_id,
                ~CleanerJobCompletion.status.in_(INACTIVE_COMPLETION_STATUSES),
            )
            .scalar()
            or 0
        )

    @staticmethod
    def recompute_confirmed(db: Session, job: MultiCleanerJob) -> int:
        """
        Rebuild cleaners_confirmed and the fill status from the completion
        rows. Completed jobs and cancelled jobs keep their terminal status.
        """
        db.flush()
        count = MultiCleanerRepository.count_active_completions(db, job.id)
        job.cleaners_confirmed = min(count, job.total_cleaners_required)
        if job.status not in (JOB_COMPLETED, JOB_CANCELLED):
            job.status = derive_job_status(job.cleaners_confirmed, job.total_cleaners_required)
        return count

    @staticmethod
    def active_cleaner_ids(db: Session, job_id: int) -> list[int]:
        return [c.cleaner_id for c in MultiCleanerRepository.get_active_completions(db, job_id)]

    # ==================== Offers ====================

    @staticmethod
    def get_offer(db: Session, offer_id: int) -> Optional[CleanerJobOffer]:
        return db.query(CleanerJobOffer).filter(CleanerJobOffer.id == offer_id).first()

    @staticmethod
    def get_live_offer(db: Session, job_id: int, cleaner_id: int) -> Optional[CleanerJobOffer]:
        """A pending or accepted offer for this (job, cleaner), if any"""
        return (
            db.query(CleanerJobOffer)
            .filter(
                CleanerJobOffer.job_id == job_id,
                CleanerJobOffer.cleaner_id == cleaner_id,
                CleanerJobOffer.status.in_((OFFER_PENDING, OFFER_ACCEPTED)),
            )
            .first()
        )

    @staticmethod
    def get_pending_offers_for_cleaner(db: Session, cleaner_id: int, now: datetime) -> list[CleanerJobOffer]:
        return (
            db.query(CleanerJobOffer)
            .filter(
                CleanerJobOffer.cleaner_id == cleaner_id,
                CleanerJobOffer.status == OFFER_PENDING,
                CleanerJobOffer.expires_at > now,
            )
            .order_by(CleanerJobOffer.expires_at.asc())
            .all()
        )

    @staticmethod
    def get_expired_pending_offers(db: Session, now: datetime) -> list[CleanerJobOffer]:
        return (
            db.query(CleanerJobOffer)
            .filter(CleanerJobOffer.status == OFFER_PENDING, CleanerJobOffer.expires_at < now)
            .order_by(CleanerJobOffer.id.asc())
            .all()
        )

    @staticmethod
    def get_pending_offers_for_filled_jobs(db: Session) -> list[CleanerJobOffer]:
        return (
            db.query(CleanerJobOffer)
            .join(MultiCleanerJob, MultiCleanerJob.id == CleanerJobOffer.job_id)
            .filter(
                CleanerJobOffer.status == OFFER_PENDING,
                MultiCleanerJob.status.in_((JOB_FILLED, JOB_COMPLETED, JOB_CANCELLED)),
            )
            .order_by(CleanerJobOffer.id.asc())
            .all()
        )

    @staticmethod
    def get_pending_offers_for_job(db: Session, job_id: int) -> list[CleanerJobOffer]:
        return (
            db.query(CleanerJobOffer)
            .filter(CleanerJobOffer.job_id == job_id, CleanerJobOffer.status == OFFER_PENDING)
            .all()
        )

    @staticmethod
    def transition_offer(db: Session, offer_id: int, expected: str, new_status: str, **values) -> int:
        """Move an offer out of ``expected``; returns 0 if someone else already moved it"""
        updates = {CleanerJobOffer.status: new_status}
        for key, value in values.items():
            updates[getattr(CleanerJobOffer, key)] = value
        return (
            db.query(CleanerJobOffer)
            .filter(CleanerJobOffer.id == offer_id, CleanerJobOffer.status == expected)
            .update(updates, synchronize_session="fetch")
        )

    # ==================== Join requests ====================

    @staticmethod
    def get_join_request(db: Session, request_id: int) -> Optional[CleanerJoinRequest]:
        return db.query(CleanerJoinRequest).filter(CleanerJoinRequest.id == request_id).first()

    @staticmethod
    def get_pending_join_request(db: Session, job_id: int, cleaner_id: int) -> Optional[CleanerJoinRequest]:
        return (
            db.query(CleanerJoinRequest)
            .filter(
                CleanerJoinRequest.job_id == job_id,
                CleanerJoinRequest.cleaner_id == cleaner_id,
                CleanerJoinRequest.status == REQUEST_PENDING,
            )
            .first()
        )

    @staticmethod
    def get_pending_join_requests(
        db: Session,
        job_id: Optional[int] = None,
        homeowner_id: Optional[int] = None,
        cleaner_id: Optional[int] = None,
        appointment_id: Optional[int] = None,
    ) -> list[CleanerJoinRequest]:
        query = db.query(CleanerJoinRequest).filter(CleanerJoinRequest.status == REQUEST_PENDING)
        if job_id is not None:
            query = query.filter(CleanerJoinRequest.job_id == job_id)
        if homeowner_id is not None:
            query = query.filter(CleanerJoinRequest.homeowner_id == homeowner_id)
        if cleaner_id is not None:
            query = query.filter(CleanerJoinRequest.cleaner_id == cleaner_id)
        if appointment_id is not None:
            query = query.filter(CleanerJoinRequest.appointment_id == appointment_id)
        return query.order_by(CleanerJoinRequest.created_at.asc(), CleanerJoinRequest.id.asc()).all()

    @staticmethod
    def get_expired_pending_join_requests(db: Session, now: datetime) -> list[CleanerJoinRequest]:
        return (
            db.query(CleanerJoinRequest)
            .filter(CleanerJoinRequest.status == REQUEST_PENDING, CleanerJoinRequest.expires_at < now)
            .order_by(CleanerJoinRequest.id.asc())
            .all()
        )

    @staticmethod
    def transition_join_request(db: Session, request_id: int, expected: str, new_status: str, **values) -> int:
        updates = {CleanerJoinRequest.status: new_status}
        for key, value in values.items():
            updates[getattr(CleanerJoinRequest, key)] = value
        return (
            db.query(CleanerJoinRequest)
            .filter(CleanerJoinRequest.id == request_id, CleanerJoinRequest.status == expected)
            .update(updates, synchronize_session="fetch")
        )

    # ==================== Homes ====================

    @staticmethod
    def get_preferred_cleaner_ids(db: Session, home: Home) -> set[int]:
        ids = {
            row.cleaner_id
            for row in db.query(HomePreferredCleaner).filter(HomePreferredCleaner.home_id == home.id).all()
        }
        if home.preferred_cleaner_id:
            ids.add(home.preferred_cleaner_id)
        return ids

    @staticmethod
    def get_available_cleaners(db: Session, exclude_ids: list[int], limit: int) -> list[User]:
        query = db.query(User).filter(User.type == "cleaner", User.account_frozen.is_(False))
        if exclude_ids:
            query = query.filter(~User.id.in_(exclude_ids))
        return query.order_by(User.id.asc()).limit(limit).all()
