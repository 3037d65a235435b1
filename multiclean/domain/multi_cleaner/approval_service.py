"""
Cleaner approval workflow
Preferred cleaners join a multi-cleaner job directly. Anyone else files a
join request the homeowner approves or declines; requests left unanswered
are approved automatically once they expire.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models_multi_cleaner import (
    JOB_TERMINAL_STATUSES,
    REQUEST_APPROVED,
    REQUEST_AUTO_APPROVED,
    REQUEST_CANCELLED,
    REQUEST_DECLINED,
    REQUEST_PENDING,
    CleanerJoinRequest,
    MultiCleanerJob,
)
from ...shared.errors import ConflictError, ForbiddenError, MultiCleanerError, NotFoundError
from .job_lifecycle import MultiCleanerJobService
from .notifications import NotificationContext, NotificationGateway, format_date, notify_safely
from .repository import MultiCleanerRepository
from .schemas import JoinRequestResponse

logger = logging.getLogger(__name__)


class CleanerApprovalService:
    """Gate between an open multi-cleaner job and the cleaners asking to join it"""

    def __init__(self, db: Session, gateway: Optional[NotificationGateway] = None):
        self.db = db
        self.repo = MultiCleanerRepository()
        self.jobs = MultiCleanerJobService(db, gateway)
        self.gateway = self.jobs.gateway

    def is_preferred_cleaner(self, cleaner_id: int, home) -> bool:
        return cleaner_id in self.repo.get_preferred_cleaner_ids(self.db, home)

    def _available_rooms(self, job_id: int, room_ids: Optional[list[int]]) -> Optional[list[int]]:
        """Tentative rooms still unassigned; None lets the slot fill pick rooms itself"""
        if not room_ids:
            return None
        open_ids = {r.id for r in self.repo.get_unassigned_rooms(self.db, job_id)}
        still_open = [room_id for room_id in room_ids if room_id in open_ids]
        return still_open or None

    def _date_for(self, appointment_id: int) -> str:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        return format_date(appointment.date if appointment else None)

    # ==================== Requests ====================

    def request_to_join(self, job_id: int, cleaner_id: int, room_assignment_ids: Optional[list[int]] = None) -> dict:
        job = self.jobs.get_job(job_id)
        if job.status in JOB_TERMINAL_STATUSES:
            raise ConflictError("This job is no longer accepting cleaners")
        if job.is_filled():
            raise ConflictError("All cleaner slots are already filled")
        if self.repo.get_active_completion(self.db, job_id, cleaner_id):
            raise ConflictError("You are already assigned to this job")

        appointment = self.repo.get_appointment(self.db, job.appointment_id)
        if not appointment or not appointment.home:
            raise NotFoundError("Appointment or home not found")

        if self.is_preferred_cleaner(cleaner_id, appointment.home):
            result = self.jobs.fill_slot(job_id, cleaner_id, self._available_rooms(job_id, room_assignment_ids))
            logger.info(f"⭐ Preferred cleaner {cleaner_id} auto-approved for job {job_id}")
            if result["job"].is_filled():
                self.cancel_pending_requests_for_job(job_id)
            return {
                "status": REQUEST_APPROVED,
                "autoApproved": True,
                "isPreferred": True,
                "assignedRoomIds": result["assignedRoomIds"],
                "message": "You have been automatically approved as a preferred cleaner.",
            }

        if self.repo.get_pending_join_request(self.db, job_id, cleaner_id):
            raise ConflictError("You already have a pending request for this job")

        request = CleanerJoinRequest(
            job_id=job_id,
            appointment_id=job.appointment_id,
            home_id=appointment.home_id,
            cleaner_id=cleaner_id,
            homeowner_id=appointment.user_id,
            status=REQUEST_PENDING,
            room_assignment_ids=list(room_assignment_ids or []),
            expires_at=datetime.utcnow() + timedelta(hours=config.JOIN_REQUEST_EXPIRATION_HOURS),
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)
        logger.info(f"📝 Join request {request.id} created by cleaner {cleaner_id} for job {job_id}")

        cleaner = self.repo.get_user(self.db, cleaner_id)
        notify_safely(
            self.gateway,
            appointment.user_id,
            NotificationContext.JOIN_REQUEST_RECEIVED,
            data={
                "joinRequestId": request.id,
                "appointmentId": appointment.id,
                "cleanerId": cleaner_id,
                "expiresAt": request.expires_at.isoformat(),
            },
            action_required=True,
            expires_at=request.expires_at,
            push=True,
            cleaner_name=cleaner.display_name if cleaner else "A cleaner",
            date=format_date(appointment.date),
            hours=config.JOIN_REQUEST_EXPIRATION_HOURS,
        )

        return {
            "status": REQUEST_PENDING,
            "autoApproved": False,
            "isPreferred": False,
            "joinRequestId": request.id,
            "expiresAt": request.expires_at,
            "message": "Your request to join has been sent to the homeowner for approval.",
        }

    def _load_request(self, request_id: int) -> CleanerJoinRequest:
        request = self.repo.get_join_request(self.db, request_id)
        if not request:
            raise NotFoundError("Join request not found")
        return request

    def _ensure_pending(self, request: CleanerJoinRequest) -> None:
        if request.status != REQUEST_PENDING:
            raise ConflictError(f"Request is no longer pending (status: {request.status})")

    def _admit(self, request: CleanerJoinRequest, new_status: str) -> MultiCleanerJob:
        """Move the request out of pending and fill the slot in one transaction"""
        now = datetime.utcnow()
        try:
            moved = self.repo.transition_join_request(
                self.db, request.id, REQUEST_PENDING, new_status, responded_at=now
            )
            if not moved:
                raise ConflictError("Request is no longer pending")
            result = self.jobs.fill_slot(
                request.job_id,
                request.cleaner_id,
                self._available_rooms(request.job_id, request.room_assignment_ids),
                commit=False,
            )
            self.db.commit()
        except MultiCleanerError:
            self.db.rollback()
            raise
        return result["job"]

    def approve_request(self, request_id: int, homeowner_id: int) -> dict:
        request = self._load_request(request_id)
        if request.homeowner_id != homeowner_id:
            raise ForbiddenError("You are not authorized to approve this request")
        self._ensure_pending(request)

        job = self.jobs.get_job(request.job_id)
        if job.is_filled() or job.status in JOB_TERMINAL_STATUSES:
            self.repo.transition_join_request(
                self.db, request.id, REQUEST_PENDING, REQUEST_CANCELLED, responded_at=datetime.utcnow()
            )
            self.db.commit()
            raise ConflictError("This job has already been filled")

        job = self._admit(request, REQUEST_APPROVED)
        logger.info(f"✅ Homeowner {homeowner_id} approved join request {request.id}")

        notify_safely(
            self.gateway,
            request.cleaner_id,
            NotificationContext.JOIN_REQUEST_APPROVED,
            data={"appointmentId": request.appointment_id, "multiCleanerJobId": request.job_id},
            push=True,
            date=self._date_for(request.appointment_id),
        )

        self.db.refresh(job)
        if job.is_filled():
            self.cancel_pending_requests_for_job(job.id)

        return {"success": True, "message": "Cleaner has been approved and assigned to the job."}

    def decline_request(self, request_id: int, homeowner_id: int, reason: Optional[str] = None) -> dict:
        request = self._load_request(request_id)
        if request.homeowner_id != homeowner_id:
            raise ForbiddenError("You are not authorized to decline this request")
        self._ensure_pending(request)

        moved = self.repo.transition_join_request(
            self.db,
            request.id,
            REQUEST_PENDING,
            REQUEST_DECLINED,
            declined_reason=reason,
            responded_at=datetime.utcnow(),
        )
        if not moved:
            self.db.rollback()
            raise ConflictError("Request is no longer pending")
        self.db.commit()
        logger.info(f"🚫 Homeowner {homeowner_id} declined join request {request.id}")

        notify_safely(
            self.gateway,
            request.cleaner_id,
            NotificationContext.JOIN_REQUEST_DECLINED,
            data={"appointmentId": request.appointment_id, "multiCleanerJobId": request.job_id, "reason": reason},
            date=self._date_for(request.appointment_id),
            reason=reason,
        )
        return {"success": True, "message": "Request has been declined."}

    def cancel_request(self, request_id: int, cleaner_id: int) -> dict:
        request = self._load_request(request_id)
        if request.cleaner_id != cleaner_id:
            raise ForbiddenError("You are not authorized to cancel this request")
        self._ensure_pending(request)

        moved = self.repo.transition_join_request(
            self.db, request.id, REQUEST_PENDING, REQUEST_CANCELLED, responded_at=datetime.utcnow()
        )
        if not moved:
            self.db.rollback()
            raise ConflictError("Request is no longer pending")
        self.db.commit()
        logger.info(f"↩️ Cleaner {cleaner_id} withdrew join request {request.id}")
        return {"success": True, "message": "Your request has been cancelled."}

    def cancel_pending_requests_for_job(self, job_id: int) -> int:
        """Close every pending request once the job has no slots left"""
        now = datetime.utcnow()
        cancelled = []
        for request in self.repo.get_pending_join_requests(self.db, job_id=job_id):
            if self.repo.transition_join_request(
                self.db, request.id, REQUEST_PENDING, REQUEST_CANCELLED, responded_at=now
            ):
                cancelled.append(request)
        self.db.commit()

        for request in cancelled:
            notify_safely(
                self.gateway,
                request.cleaner_id,
                NotificationContext.JOIN_REQUEST_CANCELLED,
                data={"appointmentId": request.appointment_id, "multiCleanerJobId": request.job_id},
                date=self._date_for(request.appointment_id),
            )
        if cancelled:
            logger.info(f"📪 Cancelled {len(cancelled)} pending join requests for filled job {job_id}")
        return len(cancelled)

    # ==================== Listings ====================

    def get_pending_requests_for_homeowner(self, homeowner_id: int) -> list[dict]:
        requests = self.repo.get_pending_join_requests(self.db, homeowner_id=homeowner_id)
        return [JoinRequestResponse.from_request(r).model_dump() for r in requests]

    def get_pending_requests_for_appointment(self, appointment_id: int) -> list[dict]:
        requests = self.repo.get_pending_join_requests(self.db, appointment_id=appointment_id)
        return [JoinRequestResponse.from_request(r).model_dump() for r in requests]

    def get_pending_requests_for_cleaner(self, cleaner_id: int) -> list[dict]:
        requests = self.repo.get_pending_join_requests(self.db, cleaner_id=cleaner_id)
        return [JoinRequestResponse.from_request(r).model_dump() for r in requests]

    # ==================== Sweep ====================

    def auto_approve_expired_requests(self) -> dict:
        """
        Approve requests the homeowner let expire. Requests for jobs that
        filled in the meantime are cancelled instead. A failure on one request
        is counted and the rest are still processed.
        """
        expired = self.repo.get_expired_pending_join_requests(self.db, datetime.utcnow())
        approved = 0
        cancelled = 0
        errors = 0

        for request in expired:
            try:
                job = self.repo.get_job(self.db, request.job_id)
                if not job or job.is_filled() or job.status in JOB_TERMINAL_STATUSES:
                    cancelled += self.repo.transition_join_request(
                        self.db, request.id, REQUEST_PENDING, REQUEST_CANCELLED, responded_at=datetime.utcnow()
                    )
                    self.db.commit()
                    continue

                job = self._admit(request, REQUEST_AUTO_APPROVED)
                approved += 1
                logger.info(f"⏰ Auto-approved expired join request {request.id}")

                date = self._date_for(request.appointment_id)
                data = {"appointmentId": request.appointment_id, "multiCleanerJobId": request.job_id}
                notify_safely(
                    self.gateway, request.cleaner_id, NotificationContext.JOIN_REQUEST_AUTO_APPROVED, data=data, date=date
                )
                cleaner = self.repo.get_user(self.db, request.cleaner_id)
                notify_safely(
                    self.gateway,
                    request.homeowner_id,
                    NotificationContext.HOMEOWNER_CLEANER_AUTO_APPROVED,
                    data={**data, "cleanerId": request.cleaner_id},
                    cleaner_name=cleaner.display_name if cleaner else "A cleaner",
                    date=date,
                )

                self.db.refresh(job)
                if job.is_filled():
                    cancelled += self.cancel_pending_requests_for_job(job.id)
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.error(f"❌ Error auto-approving join request {request.id}: {e}")

        return {
            "processed": approved + cancelled,
            "approved": approved,
            "cancelled": cancelled,
            "errors": errors,
            "total": len(expired),
        }
