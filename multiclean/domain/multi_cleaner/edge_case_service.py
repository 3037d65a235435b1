"""
Edge case resolution
An edge-sized home (at the large threshold but not over it) can be cleaned
by one cleaner. When such a job has one of its two cleaners confirmed close
to the date, the homeowner decides whether to proceed or cancel for free.
Silence past the deadline means proceed.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...email_templates import edge_case_decision_template
from ...models_multi_cleaner import (
    DECISION_AUTO_PROCEEDED,
    DECISION_CANCEL,
    DECISION_PENDING,
    DECISION_PROCEED,
    JOB_COMPLETED,
    JOB_PARTIALLY_FILLED,
    MultiCleanerJob,
)
from ...shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from .classification import is_edge_large_home
from .job_lifecycle import MultiCleanerJobService
from .notifications import NotificationContext, NotificationGateway, format_date, notify_safely
from .repository import MultiCleanerRepository
from .schemas import validate_homeowner_response

logger = logging.getLogger(__name__)


def _street(home) -> str:
    return home.address if home and home.address else "the scheduled home"


class EdgeCaseService:
    """Timed homeowner decision for edge-sized jobs short one cleaner"""

    def __init__(self, db: Session, gateway: Optional[NotificationGateway] = None):
        self.db = db
        self.repo = MultiCleanerRepository()
        self.jobs = MultiCleanerJobService(db, gateway)
        self.gateway = self.jobs.gateway

    # ==================== Sweeps ====================

    def process_edge_case_decisions(self) -> dict:
        """Ask the homeowner to decide, once per job"""
        now = datetime.utcnow()
        cutoff = now.date() + timedelta(days=config.EDGE_CASE_DECISION_DAYS)
        decision_hours = config.EDGE_CASE_DECISION_HOURS
        processed = 0
        errors = 0

        candidates = self.repo.get_jobs_due(
            self.db,
            (JOB_PARTIALLY_FILLED,),
            cutoff,
            MultiCleanerJob.cleaners_confirmed == 1,
            MultiCleanerJob.total_cleaners_required == 2,
            MultiCleanerJob.edge_case_decision_required.is_(False),
        )
        for job, appointment in candidates:
            try:
                home = appointment.home
                homeowner = appointment.user
                if not home or not homeowner or not is_edge_large_home(home.num_beds, home.num_baths):
                    continue

                active = self.repo.get_active_completions(self.db, job.id)
                if len(active) != 1:
                    continue
                cleaner = self.repo.get_user(self.db, active[0].cleaner_id)

                expires_at = now + timedelta(hours=decision_hours)
                claimed = self.repo.update_job_if(
                    self.db,
                    job.id,
                    "edge_case_decision_required",
                    False,
                    edge_case_decision_required=True,
                    edge_case_decision_sent_at=now,
                    edge_case_decision_expires_at=expires_at,
                    homeowner_decision=DECISION_PENDING,
                )
                if not claimed:
                    self.db.rollback()
                    continue
                self.db.commit()
                processed += 1

                cleaner_name = cleaner.first_name if cleaner and cleaner.first_name else "Your cleaner"
                formatted_date = format_date(appointment.date)
                notify_safely(
                    self.gateway,
                    homeowner,
                    NotificationContext.EDGE_CASE_DECISION_REQUIRED,
                    data={
                        "appointmentId": appointment.id,
                        "multiCleanerJobId": job.id,
                        "cleanerName": cleaner_name,
                        "expiresAt": expires_at.isoformat(),
                        "options": ["proceed", "cancel"],
                    },
                    action_required=True,
                    expires_at=expires_at,
                    email=True,
                    push=True,
                    mjml_content=edge_case_decision_template(
                        homeowner.first_name, cleaner_name, formatted_date, decision_hours, appointment.id
                    ),
                    cleaner_name=cleaner_name,
                    date=formatted_date,
                )
                logger.info(
                    f"⚖️ Edge case decision requested for job {job.id} from homeowner {homeowner.id} "
                    f"(expires in {decision_hours}h)"
                )
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.error(f"❌ Error requesting edge case decision for job {job.id}: {e}")

        return {"processed": processed, "errors": errors}

    def process_expired_edge_case_decisions(self) -> dict:
        """Unanswered decisions proceed with the one confirmed cleaner"""
        now = datetime.utcnow()
        processed = 0
        errors = 0

        jobs = self.repo.get_jobs_past_deadline(
            self.db,
            "edge_case_decision_expires_at",
            now,
            MultiCleanerJob.edge_case_decision_required.is_(True),
            MultiCleanerJob.homeowner_decision == DECISION_PENDING,
        )
        for job in jobs:
            try:
                appointment = job.appointment
                if appointment is None or appointment.completed:
                    continue
                active = self.repo.get_active_completions(self.db, job.id)
                if not active:
                    continue

                moved = self.repo.update_job_if(
                    self.db,
                    job.id,
                    "homeowner_decision",
                    DECISION_PENDING,
                    homeowner_decision=DECISION_AUTO_PROCEEDED,
                    homeowner_decision_at=now,
                )
                if not moved:
                    self.db.rollback()
                    continue
                self.db.commit()
                processed += 1

                cleaner = self.repo.get_user(self.db, active[0].cleaner_id)
                cleaner_name = cleaner.first_name if cleaner and cleaner.first_name else "Your cleaner"
                formatted_date = format_date(appointment.date)
                data = {"appointmentId": appointment.id, "multiCleanerJobId": job.id}

                notify_safely(
                    self.gateway,
                    appointment.user_id,
                    NotificationContext.EDGE_CASE_AUTO_PROCEEDED,
                    data={**data, "cleanerName": cleaner_name},
                    email=True,
                    cleaner_name=cleaner_name,
                    date=formatted_date,
                )
                if cleaner:
                    notify_safely(
                        self.gateway,
                        cleaner,
                        NotificationContext.EDGE_CASE_CLEANER_CONFIRMED,
                        data=data,
                        email=True,
                        push=True,
                        address=_street(appointment.home),
                        date=formatted_date,
                    )
                logger.info(f"⏩ Auto-proceeded edge case job {job.id} with cleaner {active[0].cleaner_id}")
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.error(f"❌ Error auto-proceeding edge case job {job.id}: {e}")

        return {"processed": processed, "errors": errors}

    # ==================== Cancellation ====================

    def cancel_edge_case_appointment(self, job: MultiCleanerJob, reason: str = "lack_of_cleaners") -> dict:
        """Cancel with no fees for the homeowner; the confirmed cleaner is released without compensation"""
        if job.status == JOB_COMPLETED:
            raise ConflictError("Job has already been completed")

        appointment = job.appointment
        released = self.jobs.close_job(job, reason)
        job.homeowner_decision = DECISION_CANCEL
        job.homeowner_decision_at = datetime.utcnow()
        appointment.has_been_assigned = False
        self.db.commit()
        logger.info(f"🛑 Cancelled edge case appointment {appointment.id} due to {reason}")

        formatted_date = format_date(appointment.date)
        data = {"appointmentId": appointment.id, "reason": reason}
        notify_safely(
            self.gateway,
            appointment.user_id,
            NotificationContext.EDGE_CASE_CANCELLED,
            data=data,
            email=True,
            date=formatted_date,
        )
        for cleaner_id in released:
            notify_safely(
                self.gateway,
                cleaner_id,
                NotificationContext.EDGE_CASE_CLEANER_CANCELLED,
                data=data,
                email=True,
                push=True,
                address=_street(appointment.home),
                date=formatted_date,
            )
        return {"success": True, "job": job, "releasedCleanerIds": released}

    # ==================== Homeowner response ====================

    def _pending_decision_job(self, appointment_id: int) -> MultiCleanerJob:
        job = self.repo.get_job_by_appointment(self.db, appointment_id)
        if not job or not job.edge_case_decision_required:
            raise ConflictError("No edge case decision required for this appointment")
        if job.homeowner_decision != DECISION_PENDING:
            raise ConflictError("Decision has already been made", {"currentDecision": job.homeowner_decision})
        return job

    def _claim_decision(self, job: MultiCleanerJob, decision: str) -> None:
        moved = self.repo.update_job_if(
            self.db,
            job.id,
            "homeowner_decision",
            DECISION_PENDING,
            homeowner_decision=decision,
            homeowner_decision_at=datetime.utcnow(),
        )
        if not moved:
            self.db.rollback()
            self.db.refresh(job)
            raise ConflictError("Decision has already been made", {"currentDecision": job.homeowner_decision})

    def handle_homeowner_response(
        self,
        appointment_id: int,
        homeowner_id: int,
        response: str,
        reschedule_date: Optional[date] = None,
        reason: Optional[str] = None,
    ) -> dict:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        if appointment.user_id != homeowner_id:
            raise ForbiddenError("Not your appointment")
        try:
            validate_homeowner_response(response)
        except ValueError as e:
            raise ValidationFailedError(str(e)) from e

        if response == "proceed_with_one":
            appointment.homeowner_solo_warning_acknowledged = True
            self.db.commit()
            return {"success": True, "message": "Appointment will proceed with available cleaner(s)"}

        if response == "proceed_edge_case":
            job = self._pending_decision_job(appointment_id)
            self._claim_decision(job, DECISION_PROCEED)
            self.db.commit()
            logger.info(f"👍 Homeowner {homeowner_id} chose to proceed with 1 cleaner on job {job.id}")

            for cleaner_id in self.repo.active_cleaner_ids(self.db, job.id):
                notify_safely(
                    self.gateway,
                    cleaner_id,
                    NotificationContext.EDGE_CASE_CLEANER_CONFIRMED,
                    data={"appointmentId": appointment.id, "multiCleanerJobId": job.id},
                    email=True,
                    push=True,
                    address=_street(appointment.home),
                    date=format_date(appointment.date),
                )
            return {
                "success": True,
                "message": "Your cleaning will proceed with 1 cleaner",
                "decision": DECISION_PROCEED,
            }

        if response == "cancel_edge_case":
            job = self._pending_decision_job(appointment_id)
            self._claim_decision(job, DECISION_CANCEL)
            self.cancel_edge_case_appointment(job, reason or "homeowner_cancelled")
            return {
                "success": True,
                "message": "Appointment cancelled with no fees",
                "decision": DECISION_CANCEL,
            }

        if response == "cancel":
            job = self.repo.get_job_by_appointment(self.db, appointment_id)
            if job:
                self.jobs.cancel_job(job.id, reason or "homeowner_cancelled_lack_of_cleaners")
            else:
                appointment.payment_status = "cancelled"
                self.db.commit()
            return {"success": True, "message": "Appointment cancelled without penalty"}

        # reschedule
        if not reschedule_date:
            raise ValidationFailedError("Reschedule date required")
        appointment.reschedule_requested_date = reschedule_date
        self.db.commit()
        logger.info(f"📅 Homeowner {homeowner_id} asked to reschedule appointment {appointment_id} to {reschedule_date}")
        return {
            "success": True,
            "message": f"Rescheduling to {reschedule_date.isoformat()}",
            "rescheduleDate": reschedule_date.isoformat(),
        }
