"""
Dropout coordination
A cleaner leaving a job releases their slot and rooms. The survivors are
offered the leftover rooms (or the whole job, when one is left) for a limited
time, and the homeowner is kept informed of how many cleaners remain.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models_multi_cleaner import (
    COMPLETION_DROPPED_OUT,
    COMPLETION_NO_SHOW,
    DECISIONS_TO_PROCEED,
    JOB_TERMINAL_STATUSES,
    CleanerJobCompletion,
    MultiCleanerJob,
)
from ...shared.errors import ConflictError, ForbiddenError, NotFoundError
from .job_lifecycle import MultiCleanerJobService
from .notifications import NotificationContext, NotificationGateway, format_date, notify_safely
from .pricing import MultiCleanerPricingService, format_cents
from .repository import MultiCleanerRepository

logger = logging.getLogger(__name__)


class DropoutService:
    """Handles cleaners leaving a multi-cleaner job and the offers that follow"""

    def __init__(
        self,
        db: Session,
        gateway: Optional[NotificationGateway] = None,
        pricing: Optional[MultiCleanerPricingService] = None,
    ):
        self.db = db
        self.repo = MultiCleanerRepository()
        self.jobs = MultiCleanerJobService(db, gateway, pricing)
        self.gateway = self.jobs.gateway
        self.pricing = self.jobs.pricing

    def _require_active(self, job_id: int, cleaner_id: int) -> CleanerJobCompletion:
        completion = self.repo.get_active_completion(self.db, job_id, cleaner_id)
        if not completion:
            raise ForbiddenError("You are not assigned to this job")
        return completion

    def _job_data(self, job: MultiCleanerJob) -> dict:
        return {"appointmentId": job.appointment_id, "multiCleanerJobId": job.id}

    # ==================== Dropout ====================

    def handle_cleaner_dropout(
        self,
        job_id: int,
        cleaner_id: int,
        reason: Optional[str] = None,
        status: str = COMPLETION_DROPPED_OUT,
    ) -> dict:
        """
        Release the cleaner, then tell whoever is left. The notices are
        advisory; solo and extra work offers are sent separately.
        """
        job = self.jobs.release_slot(job_id, cleaner_id, status=status, reason=reason)
        remaining = self.repo.active_cleaner_ids(self.db, job.id)
        shortfall = job.total_cleaners_required - len(remaining)
        appointment = job.appointment
        date = format_date(appointment.date)
        data = self._job_data(job)
        errors: list = []

        if len(remaining) == 1:
            notify_safely(
                self.gateway,
                remaining[0],
                NotificationContext.DROPOUT_SOLO_POSSIBLE,
                errors=errors,
                data=data,
                action_required=True,
                expires_at=datetime.utcnow() + timedelta(hours=config.DROPOUT_NOTICE_HOURS),
                push=True,
                date=date,
            )
        elif len(remaining) > 1:
            for other_id in remaining:
                notify_safely(
                    self.gateway,
                    other_id,
                    NotificationContext.DROPOUT_EXTRA_ROOMS,
                    errors=errors,
                    data=data,
                    push=True,
                    date=date,
                )
        self._notify_homeowner_remaining(job, len(remaining), errors)

        logger.info(
            f"🚪 Cleaner {cleaner_id} left job {job.id} ({status}); "
            f"{len(remaining)} remaining, shortfall {shortfall}"
        )
        return {
            "job": job,
            "remainingCleaners": len(remaining),
            "remainingCleanerIds": remaining,
            "shortfall": shortfall,
            "canProceedSolo": len(remaining) == 1,
            "canProceedWithRebalance": len(remaining) > 1,
            "notificationErrors": errors,
        }

    def handle_no_show(self, job_id: int, cleaner_id: int) -> dict:
        return self.handle_cleaner_dropout(job_id, cleaner_id, reason="No-show", status=COMPLETION_NO_SHOW)

    def _notify_homeowner_remaining(self, job: MultiCleanerJob, remaining: int, errors: Optional[list] = None) -> None:
        appointment = job.appointment
        data = {**self._job_data(job), "remainingCleaners": remaining}
        date = format_date(appointment.date)

        if remaining == 0:
            notify_safely(
                self.gateway,
                appointment.user_id,
                NotificationContext.HOMEOWNER_ALL_UNAVAILABLE,
                errors=errors,
                data={**data, "options": ["reschedule", "cancel"]},
                action_required=True,
                email=True,
                push=True,
                date=date,
            )
        elif remaining == 1:
            notify_safely(
                self.gateway,
                appointment.user_id,
                NotificationContext.HOMEOWNER_SOLO_OPTION,
                errors=errors,
                data={**data, "options": ["proceed_with_one", "cancel"]},
                action_required=True,
                push=True,
                date=date,
            )
        else:
            notify_safely(
                self.gateway,
                appointment.user_id,
                NotificationContext.HOMEOWNER_REDUCED_TEAM,
                errors=errors,
                data=data,
                date=date,
                remaining=remaining,
            )

    # ==================== Offers to the survivors ====================

    def offer_solo_completion(self, job_id: int, cleaner_id: int) -> dict:
        """Offer the last remaining cleaner the whole job at solo pay"""
        job = self.jobs.get_job(job_id)
        if job.status in JOB_TERMINAL_STATUSES:
            raise ConflictError("This job is no longer active")
        if not self.repo.get_active_completion(self.db, job_id, cleaner_id):
            raise NotFoundError("Cleaner is not assigned to this job")

        earnings = self.pricing.calculate_solo_completion_earnings(job.appointment_id)
        rebalance = self.jobs.rebalance_unassigned_rooms(job_id)

        now = datetime.utcnow()
        expires_at = now + timedelta(hours=config.SOLO_OFFER_HOURS)
        job.solo_offer_sent_at = now
        job.solo_offer_expires_at = expires_at
        job.solo_offer_declined = False
        job.solo_offer_expired = False
        self.db.commit()
        logger.info(f"🧹 Solo completion offered to cleaner {cleaner_id} on job {job_id} for {format_cents(earnings)}")

        notify_safely(
            self.gateway,
            cleaner_id,
            NotificationContext.SOLO_COMPLETION_OFFER,
            data={**self._job_data(job), "earningsOffered": earnings},
            action_required=True,
            expires_at=expires_at,
            push=True,
            date=format_date(job.appointment.date),
            earnings=earnings,
            hours=config.SOLO_OFFER_HOURS,
        )
        return {"job": job, "cleanerId": cleaner_id, "earnings": earnings, "expiresAt": expires_at, "rebalance": rebalance}

    def offer_extra_work_to_remaining_cleaners(self, job_id: int) -> dict:
        """Split the leftover rooms among the survivors and offer them the extra pay"""
        job = self.jobs.get_job(job_id)
        if job.status in JOB_TERMINAL_STATUSES:
            raise ConflictError("This job is no longer active")

        remaining = self.repo.active_cleaner_ids(self.db, job_id)
        if not remaining:
            raise ConflictError("No remaining cleaners to offer extra work to")
        if len(remaining) == 1:
            return self.offer_solo_completion(job_id, remaining[0])

        rebalance = self.jobs.rebalance_unassigned_rooms(job_id)
        extra_rooms = {a["cleanerId"]: a["claimed"] for a in rebalance["assignments"]}
        recalculated = self.pricing.recalculate_earnings_after_dropout(job_id)

        now = datetime.utcnow()
        expires_at = now + timedelta(hours=config.EXTRA_WORK_OFFER_HOURS)
        job.extra_work_offers_sent_at = now
        job.extra_work_offers_expire_at = expires_at
        job.extra_work_offers_expired = False
        for completion in self.repo.get_active_completions(self.db, job_id):
            completion.extra_work_accepted = False
            completion.extra_work_declined = False
        self.db.commit()

        offers = []
        date = format_date(job.appointment.date)
        for entry in recalculated["earnings"]:
            room_count = extra_rooms.get(entry["cleanerId"], 0)
            offers.append(
                {
                    "cleanerId": entry["cleanerId"],
                    "extraRooms": room_count,
                    "totalEarnings": entry["totalEarnings"],
                    "extraEarnings": entry["extraEarnings"],
                }
            )
            notify_safely(
                self.gateway,
                entry["cleanerId"],
                NotificationContext.EXTRA_WORK_OFFER,
                data={**self._job_data(job), "extraRooms": room_count, "totalEarnings": entry["totalEarnings"]},
                action_required=True,
                expires_at=expires_at,
                push=True,
                date=date,
                room_count=room_count,
                earnings=entry["totalEarnings"],
                hours=config.EXTRA_WORK_OFFER_HOURS,
            )

        logger.info(f"➕ Extra work offered to {len(offers)} cleaners on job {job_id}")
        return {"job": job, "offers": offers, "expiresAt": expires_at}

    # ==================== Responses ====================

    def accept_solo_completion(self, appointment_id: int, cleaner_id: int) -> dict:
        job = self.jobs.get_job_for_appointment(appointment_id)
        completion = self._require_active(job.id, cleaner_id)
        if completion.solo_declined:
            raise ConflictError("Solo offer was already declined")

        unassigned = [r.id for r in self.repo.get_unassigned_rooms(self.db, job.id)]
        claimed = self.repo.claim_rooms(self.db, job.id, unassigned, cleaner_id)
        completion.solo_accepted_at = datetime.utcnow()
        job.appointment.solo_cleaner_consent = True
        self.db.commit()

        earnings = self.pricing.calculate_solo_completion_earnings(appointment_id)
        logger.info(f"💪 Cleaner {cleaner_id} accepted solo completion of job {job.id} ({claimed} rooms taken over)")

        cleaner = self.repo.get_user(self.db, cleaner_id)
        notify_safely(
            self.gateway,
            job.appointment.user_id,
            NotificationContext.SOLO_ACCEPTED_HOMEOWNER,
            data=self._job_data(job),
            cleaner_name=cleaner.display_name if cleaner else "Your cleaner",
            date=format_date(job.appointment.date),
        )
        return {
            "success": True,
            "message": "You will complete this job solo for full pay",
            "earnings": earnings,
            "earningsFormatted": format_cents(earnings),
            "assignedRoomIds": [r.id for r in self.repo.get_cleaner_rooms(self.db, job.id, cleaner_id)],
        }

    def _left_short_handed(self, job: MultiCleanerJob) -> bool:
        """A co-cleaner left the job and the homeowner has not kept the rest on as is"""
        if job.homeowner_decision in DECISIONS_TO_PROCEED:
            return False
        history = self.repo.get_all_completions(self.db, job.id)
        return any(c.status in (COMPLETION_DROPPED_OUT, COMPLETION_NO_SHOW) for c in history)

    def _decline_and_release(self, job: MultiCleanerJob, cleaner_id: int, reason: str) -> dict:
        self.jobs.release_slot(job.id, cleaner_id, reason=reason, commit=False)
        self.db.commit()
        remaining = self.repo.active_cleaner_ids(self.db, job.id)
        self._notify_homeowner_remaining(job, len(remaining))
        return {"job": job, "remainingCleaners": len(remaining), "remainingCleanerIds": remaining}

    def handle_solo_decline(self, job_id: int, cleaner_id: int) -> dict:
        job = self.jobs.get_job(job_id)
        completion = self._require_active(job_id, cleaner_id)

        now = datetime.utcnow()
        completion.solo_declined = True
        completion.solo_declined_at = now
        job.solo_offer_declined = True
        logger.info(f"🙅 Cleaner {cleaner_id} declined solo completion of job {job_id}")
        return self._decline_and_release(job, cleaner_id, "declined_solo")

    def accept_extra_work(self, job_id: int, cleaner_id: int) -> dict:
        job = self.jobs.get_job(job_id)
        completion = self._require_active(job_id, cleaner_id)
        if job.extra_work_offers_expire_at is None:
            raise ConflictError("No extra work offer for this job")
        if job.extra_work_offers_expired or job.extra_work_offers_expire_at < datetime.utcnow():
            raise ConflictError("Extra work offer has expired")
        if completion.extra_work_declined:
            raise ConflictError("Extra work was already declined")

        if not completion.extra_work_accepted:
            completion.extra_work_accepted = True
            completion.extra_work_accepted_at = datetime.utcnow()
            self.db.commit()
            logger.info(f"✅ Cleaner {cleaner_id} accepted extra work on job {job_id}")

        rooms = self.repo.get_cleaner_rooms(self.db, job_id, cleaner_id)
        earnings = sum(r.earnings_share or 0 for r in rooms)
        return {
            "success": True,
            "assignedRoomIds": [r.id for r in rooms],
            "earnings": earnings,
            "earningsFormatted": format_cents(earnings),
        }

    def handle_decline_extra_work(self, job_id: int, cleaner_id: int, reason: Optional[str] = None) -> dict:
        job = self.jobs.get_job(job_id)
        completion = self._require_active(job_id, cleaner_id)

        completion.extra_work_declined = True
        completion.extra_work_declined_at = datetime.utcnow()
        logger.info(f"🙅 Cleaner {cleaner_id} declined extra work on job {job_id}")
        return self._decline_and_release(job, cleaner_id, reason or "declined_extra_work")

    # ==================== Sweeps ====================

    def handle_expired_extra_work_offers(self) -> dict:
        """
        Cleaners who let an extra work offer lapse are released as if they
        declined. A lone survivor is then offered the job solo.
        """
        now = datetime.utcnow()
        processed = 0
        released = 0
        errors = 0

        jobs = self.repo.get_jobs_past_deadline(
            self.db, "extra_work_offers_expire_at", now, MultiCleanerJob.extra_work_offers_expired.is_(False)
        )
        for job in jobs:
            try:
                if not self.repo.update_job_if(
                    self.db, job.id, "extra_work_offers_expired", False, extra_work_offers_expired=True
                ):
                    self.db.rollback()
                    continue

                for completion in self.repo.get_active_completions(self.db, job.id):
                    if completion.extra_work_accepted or completion.extra_work_declined:
                        continue
                    completion.extra_work_declined = True
                    completion.extra_work_declined_at = now
                    self.jobs.release_slot(job.id, completion.cleaner_id, reason="extra_work_offer_expired", commit=False)
                    released += 1
                self.db.commit()
                processed += 1

                remaining = self.repo.active_cleaner_ids(self.db, job.id)
                self._notify_homeowner_remaining(job, len(remaining))
                if len(remaining) == 1:
                    self.offer_solo_completion(job.id, remaining[0])
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.error(f"❌ Error expiring extra work offers for job {job.id}: {e}")

        if processed:
            logger.info(f"⏰ Expired extra work offers on {processed} jobs, released {released} cleaners")
        return {"processed": processed, "released": released, "errors": errors}

    def process_expired_solo_offers(self) -> dict:
        """A solo offer nobody answered in time counts as declined"""
        now = datetime.utcnow()
        processed = 0
        errors = 0

        jobs = self.repo.get_jobs_past_deadline(
            self.db,
            "solo_offer_expires_at",
            now,
            MultiCleanerJob.solo_offer_expired.is_(False),
            MultiCleanerJob.solo_offer_declined.is_(False),
        )
        for job in jobs:
            try:
                if not self.repo.update_job_if(self.db, job.id, "solo_offer_expired", False, solo_offer_expired=True):
                    self.db.rollback()
                    continue

                lapsed = [
                    c
                    for c in self.repo.get_active_completions(self.db, job.id)
                    if c.solo_accepted_at is None and not c.solo_declined
                ]
                if len(lapsed) != 1 or self.repo.count_active_completions(self.db, job.id) != 1:
                    # Accepted in time, or the team changed since the offer went out
                    self.db.commit()
                    continue

                completion = lapsed[0]
                if not self._left_short_handed(job):
                    # Nobody dropped out, so the cleaner keeps the slot they signed up for
                    self.db.commit()
                    logger.info(f"⏰ Solo offer lapsed on job {job.id}; cleaner {completion.cleaner_id} stays on")
                    continue

                completion.solo_declined = True
                completion.solo_declined_at = now
                job.solo_offer_declined = True
                self._decline_and_release(job, completion.cleaner_id, "solo_offer_expired")
                processed += 1
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.error(f"❌ Error expiring solo offer for job {job.id}: {e}")

        if processed:
            logger.info(f"⏰ Expired {processed} unanswered solo offers")
        return {"processed": processed, "errors": errors}
