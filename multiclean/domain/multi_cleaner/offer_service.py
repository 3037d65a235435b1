"""Offer service - create, accept, decline and expire cleaner job offers"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models_multi_cleaner import (
    DECISIONS_TO_PROCEED,
    OFFER_ACCEPTED,
    OFFER_DECLINED,
    OFFER_EXPIRED,
    OFFER_PENDING,
    OFFER_TYPES,
    OFFER_WITHDRAWN,
    CleanerJobOffer,
)
from ...shared.errors import ConflictError, ForbiddenError, MultiCleanerError, NotFoundError, ValidationFailedError
from ...shared.validators import validate_choice
from .job_lifecycle import MultiCleanerJobService
from .notifications import NotificationContext, NotificationGateway, format_date, notify_safely
from .pricing import MultiCleanerPricingService
from .repository import MultiCleanerRepository
from .schemas import JobResponse, OfferResponse

logger = logging.getLogger(__name__)


class OfferService:
    """Offer/accept/decline protocol matching cleaners to open slots"""

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

    def create_offer(
        self,
        job_id: int,
        cleaner_id: int,
        offer_type: str = "market_open",
        earnings_offered: Optional[int] = None,
        rooms_offered: Optional[list] = None,
    ) -> CleanerJobOffer:
        try:
            validate_choice(offer_type, OFFER_TYPES, "offer type")
        except ValueError as e:
            raise ValidationFailedError(str(e)) from e

        job = self.jobs.get_job(job_id)
        if self.repo.get_live_offer(self.db, job_id, cleaner_id):
            raise ConflictError("Cleaner already has an active offer for this job")

        if earnings_offered is None:
            earnings_offered = self.pricing.per_cleaner_share(job)
        if rooms_offered is None:
            room_ids = self.jobs.pick_rooms_for_next_slot(job)
            rooms_offered = [
                {"id": r.id, "roomLabel": r.display_label(), "estimatedMinutes": r.estimated_minutes}
                for r in self.repo.get_rooms(self.db, job_id)
                if r.id in room_ids
            ]

        offer = CleanerJobOffer(
            job_id=job.id,
            appointment_id=job.appointment_id,
            cleaner_id=cleaner_id,
            offer_type=offer_type,
            status=OFFER_PENDING,
            earnings_offered=earnings_offered,
            rooms_offered=rooms_offered,
            expires_at=datetime.utcnow() + timedelta(hours=config.OFFER_EXPIRATION_HOURS),
        )
        self.db.add(offer)
        self.db.commit()
        self.db.refresh(offer)
        logger.info(f"📨 Created {offer_type} offer {offer.id} for cleaner {cleaner_id} on job {job_id}")
        return offer

    def _get_owned_offer(self, offer_id: int, cleaner_id: int) -> CleanerJobOffer:
        offer = self.repo.get_offer(self.db, offer_id)
        if not offer:
            raise NotFoundError("Offer not found")
        if offer.cleaner_id != cleaner_id:
            raise ForbiddenError("This offer is not for you")
        return offer

    def accept_offer(self, offer_id: int, cleaner_id: int) -> dict:
        """
        Accept a pending offer and fill a slot in one transaction. Co-cleaners
        are told afterwards; a delivery failure is reported, not raised.
        """
        offer = self._get_owned_offer(offer_id, cleaner_id)
        now = datetime.utcnow()

        if offer.status == OFFER_EXPIRED or (offer.status == OFFER_PENDING and offer.expires_at < now):
            raise ConflictError("Offer has expired")
        if offer.status != OFFER_PENDING:
            raise ConflictError("Offer is no longer available")

        try:
            moved = self.repo.transition_offer(self.db, offer.id, OFFER_PENDING, OFFER_ACCEPTED, responded_at=now)
            if not moved:
                raise ConflictError("Offer is no longer available")
            result = self.jobs.fill_slot(offer.job_id, cleaner_id, commit=False)
            self.db.commit()
        except MultiCleanerError:
            self.db.rollback()
            raise

        job = result["job"]
        self.db.refresh(job)
        self.db.refresh(offer)
        logger.info(f"✅ Cleaner {cleaner_id} accepted offer {offer.id} for job {job.id}")

        notification_errors: list = []
        self._notify_co_cleaners(job, cleaner_id, notification_errors)

        return {
            "success": True,
            "offer": OfferResponse.from_offer(offer).model_dump(),
            "job": JobResponse.from_job(job).model_dump(),
            "assignedRooms": len(result["assignedRoomIds"]),
            "assignedRoomIds": result["assignedRoomIds"],
            "notificationErrors": notification_errors,
        }

    def _notify_co_cleaners(self, job, joined_cleaner_id: int, errors: list) -> None:
        appointment = job.appointment
        joined = self.repo.get_user(self.db, joined_cleaner_id)
        # Past an edge case decision the lone cleaner was promised full pay
        if job.homeowner_decision in DECISIONS_TO_PROCEED:
            context = NotificationContext.EDGE_CASE_SECOND_CLEANER_JOINED
        else:
            context = NotificationContext.CO_CLEANER_JOINED

        for other_id in self.repo.active_cleaner_ids(self.db, job.id):
            if other_id == joined_cleaner_id:
                continue
            notify_safely(
                self.gateway,
                other_id,
                context,
                errors=errors,
                data={"appointmentId": appointment.id, "multiCleanerJobId": job.id},
                cleaner_name=joined.display_name if joined else "Another cleaner",
                date=format_date(appointment.date),
            )

    def decline_offer(self, offer_id: int, cleaner_id: int, reason: Optional[str] = None) -> CleanerJobOffer:
        offer = self._get_owned_offer(offer_id, cleaner_id)
        if offer.status != OFFER_PENDING:
            raise ConflictError("Offer is no longer available")

        moved = self.repo.transition_offer(
            self.db,
            offer.id,
            OFFER_PENDING,
            OFFER_DECLINED,
            declined_reason=reason,
            responded_at=datetime.utcnow(),
        )
        if not moved:
            self.db.rollback()
            raise ConflictError("Offer is no longer available")
        self.db.commit()
        self.db.refresh(offer)
        logger.info(f"🚫 Cleaner {cleaner_id} declined offer {offer.id}")
        return offer

    def list_offers_for_cleaner(self, cleaner_id: int) -> dict:
        """Personal pending offers plus open jobs the cleaner has not been offered or assigned"""
        offers = self.repo.get_pending_offers_for_cleaner(self.db, cleaner_id, datetime.utcnow())
        available = self.repo.get_open_jobs(self.db, exclude_cleaner_id=cleaner_id, limit=20)
        return {
            "personalOffers": [OfferResponse.from_offer(o).model_dump() for o in offers],
            "availableJobs": [JobResponse.from_job(j).model_dump() for j in available],
        }

    # ==================== Sweeps ====================

    def process_expired_offers(self) -> dict:
        """Expire pending offers past their window. Rows already moved by another run are skipped."""
        now = datetime.utcnow()
        processed = 0
        errors = 0

        for offer in self.repo.get_expired_pending_offers(self.db, now):
            try:
                moved = self.repo.transition_offer(self.db, offer.id, OFFER_PENDING, OFFER_EXPIRED, responded_at=now)
                if not moved:
                    self.db.rollback()
                    continue
                self.db.commit()
                processed += 1

                appointment = self.repo.get_appointment(self.db, offer.appointment_id)
                notify_safely(
                    self.gateway,
                    offer.cleaner_id,
                    NotificationContext.OFFER_EXPIRED,
                    data={"appointmentId": offer.appointment_id, "multiCleanerJobId": offer.job_id},
                    date=format_date(appointment.date if appointment else None),
                )
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.error(f"❌ Error expiring offer {offer.id}: {e}")

        if processed:
            logger.info(f"⏰ Expired {processed} multi-cleaner offers")
        return {"processed": processed, "errors": errors}

    def withdraw_offers_for_filled_jobs(self) -> dict:
        """Withdraw pending offers whose job filled (or closed) in the meantime"""
        now = datetime.utcnow()
        processed = 0
        errors = 0

        for offer in self.repo.get_pending_offers_for_filled_jobs(self.db):
            try:
                moved = self.repo.transition_offer(
                    self.db, offer.id, OFFER_PENDING, OFFER_WITHDRAWN, responded_at=now
                )
                if not moved:
                    self.db.rollback()
                    continue
                self.db.commit()
                processed += 1

                appointment = self.repo.get_appointment(self.db, offer.appointment_id)
                notify_safely(
                    self.gateway,
                    offer.cleaner_id,
                    NotificationContext.OFFER_WITHDRAWN,
                    data={"appointmentId": offer.appointment_id, "multiCleanerJobId": offer.job_id},
                    date=format_date(appointment.date if appointment else None),
                )
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.error(f"❌ Error withdrawing offer {offer.id}: {e}")

        if processed:
            logger.info(f"📭 Withdrew {processed} offers for filled jobs")
        return {"processed": processed, "errors": errors}
