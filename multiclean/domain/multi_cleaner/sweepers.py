"""
Multi-cleaner sweeps
Entry points run on a timer by the worker. Each one only acts on rows still
in the state it expects, so overlapping or repeated runs are harmless.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ... import config
from ...models_multi_cleaner import (
    DECISIONS_TO_PROCEED,
    JOB_PARTIALLY_FILLED,
    JOB_UNFILLED_STATUSES,
    MultiCleanerJob,
)
from .approval_service import CleanerApprovalService
from .dropout_service import DropoutService
from .edge_case_service import EdgeCaseService
from .notifications import NotificationContext, NotificationGateway, format_date, notify_safely
from .offer_service import OfferService
from .pricing import MultiCleanerPricingService
from .repository import MultiCleanerRepository

logger = logging.getLogger(__name__)

repo = MultiCleanerRepository()


def process_expired_offers(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    return OfferService(db, gateway).process_expired_offers()


def withdraw_offers_for_filled_jobs(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    return OfferService(db, gateway).withdraw_offers_for_filled_jobs()


def auto_approve_expired_requests(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    return CleanerApprovalService(db, gateway).auto_approve_expired_requests()


def process_edge_case_decisions(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    return EdgeCaseService(db, gateway).process_edge_case_decisions()


def process_expired_edge_case_decisions(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    return EdgeCaseService(db, gateway).process_expired_edge_case_decisions()


def process_expired_solo_offers(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    return DropoutService(db, gateway).process_expired_solo_offers()


def handle_expired_extra_work_offers(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    return DropoutService(db, gateway).handle_expired_extra_work_offers()


def process_urgent_fill_notifications(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    """
    Ping available cleaners about unfilled jobs inside the urgent window,
    at most once per interval per job until the job fills.
    """
    gateway = gateway or NotificationGateway(db)
    pricing = MultiCleanerPricingService(db)
    now = datetime.utcnow()
    today = now.date()
    interval = timedelta(hours=config.URGENT_NOTIFICATION_INTERVAL_HOURS)
    processed = 0
    notified = 0
    errors = 0

    for job, appointment in repo.get_jobs_due(
        db, JOB_UNFILLED_STATUSES, today + timedelta(days=config.URGENT_FILL_DAYS)
    ):
        try:
            slots_remaining = job.remaining_slots()
            if slots_remaining <= 0:
                continue
            if not repo.stamp_urgent_notification(db, job.id, now - interval, now):
                db.rollback()
                continue
            db.commit()

            earnings = pricing.per_cleaner_share(job)
            days_until = max(0, (appointment.date - today).days)
            held = [c.cleaner_id for c in repo.get_all_completions(db, job.id)]
            cleaners = repo.get_available_cleaners(db, held, config.URGENT_FILL_CLEANER_LIMIT)

            for cleaner in cleaners:
                if notify_safely(
                    gateway,
                    cleaner,
                    NotificationContext.URGENT_FILL,
                    data={
                        "appointmentId": appointment.id,
                        "multiCleanerJobId": job.id,
                        "earningsOffered": earnings,
                        "daysUntilAppointment": days_until,
                    },
                    action_required=True,
                    expires_at=now + interval,
                    push=True,
                    days_until=days_until,
                    slots_remaining=slots_remaining,
                    earnings=earnings,
                ):
                    notified += 1
            processed += 1
            logger.info(f"📣 Urgent fill for job {job.id} sent to {len(cleaners)} cleaners ({days_until} days out)")
        except Exception as e:
            db.rollback()
            errors += 1
            logger.error(f"❌ Error processing urgent fill for job {job.id}: {e}")

    return {"processed": processed, "notified": notified, "errors": errors}


def process_final_warnings(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    """Warn the homeowner once when the job is still short close to the date"""
    gateway = gateway or NotificationGateway(db)
    now = datetime.utcnow()
    processed = 0
    errors = 0

    for job, appointment in repo.get_jobs_due(
        db,
        JOB_UNFILLED_STATUSES,
        now.date() + timedelta(days=config.FINAL_WARNING_DAYS),
        MultiCleanerJob.final_warning_at.is_(None),
    ):
        try:
            if not repo.update_job_if(db, job.id, "final_warning_at", None, final_warning_at=now):
                db.rollback()
                continue
            db.commit()

            slots_remaining = job.remaining_slots()
            notify_safely(
                gateway,
                appointment.user_id,
                NotificationContext.FINAL_WARNING,
                data={
                    "appointmentId": appointment.id,
                    "multiCleanerJobId": job.id,
                    "cleanersNeeded": job.total_cleaners_required,
                    "cleanersConfirmed": job.cleaners_confirmed,
                    "slotsRemaining": slots_remaining,
                    "options": ["proceed_with_one", "cancel", "reschedule"],
                },
                action_required=True,
                email=True,
                confirmed=job.cleaners_confirmed,
                slots_remaining=slots_remaining,
                date=format_date(appointment.date),
            )
            processed += 1
            logger.info(f"⚠️ Final warning sent for job {job.id} to homeowner {appointment.user_id}")
        except Exception as e:
            db.rollback()
            errors += 1
            logger.error(f"❌ Error processing final warning for job {job.id}: {e}")

    return {"processed": processed, "errors": errors}


def process_solo_completion_offers(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    """Offer the job solo to the one cleaner on a short-staffed job due soon"""
    dropouts = DropoutService(db, gateway)
    now = datetime.utcnow()
    processed = 0
    errors = 0

    for job, _appointment in repo.get_jobs_due(
        db,
        (JOB_PARTIALLY_FILLED,),
        now.date() + timedelta(days=config.SOLO_OFFER_DAYS),
        MultiCleanerJob.solo_offer_sent_at.is_(None),
        MultiCleanerJob.solo_offer_declined.is_(False),
        # Skip jobs whose homeowner already chose to keep the one cleaner
        or_(
            MultiCleanerJob.homeowner_decision.is_(None),
            MultiCleanerJob.homeowner_decision.notin_(DECISIONS_TO_PROCEED),
        ),
    ):
        try:
            active = repo.active_cleaner_ids(db, job.id)
            if len(active) != 1:
                continue
            if not repo.update_job_if(db, job.id, "solo_offer_sent_at", None, solo_offer_sent_at=now):
                db.rollback()
                continue
            db.flush()

            dropouts.offer_solo_completion(job.id, active[0])
            processed += 1
        except Exception as e:
            db.rollback()
            errors += 1
            logger.error(f"❌ Error offering solo completion for job {job.id}: {e}")

    return {"processed": processed, "errors": errors}


FILL_MONITOR_SWEEPS = (
    ("urgentFillNotifications", process_urgent_fill_notifications),
    ("finalWarnings", process_final_warnings),
    ("soloCompletionOffers", process_solo_completion_offers),
    ("edgeCaseDecisions", process_edge_case_decisions),
    ("expiredEdgeCaseDecisions", process_expired_edge_case_decisions),
)


def run_multi_cleaner_fill_monitor(db: Session, gateway: Optional[NotificationGateway] = None) -> dict:
    """Run the fill monitor sweeps in order; one failing sweep does not stop the rest"""
    logger.info("🔎 Starting multi-cleaner fill monitor")
    results = {"errors": 0, "timestamp": datetime.utcnow().isoformat()}

    for key, sweep in FILL_MONITOR_SWEEPS:
        try:
            summary = sweep(db, gateway)
            results[key] = summary["processed"]
            results["errors"] += summary.get("errors", 0)
        except Exception as e:
            db.rollback()
            results[key] = 0
            results["errors"] += 1
            logger.error(f"❌ Fill monitor sweep {key} failed: {e}")

    logger.info(
        f"✅ Fill monitor done. Urgent: {results['urgentFillNotifications']}, Warnings: {results['finalWarnings']}, "
        f"Solo: {results['soloCompletionOffers']}, EdgeCase: {results['edgeCaseDecisions']}, "
        f"ExpiredEdgeCase: {results['expiredEdgeCaseDecisions']}"
    )
    return results
