"""Multi-cleaner router - FastAPI endpoints for multi-cleaner jobs"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...models_multi_cleaner import MultiCleanerJob
from .approval_service import CleanerApprovalService
from .dropout_service import DropoutService
from .edge_case_service import EdgeCaseService
from .job_lifecycle import MultiCleanerJobService
from .offer_service import OfferService
from .pricing import MultiCleanerPricingService
from .schemas import (
    CompletionResponse,
    CreateJobRequest,
    DeclineRequest,
    DropoutRequest,
    HomeownerResponseRequest,
    JobResponse,
    JoinJobRequest,
    OfferResponse,
    RoomAssignmentResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/multi-cleaner", tags=["Multi-Cleaner"])


def get_job_service(db: Session = Depends(get_db)) -> MultiCleanerJobService:
    """Dependency injection for MultiCleanerJobService"""
    return MultiCleanerJobService(db)


def get_offer_service(db: Session = Depends(get_db)) -> OfferService:
    return OfferService(db)


def get_approval_service(db: Session = Depends(get_db)) -> CleanerApprovalService:
    return CleanerApprovalService(db)


def get_dropout_service(db: Session = Depends(get_db)) -> DropoutService:
    return DropoutService(db)


def get_edge_case_service(db: Session = Depends(get_db)) -> EdgeCaseService:
    return EdgeCaseService(db)


def get_pricing_service(db: Session = Depends(get_db)) -> MultiCleanerPricingService:
    return MultiCleanerPricingService(db)


def _with_job(result: dict) -> dict:
    """Replace an ORM job in a service result with its response shape"""
    job = result.get("job")
    if isinstance(job, MultiCleanerJob):
        return {**result, "job": JobResponse.from_job(job).model_dump()}
    return result


# ============================================================================
# JOB SETUP
# ============================================================================


@router.get("/check/{appointment_id}")
async def check_job(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: MultiCleanerJobService = Depends(get_job_service),
):
    """Home size classification and recommended cleaner count"""
    return service.get_job_check_info(appointment_id)


@router.post("/create")
async def create_job(
    data: CreateJobRequest,
    current_user: User = Depends(get_current_user),
    service: MultiCleanerJobService = Depends(get_job_service),
):
    job = service.create_job(data.appointmentId, data.cleanerCount, data.primaryCleanerId)
    rooms = service.get_all_room_assignments(job.appointment_id)
    return {
        "success": True,
        "job": JobResponse.from_job(job).model_dump(),
        "roomAssignments": [RoomAssignmentResponse.from_room(r).model_dump() for r in rooms],
    }


# ============================================================================
# OFFERS
# ============================================================================


@router.get("/offers")
async def list_offers(
    current_user: User = Depends(get_current_user),
    service: OfferService = Depends(get_offer_service),
):
    """Pending offers for the cleaner plus open jobs they can still join"""
    return service.list_offers_for_cleaner(current_user.id)


@router.post("/offers/{offer_id}/accept")
async def accept_offer(
    offer_id: int,
    current_user: User = Depends(get_current_user),
    service: OfferService = Depends(get_offer_service),
):
    return service.accept_offer(offer_id, current_user.id)


@router.post("/offers/{offer_id}/decline")
async def decline_offer(
    offer_id: int,
    data: DeclineRequest = DeclineRequest(),
    current_user: User = Depends(get_current_user),
    service: OfferService = Depends(get_offer_service),
):
    offer = service.decline_offer(offer_id, current_user.id, data.reason)
    return {"success": True, "offer": OfferResponse.from_offer(offer).model_dump()}


# ============================================================================
# JOIN REQUESTS
# ============================================================================


@router.post("/join/{job_id}")
async def request_to_join(
    job_id: int,
    data: JoinJobRequest = JoinJobRequest(),
    current_user: User = Depends(get_current_user),
    service: CleanerApprovalService = Depends(get_approval_service),
):
    """Preferred cleaners are placed immediately, everyone else waits for the homeowner"""
    return service.request_to_join(job_id, current_user.id, data.roomAssignmentIds)


@router.get("/join-requests")
async def list_join_requests(
    current_user: User = Depends(get_current_user),
    service: CleanerApprovalService = Depends(get_approval_service),
):
    if current_user.type == "cleaner":
        requests = service.get_pending_requests_for_cleaner(current_user.id)
    else:
        requests = service.get_pending_requests_for_homeowner(current_user.id)
    return {"requests": requests}


@router.post("/join-requests/{request_id}/approve")
async def approve_join_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: CleanerApprovalService = Depends(get_approval_service),
):
    return service.approve_request(request_id, current_user.id)


@router.post("/join-requests/{request_id}/decline")
async def decline_join_request(
    request_id: int,
    data: DeclineRequest = DeclineRequest(),
    current_user: User = Depends(get_current_user),
    service: CleanerApprovalService = Depends(get_approval_service),
):
    return service.decline_request(request_id, current_user.id, data.reason)


@router.post("/join-requests/{request_id}/cancel")
async def cancel_join_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: CleanerApprovalService = Depends(get_approval_service),
):
    return service.cancel_request(request_id, current_user.id)


# ============================================================================
# ROOMS AND PROGRESS
# ============================================================================


@router.get("/assignments/{appointment_id}")
async def get_assignments(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: MultiCleanerJobService = Depends(get_job_service),
):
    rooms = service.get_all_room_assignments(appointment_id)
    return {"roomAssignments": [RoomAssignmentResponse.from_room(r).model_dump() for r in rooms]}


@router.get("/checklist/{appointment_id}")
async def get_checklist(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: MultiCleanerJobService = Depends(get_job_service),
):
    """Checklist for the current cleaner's rooms only"""
    rooms = service.get_cleaner_rooms(appointment_id, current_user.id)
    return service.generate_cleaner_checklist(current_user.id, rooms)


@router.post("/rooms/{room_id}/complete")
async def complete_room(
    room_id: int,
    current_user: User = Depends(get_current_user),
    service: MultiCleanerJobService = Depends(get_job_service),
):
    return service.complete_room(room_id, current_user.id)


@router.get("/status/{appointment_id}")
async def get_status(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: MultiCleanerJobService = Depends(get_job_service),
):
    return _with_job(service.get_job_status(appointment_id))


@router.get("/progress/{appointment_id}")
async def get_progress(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: MultiCleanerJobService = Depends(get_job_service),
):
    return service.get_job_progress(appointment_id)


@router.get("/earnings/{job_id}")
async def get_earnings(
    job_id: int,
    current_user: User = Depends(get_current_user),
    pricing: MultiCleanerPricingService = Depends(get_pricing_service),
):
    return pricing.generate_earnings_breakdown(job_id)


# ============================================================================
# DROPOUTS, SOLO AND EXTRA WORK
# ============================================================================


@router.post("/{appointment_id}/dropout")
async def drop_out(
    appointment_id: int,
    data: DropoutRequest = DropoutRequest(),
    current_user: User = Depends(get_current_user),
    service: DropoutService = Depends(get_dropout_service),
):
    job = service.jobs.get_job_for_appointment(appointment_id)
    logger.info(f"📤 Cleaner {current_user.id} dropping out of appointment {appointment_id}")
    return _with_job(service.handle_cleaner_dropout(job.id, current_user.id, data.reason))


@router.post("/{appointment_id}/accept-solo")
async def accept_solo(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: DropoutService = Depends(get_dropout_service),
):
    return service.accept_solo_completion(appointment_id, current_user.id)


@router.post("/{appointment_id}/decline-solo")
async def decline_solo(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: DropoutService = Depends(get_dropout_service),
):
    job = service.jobs.get_job_for_appointment(appointment_id)
    return {"success": True, **_with_job(service.handle_solo_decline(job.id, current_user.id))}


@router.post("/{appointment_id}/accept-extra-work")
async def accept_extra_work(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: DropoutService = Depends(get_dropout_service),
):
    job = service.jobs.get_job_for_appointment(appointment_id)
    return service.accept_extra_work(job.id, current_user.id)


@router.post("/{appointment_id}/decline-extra-work")
async def decline_extra_work(
    appointment_id: int,
    data: DeclineRequest = DeclineRequest(),
    current_user: User = Depends(get_current_user),
    service: DropoutService = Depends(get_dropout_service),
):
    job = service.jobs.get_job_for_appointment(appointment_id)
    return {"success": True, **_with_job(service.handle_decline_extra_work(job.id, current_user.id, data.reason))}


@router.get("/{appointment_id}/cleaners")
async def get_cleaners(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: MultiCleanerJobService = Depends(get_job_service),
):
    """Assigned cleaners with their rooms and earnings"""
    job = service.get_job_for_appointment(appointment_id)
    breakdown = service.pricing.generate_earnings_breakdown(job.id)
    completions = service.repo.get_all_completions(service.db, job.id)
    return {
        **breakdown,
        "completions": [CompletionResponse.from_completion(c).model_dump() for c in completions],
    }


@router.post("/{appointment_id}/homeowner-response")
async def homeowner_response(
    appointment_id: int,
    data: HomeownerResponseRequest,
    current_user: User = Depends(get_current_user),
    service: EdgeCaseService = Depends(get_edge_case_service),
):
    """Homeowner's answer to a fill warning or an edge case decision"""
    return service.handle_homeowner_response(
        appointment_id, current_user.id, data.response, data.rescheduleDate, data.reason
    )
