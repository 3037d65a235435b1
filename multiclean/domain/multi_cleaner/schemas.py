"""Multi-cleaner domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...models_multi_cleaner import (
    CleanerJobCompletion,
    CleanerJobOffer,
    CleanerJoinRequest,
    MultiCleanerJob,
    RoomAssignment,
)
from ...shared.validators import parse_iso_date, validate_positive_int

HOMEOWNER_RESPONSES = ("proceed_with_one", "proceed_edge_case", "cancel_edge_case", "cancel", "reschedule")


class CreateJobRequest(BaseModel):
    """Schema for creating a multi-cleaner job"""

    appointmentId: int
    cleanerCount: int
    primaryCleanerId: Optional[int] = None

    @field_validator("cleanerCount")
    @classmethod
    def validate_cleaner_count(cls, v):
        return validate_positive_int(v, "cleanerCount")


class DeclineRequest(BaseModel):
    """Optional reason for declining an offer, request or extra work"""

    reason: Optional[str] = None


class JoinJobRequest(BaseModel):
    roomAssignmentIds: Optional[list[int]] = None


class DropoutRequest(BaseModel):
    reason: Optional[str] = None


class HomeownerResponseRequest(BaseModel):
    """Schema for the homeowner's answer to a fill warning or edge case decision"""

    response: str
    rescheduleDate: Optional[date] = None
    reason: Optional[str] = None

    @field_validator("rescheduleDate", mode="before")
    @classmethod
    def parse_reschedule_date(cls, v):
        return parse_iso_date(v)


class JobResponse(BaseModel):
    """Schema for a multi-cleaner job"""

    id: int
    appointmentId: int
    totalCleanersRequired: int
    cleanersConfirmed: int
    status: str
    isAutoGenerated: bool
    primaryCleanerId: Optional[int] = None
    totalEstimatedMinutes: Optional[int] = None
    edgeCaseDecisionRequired: bool = False
    homeownerDecision: Optional[str] = None
    edgeCaseDecisionExpiresAt: Optional[datetime] = None
    soloOfferExpiresAt: Optional[datetime] = None
    extraWorkOffersExpireAt: Optional[datetime] = None
    remainingSlots: int

    @classmethod
    def from_job(cls, job: MultiCleanerJob) -> "JobResponse":
        return cls(
            id=job.id,
            appointmentId=job.appointment_id,
            totalCleanersRequired=job.total_cleaners_required,
            cleanersConfirmed=job.cleaners_confirmed,
            status=job.status,
            isAutoGenerated=job.is_auto_generated,
            primaryCleanerId=job.primary_cleaner_id,
            totalEstimatedMinutes=job.total_estimated_minutes,
            edgeCaseDecisionRequired=job.edge_case_decision_required,
            homeownerDecision=job.homeowner_decision,
            edgeCaseDecisionExpiresAt=job.edge_case_decision_expires_at,
            soloOfferExpiresAt=job.solo_offer_expires_at,
            extraWorkOffersExpireAt=job.extra_work_offers_expire_at,
            remainingSlots=job.remaining_slots(),
        )


class RoomAssignmentResponse(BaseModel):
    id: int
    roomType: str
    roomNumber: int
    roomLabel: str
    estimatedMinutes: int
    cleanerSlotIndex: Optional[int] = None
    cleanerId: Optional[int] = None
    status: str
    earningsShare: Optional[int] = None
    completedAt: Optional[datetime] = None

    @classmethod
    def from_room(cls, room: RoomAssignment) -> "RoomAssignmentResponse":
        return cls(
            id=room.id,
            roomType=room.room_type,
            roomNumber=room.room_number,
            roomLabel=room.display_label(),
            estimatedMinutes=room.estimated_minutes,
            cleanerSlotIndex=room.cleaner_slot_index,
            cleanerId=room.cleaner_id,
            status=room.status,
            earningsShare=room.earnings_share,
            completedAt=room.completed_at,
        )


class CompletionResponse(BaseModel):
    id: int
    cleanerId: int
    status: str
    dropoutReason: Optional[str] = None
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None

    @classmethod
    def from_completion(cls, completion: CleanerJobCompletion) -> "CompletionResponse":
        return cls(
            id=completion.id,
            cleanerId=completion.cleaner_id,
            status=completion.status,
            dropoutReason=completion.dropout_reason,
            startedAt=completion.started_at,
            completedAt=completion.completed_at,
        )


class OfferResponse(BaseModel):
    id: int
    multiCleanerJobId: int
    appointmentId: int
    cleanerId: int
    offerType: str
    status: str
    earningsOffered: Optional[int] = None
    roomsOffered: Optional[list] = None
    declinedReason: Optional[str] = None
    expiresAt: datetime
    respondedAt: Optional[datetime] = None

    @classmethod
    def from_offer(cls, offer: CleanerJobOffer) -> "OfferResponse":
        return cls(
            id=offer.id,
            multiCleanerJobId=offer.job_id,
            appointmentId=offer.appointment_id,
            cleanerId=offer.cleaner_id,
            offerType=offer.offer_type,
            status=offer.status,
            earningsOffered=offer.earnings_offered,
            roomsOffered=offer.rooms_offered,
            declinedReason=offer.declined_reason,
            expiresAt=offer.expires_at,
            respondedAt=offer.responded_at,
        )


class JoinRequestResponse(BaseModel):
    id: int
    multiCleanerJobId: int
    appointmentId: int
    cleanerId: int
    cleanerName: Optional[str] = None
    homeownerId: int
    status: str
    roomAssignmentIds: list[int] = []
    declinedReason: Optional[str] = None
    expiresAt: datetime
    respondedAt: Optional[datetime] = None

    @classmethod
    def from_request(cls, request: CleanerJoinRequest) -> "JoinRequestResponse":
        return cls(
            id=request.id,
            multiCleanerJobId=request.job_id,
            appointmentId=request.appointment_id,
            cleanerId=request.cleaner_id,
            cleanerName=request.cleaner.display_name if request.cleaner else None,
            homeownerId=request.homeowner_id,
            status=request.status,
            roomAssignmentIds=request.room_assignment_ids or [],
            declinedReason=request.declined_reason,
            expiresAt=request.expires_at,
            respondedAt=request.responded_at,
        )


def validate_homeowner_response(value: str) -> str:
    """Raises ValueError with the list of accepted responses"""
    if value not in HOMEOWNER_RESPONSES:
        raise ValueError(
            "Invalid response. Use: proceed_with_one, proceed_edge_case, cancel_edge_case, cancel, or reschedule"
        )
    return value
