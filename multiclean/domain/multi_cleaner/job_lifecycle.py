"""
Multi-cleaner job lifecycle
Job creation, slot fill/release, room work and completion. Every slot change
recomputes cleaners_confirmed from the completion rows in the same transaction.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Appointment
from ...models_multi_cleaner import (
    COMPLETION_ASSIGNED,
    COMPLETION_COMPLETED,
    COMPLETION_DROPPED_OUT,
    COMPLETION_STARTED,
    INACTIVE_COMPLETION_STATUSES,
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_OPEN,
    JOB_TERMINAL_STATUSES,
    OFFER_PENDING,
    OFFER_WITHDRAWN,
    REQUEST_CANCELLED,
    REQUEST_PENDING,
    ROOM_COMPLETED,
    ROOM_IN_PROGRESS,
    ROOM_PENDING,
    CleanerJobCompletion,
    MultiCleanerJob,
    RoomAssignment,
)
from ...shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from . import room_splitter
from .classification import classify_home
from .notifications import NotificationContext, NotificationGateway, format_date, notify_safely
from .pricing import MultiCleanerPricingService
from .repository import MultiCleanerRepository
from .schemas import RoomAssignmentResponse

logger = logging.getLogger(__name__)


class MultiCleanerJobService:
    """Service layer for the multi-cleaner job state machine"""

    def __init__(
        self,
        db: Session,
        gateway: Optional[NotificationGateway] = None,
        pricing: Optional[MultiCleanerPricingService] = None,
    ):
        self.db = db
        self.repo = MultiCleanerRepository()
        self.gateway = gateway or NotificationGateway(db)
        self.pricing = pricing or MultiCleanerPricingService(db)

    # ==================== Loading ====================

    def get_job(self, job_id: int, for_update: bool = False) -> MultiCleanerJob:
        job = self.repo.get_job(self.db, job_id, for_update=for_update)
        if not job:
            raise NotFoundError("Multi-cleaner job not found")
        return job

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def get_job_for_appointment(self, appointment_id: int) -> MultiCleanerJob:
        job = self.repo.get_job_by_appointment(self.db, appointment_id)
        if not job:
            raise NotFoundError("Multi-cleaner job not found")
        return job

    # ==================== Home assessment ====================

    def get_job_check_info(self, appointment_id: int) -> dict:
        """Size classification and cleaner recommendation for an appointment's home"""
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment or not appointment.home:
            raise NotFoundError("Appointment or home not found")

        home = appointment.home
        recommended = room_splitter.calculate_recommended_cleaners(home)
        estimated_minutes = room_splitter.estimate_job_duration(home, recommended)

        return {
            **classify_home(home),
            "recommendedCleaners": recommended,
            "estimatedMinutes": estimated_minutes,
            "estimatedHours": round(estimated_minutes / 60, 1),
            "numBeds": home.num_beds,
            "numBaths": home.num_baths,
            "squareFootage": home.square_footage,
        }

    # ==================== Creation ====================

    def create_job(
        self,
        appointment_id: int,
        cleaner_count: int,
        primary_cleaner_id: Optional[int] = None,
        is_auto_generated: bool = False,
    ) -> MultiCleanerJob:
        """Create the job, its room units and their earnings shares; status starts open"""
        if not cleaner_count or cleaner_count < 1:
            raise ValidationFailedError("cleanerCount must be at least 1")

        appointment = self.get_appointment(appointment_id)
        home = appointment.home
        if not home:
            raise NotFoundError("Home not found")

        existing = self.repo.get_job_by_appointment(self.db, appointment_id)
        if existing:
            raise ConflictError(
                "Appointment already has a multi-cleaner job", {"multiCleanerJobId": existing.id}
            )

        job = MultiCleanerJob(
            appointment_id=appointment_id,
            total_cleaners_required=cleaner_count,
            cleaners_confirmed=0,
            status=JOB_OPEN,
            primary_cleaner_id=primary_cleaner_id,
            is_auto_generated=is_auto_generated,
            total_estimated_minutes=room_splitter.estimate_job_duration(home, cleaner_count),
            opened_to_market_at=datetime.utcnow(),
        )
        self.db.add(job)
        self.db.flush()

        rooms = self.create_room_assignments(job, home, cleaner_count)
        total_price = self.pricing.calculate_total_job_price(home, appointment, cleaner_count)
        self.pricing.update_room_earnings_shares(job.id, total_price)

        appointment.is_multi_cleaner_job = True
        appointment.multi_cleaner_job_id = job.id
        appointment.cleaner_slots_remaining = cleaner_count

        self.db.commit()
        self.db.refresh(job)
        logger.info(
            f"✅ Created multi-cleaner job {job.id} for appointment {appointment_id} "
            f"({cleaner_count} cleaners, {len(rooms)} rooms)"
        )
        return job

    def convert_to_multi_cleaner_job(self, appointment_id: int) -> MultiCleanerJob:
        """Auto-create a job sized by the recommended cleaner count"""
        appointment = self.get_appointment(appointment_id)
        if not appointment.home:
            raise NotFoundError("Home not found")
        recommended = room_splitter.calculate_recommended_cleaners(appointment.home)
        return self.create_job(appointment_id, recommended, None, True)

    def create_room_assignments(self, job: MultiCleanerJob, home, cleaner_count: int) -> list[RoomAssignment]:
        groups = room_splitter.split_rooms_proportionally(home, cleaner_count)
        return self.repo.create_rooms(self.db, job, groups)

    # ==================== Room selection ====================

    def pick_rooms_for_next_slot(self, job: MultiCleanerJob) -> list[int]:
        """
        Rooms for the next cleaner: the lowest split group that is still fully
        unassigned, otherwise the heaviest share of what is left.
        """
        rooms = self.repo.get_rooms(self.db, job.id)
        unassigned = [r for r in rooms if r.cleaner_id is None]
        if not unassigned:
            return []

        groups: dict[int, list[RoomAssignment]] = {}
        for room in rooms:
            if room.cleaner_slot_index is not None:
                groups.setdefault(room.cleaner_slot_index, []).append(room)

        for slot_index in sorted(groups):
            group = groups[slot_index]
            if all(r.cleaner_id is None for r in group):
                return [r.id for r in group]

        open_slots = max(1, job.remaining_slots())
        take = math.ceil(len(unassigned) / open_slots)
        heaviest = sorted(unassigned, key=lambda r: (-r.estimated_minutes, r.id))
        return [r.id for r in heaviest[:take]]

    # ==================== Slots ====================

    def _sync_appointment(self, job: MultiCleanerJob) -> None:
        appointment = job.appointment
        if appointment is None:
            return
        cleaner_ids = self.repo.active_cleaner_ids(self.db, job.id)
        # Reassign rather than mutate so the JSON column is flagged dirty
        appointment.employees_assigned = [str(cid) for cid in cleaner_ids]
        appointment.cleaner_slots_remaining = job.remaining_slots()
        appointment.has_been_assigned = len(cleaner_ids) > 0

    def fill_slot(
        self,
        job_id: int,
        cleaner_id: int,
        room_assignment_ids: Optional[list[int]] = None,
        commit: bool = True,
    ) -> dict:
        """
        Give a cleaner one slot on the job.

        Rooms are claimed with a conditional update, so a racing caller that
        asked for the same rooms claims none of them. Calling again for a
        cleaner who already holds a slot is a no-op.
        """
        job = self.get_job(job_id, for_update=True)
        if job.status in JOB_TERMINAL_STATUSES:
            raise ConflictError("This job is no longer accepting cleaners")

        existing = self.repo.get_active_completion(self.db, job.id, cleaner_id)
        if existing:
            logger.debug(f"Cleaner {cleaner_id} already holds a slot on job {job.id}")
            return {
                "job": job,
                "completion": existing,
                "assignedRoomIds": [r.id for r in self.repo.get_cleaner_rooms(self.db, job.id, cleaner_id)],
                "alreadyAssigned": True,
            }

        self.repo.recompute_confirmed(self.db, job)
        if job.is_filled():
            raise ConflictError("All cleaner slots are already filled")

        explicit_rooms = room_assignment_ids is not None and len(room_assignment_ids) > 0
        room_ids = list(room_assignment_ids) if explicit_rooms else self.pick_rooms_for_next_slot(job)

        claimed = self.repo.claim_rooms(self.db, job.id, room_ids, cleaner_id)
        if explicit_rooms and claimed == 0:
            self.db.rollback()
            logger.warning(f"⚠️ Cleaner {cleaner_id} lost the race for rooms {room_ids} on job {job_id}")
            raise ConflictError("Selected rooms are already assigned to another cleaner")
        if not explicit_rooms and claimed == 0 and room_ids:
            # Another fill took the picked rooms first; pick again from what is left
            room_ids = self.pick_rooms_for_next_slot(job)
            claimed = self.repo.claim_rooms(self.db, job.id, room_ids, cleaner_id)
        if claimed == 0:
            logger.warning(f"⚠️ Cleaner {cleaner_id} takes a slot on job {job.id} with no rooms left to clean")

        completion = CleanerJobCompletion(
            job_id=job.id,
            appointment_id=job.appointment_id,
            cleaner_id=cleaner_id,
            status=COMPLETION_ASSIGNED,
        )
        self.db.add(completion)

        count = self.repo.recompute_confirmed(self.db, job)
        if count > job.total_cleaners_required:
            self.db.rollback()
            raise ConflictError("All cleaner slots are already filled")

        self._sync_appointment(job)
        if commit:
            self.db.commit()
            self.db.refresh(job)

        assigned = [r.id for r in self.repo.get_cleaner_rooms(self.db, job.id, cleaner_id)]
        logger.info(
            f"✅ Cleaner {cleaner_id} filled a slot on job {job.id} "
            f"({job.cleaners_confirmed}/{job.total_cleaners_required}, {claimed} rooms, status={job.status})"
        )
        return {"job": job, "completion": completion, "assignedRoomIds": assigned, "alreadyAssigned": False}

    def release_slot(
        self,
        job_id: int,
        cleaner_id: int,
        status: str = COMPLETION_DROPPED_OUT,
        reason: Optional[str] = None,
        commit: bool = True,
    ) -> MultiCleanerJob:
        """Unassign the cleaner's unfinished rooms and end their completion with ``status``"""
        if status not in INACTIVE_COMPLETION_STATUSES:
            raise ValidationFailedError(f"Invalid release status: {status}")

        job = self.get_job(job_id, for_update=True)
        if job.status in JOB_TERMINAL_STATUSES:
            raise ConflictError("This job is no longer active")
        completion = self.repo.get_active_completion(self.db, job.id, cleaner_id)
        if not completion:
            raise NotFoundError("Cleaner is not assigned to this job")
        if completion.status == COMPLETION_COMPLETED:
            raise ConflictError("Cleaner has already completed their work on this job")

        released = self.repo.release_rooms(self.db, job.id, cleaner_id)
        completion.status = status
        completion.dropout_reason = reason

        self.repo.recompute_confirmed(self.db, job)
        self._sync_appointment(job)
        if commit:
            self.db.commit()
            self.db.refresh(job)

        logger.info(
            f"📤 Released cleaner {cleaner_id} from job {job.id} as {status} "
            f"({released} rooms back to pending, {job.cleaners_confirmed}/{job.total_cleaners_required})"
        )
        return job

    # ==================== Rebalancing ====================

    def rebalance_unassigned_rooms(self, job_id: int) -> dict:
        """
        Hand unassigned rooms to the active cleaners. One cleaner takes them
        all; several are packed by effort on top of what they already hold.
        Does not commit.
        """
        cleaner_ids = self.repo.active_cleaner_ids(self.db, job_id)
        if not cleaner_ids:
            return {"rebalanced": False, "reason": "no_cleaners", "assignments": []}

        unassigned = self.repo.get_unassigned_rooms(self.db, job_id)
        if not unassigned:
            return {"rebalanced": False, "reason": "no_unassigned_rooms", "assignments": []}

        if len(cleaner_ids) == 1:
            plan = {cleaner_ids[0]: [r.id for r in unassigned]}
        else:
            loads = []
            for cleaner_id in cleaner_ids:
                held = self.repo.get_cleaner_rooms(self.db, job_id, cleaner_id)
                loads.append(sum(r.estimated_minutes for r in held))

            units = [{"id": r.id, "estimated_minutes": r.estimated_minutes} for r in unassigned]
            groups = room_splitter.pack_rooms(units, len(cleaner_ids), initial_loads=loads)
            plan = {cleaner_ids[i]: [u["id"] for u in group] for i, group in enumerate(groups)}

        assignments = []
        for cleaner_id, room_ids in plan.items():
            if not room_ids:
                continue
            claimed = self.repo.claim_rooms(self.db, job_id, room_ids, cleaner_id)
            assignments.append({"cleanerId": cleaner_id, "roomIds": room_ids, "claimed": claimed})

        self.db.flush()
        logger.info(f"🔄 Rebalanced {len(unassigned)} rooms on job {job_id} across {len(cleaner_ids)} cleaner(s)")
        return {"rebalanced": True, "assignments": assignments}

    # ==================== Room work ====================

    def get_cleaner_rooms(self, appointment_id: int, cleaner_id: int) -> list[RoomAssignment]:
        job = self.repo.get_job_by_appointment(self.db, appointment_id)
        if not job:
            return []
        return self.repo.get_cleaner_rooms(self.db, job.id, cleaner_id)

    def get_all_room_assignments(self, appointment_id: int) -> list[RoomAssignment]:
        job = self.repo.get_job_by_appointment(self.db, appointment_id)
        if not job:
            return []
        return self.repo.get_rooms(self.db, job.id)

    def generate_cleaner_checklist(self, cleaner_id: int, rooms: list[RoomAssignment]) -> dict:
        sections = []
        for room in rooms:
            sections.append(
                {
                    "roomAssignmentId": room.id,
                    "roomType": room.room_type,
                    "roomLabel": room.display_label(),
                    "status": room.status,
                    "estimatedMinutes": room.estimated_minutes,
                    "tasks": room_splitter.checklist_for_room(room.room_type),
                }
            )
        return {
            "cleanerId": cleaner_id,
            "rooms": sections,
            "totalRooms": len(sections),
            "totalTasks": sum(len(s["tasks"]) for s in sections),
            "estimatedMinutes": sum(room.estimated_minutes for room in rooms),
        }

    def validate_room_completion(self, cleaner_id: int, room_id: int) -> dict:
        """A room can be completed once it has at least one before and one after photo"""
        room = self.repo.get_room(self.db, room_id)
        if not room:
            return {"valid": False, "error": "Room assignment not found"}
        if room.cleaner_id != cleaner_id:
            return {"valid": False, "error": "Room not assigned to this cleaner"}

        before = self.repo.count_photos(self.db, room_id, "before")
        after = self.repo.count_photos(self.db, room_id, "after")
        if before == 0 or after == 0:
            missing = []
            if before == 0:
                missing.append("before")
            if after == 0:
                missing.append("after")
            return {
                "valid": False,
                "error": f"Missing {' and '.join(missing)} photo(s) for {room.display_label()}",
                "beforePhotoCount": before,
                "afterPhotoCount": after,
            }

        return {"valid": True, "beforePhotoCount": before, "afterPhotoCount": after}

    def start_room(self, room: RoomAssignment, cleaner_id: int) -> None:
        if room.status == ROOM_PENDING:
            room.status = ROOM_IN_PROGRESS
        completion = self.repo.get_active_completion(self.db, room.job_id, cleaner_id)
        if completion and completion.status == COMPLETION_ASSIGNED:
            completion.status = COMPLETION_STARTED
            completion.started_at = datetime.utcnow()

    def complete_room(self, room_id: int, cleaner_id: int) -> dict:
        room = self.repo.get_room(self.db, room_id)
        if not room:
            raise NotFoundError("Room assignment not found")
        if room.cleaner_id != cleaner_id:
            raise ForbiddenError("This room is not assigned to you")

        validation = self.validate_room_completion(cleaner_id, room_id)
        if not validation["valid"]:
            raise ValidationFailedError(
                validation["error"],
                {
                    "beforePhotoCount": validation.get("beforePhotoCount", 0),
                    "afterPhotoCount": validation.get("afterPhotoCount", 0),
                },
            )

        self.start_room(room, cleaner_id)
        room.status = ROOM_COMPLETED
        room.completed_at = datetime.utcnow()
        self.db.flush()

        cleaner_rooms = self.repo.get_cleaner_rooms(self.db, room.job_id, cleaner_id)
        all_complete = all(r.status == ROOM_COMPLETED for r in cleaner_rooms)
        if all_complete:
            self.mark_cleaner_complete(room.job_id, cleaner_id, commit=False)

        self.db.commit()
        job = self.get_job(room.job_id)
        logger.info(f"✅ Room {room_id} ({room.display_label()}) completed by cleaner {cleaner_id}")
        if job.status == JOB_COMPLETED and all_complete:
            self._notify_job_completed(job)

        return {
            "success": True,
            "assignment": RoomAssignmentResponse.from_room(room).model_dump(),
            "allRoomsComplete": all_complete,
            "jobCompleted": job.status == JOB_COMPLETED,
        }

    def mark_cleaner_complete(self, job_id: int, cleaner_id: int, commit: bool = True) -> Optional[CleanerJobCompletion]:
        """Close out a cleaner's rooms and completion; the job completes when every room is done"""
        job = self.get_job(job_id)
        self.repo.complete_cleaner_rooms(self.db, job_id, cleaner_id)

        completion = self.repo.get_active_completion(self.db, job_id, cleaner_id)
        if completion:
            completion.status = COMPLETION_COMPLETED
            completion.completed_at = datetime.utcnow()

        self.db.flush()
        became_complete = self.check_job_fully_complete(job)
        if commit:
            self.db.commit()
            if became_complete:
                self._notify_job_completed(job)
        return completion

    def check_job_fully_complete(self, job: MultiCleanerJob) -> bool:
        if job.status == JOB_CANCELLED:
            return False
        total = self.repo.count_rooms(self.db, job.id)
        completed = self.repo.count_rooms(self.db, job.id, ROOM_COMPLETED)
        if total > 0 and completed == total:
            if job.status != JOB_COMPLETED:
                job.status = JOB_COMPLETED
                logger.info(f"🎉 Multi-cleaner job {job.id} completed")
            return True
        return False

    def _notify_job_completed(self, job: MultiCleanerJob) -> None:
        appointment = job.appointment
        notify_safely(
            self.gateway,
            appointment.user_id,
            NotificationContext.JOB_COMPLETED,
            data={"appointmentId": appointment.id, "multiCleanerJobId": job.id},
            date=format_date(appointment.date),
        )

    # ==================== Views ====================

    def get_job_status(self, appointment_id: int) -> dict:
        appointment = self.get_appointment(appointment_id)
        if not appointment.is_multi_cleaner_job:
            raise ConflictError("Not a multi-cleaner job")
        job = self.get_job_for_appointment(appointment_id)

        completions = self.repo.get_all_completions(self.db, job.id)
        rooms = self.repo.get_rooms(self.db, job.id)

        names = {}
        for cleaner_id in {c.cleaner_id for c in completions} | {r.cleaner_id for r in rooms if r.cleaner_id}:
            user = self.repo.get_user(self.db, cleaner_id)
            names[cleaner_id] = user.display_name if user else "Unknown"

        completed_rooms = sum(1 for r in rooms if r.status == ROOM_COMPLETED)
        return {
            "job": job,
            "cleaners": [
                {
                    "id": c.cleaner_id,
                    "name": names.get(c.cleaner_id, "Unknown"),
                    "status": c.status,
                    "completedAt": c.completed_at,
                }
                for c in completions
            ],
            "roomAssignments": [
                {
                    "id": r.id,
                    "room": r.display_label(),
                    "cleanerId": r.cleaner_id,
                    "cleanerName": names.get(r.cleaner_id, "Unassigned") if r.cleaner_id else "Unassigned",
                    "status": r.status,
                }
                for r in rooms
            ],
            "progress": {
                "totalRooms": len(rooms),
                "completedRooms": completed_rooms,
                "percent": round(completed_rooms / len(rooms) * 100) if rooms else 0,
            },
        }

    def get_job_progress(self, appointment_id: int) -> dict:
        job = self.get_job_for_appointment(appointment_id)
        rooms = self.repo.get_rooms(self.db, job.id)

        progress = {"total": 0, "completed": 0, "inProgress": 0, "pending": 0}
        for room in rooms:
            progress["total"] += 1
            if room.status == ROOM_COMPLETED:
                progress["completed"] += 1
            elif room.status == ROOM_IN_PROGRESS:
                progress["inProgress"] += 1
            else:
                progress["pending"] += 1
        progress["percent"] = round(progress["completed"] / progress["total"] * 100) if progress["total"] else 0

        return {"appointmentId": appointment_id, "progress": progress, "jobStatus": job.status}

    def handle_partial_completion(self, job_id: int) -> dict:
        """Where a job stands when only some cleaners finished"""
        job = self.get_job(job_id)
        rooms = self.repo.get_rooms(self.db, job_id)
        completions = self.repo.get_all_completions(self.db, job_id)

        completed_rooms = sum(1 for r in rooms if r.status == ROOM_COMPLETED)
        return {
            "job": job,
            "totalRooms": len(rooms),
            "completedRooms": completed_rooms,
            "completionPercentage": round(completed_rooms / len(rooms) * 100) if rooms else 0,
            "completedCleaners": sum(1 for c in completions if c.status == COMPLETION_COMPLETED),
            "incompleteCleaners": sum(
                1 for c in completions if c.status not in (COMPLETION_COMPLETED, *INACTIVE_COMPLETION_STATUSES)
            ),
        }

    # ==================== Cancellation ====================

    def close_job(self, job: MultiCleanerJob, reason: Optional[str] = None) -> list[int]:
        """
        Withdraw pending offers, cancel pending join requests, release every
        active cleaner and free the appointment. Does not commit; returns the
        released cleaner ids.
        """
        now = datetime.utcnow()
        withdrawn = 0
        for offer in self.repo.get_pending_offers_for_job(self.db, job.id):
            withdrawn += self.repo.transition_offer(
                self.db, offer.id, OFFER_PENDING, OFFER_WITHDRAWN, responded_at=now
            )
        cancelled_requests = 0
        for request in self.repo.get_pending_join_requests(self.db, job_id=job.id):
            cancelled_requests += self.repo.transition_join_request(
                self.db, request.id, REQUEST_PENDING, REQUEST_CANCELLED, responded_at=now
            )

        released = []
        for completion in self.repo.get_active_completions(self.db, job.id):
            completion.status = COMPLETION_DROPPED_OUT
            completion.dropout_reason = reason or "job_cancelled"
            released.append(completion.cleaner_id)
        self.db.query(RoomAssignment).filter(
            RoomAssignment.job_id == job.id, RoomAssignment.status != ROOM_COMPLETED
        ).update(
            {RoomAssignment.cleaner_id: None, RoomAssignment.status: ROOM_PENDING},
            synchronize_session="fetch",
        )

        job.status = JOB_CANCELLED
        self.repo.recompute_confirmed(self.db, job)
        self._sync_appointment(job)
        job.appointment.payment_status = "cancelled"

        logger.info(
            f"🛑 Closing job {job.id}: {withdrawn} offers withdrawn, {cancelled_requests} requests cancelled, "
            f"{len(released)} cleaners released"
        )
        return released

    def cancel_job(self, job_id: int, reason: Optional[str] = None) -> MultiCleanerJob:
        """Cancel before completion and tell the released cleaners"""
        job = self.get_job(job_id, for_update=True)
        if job.status == JOB_COMPLETED:
            raise ConflictError("Job has already been completed")
        if job.status == JOB_CANCELLED:
            return job

        released = self.close_job(job, reason)
        self.db.commit()

        appointment = job.appointment
        for cleaner_id in released:
            notify_safely(
                self.gateway,
                cleaner_id,
                NotificationContext.JOB_CANCELLED,
                data={"appointmentId": appointment.id, "multiCleanerJobId": job.id},
                date=format_date(appointment.date),
            )
        return job
