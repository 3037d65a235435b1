"""
Multi-cleaner pricing
Total job price, platform fee and per-cleaner earnings splits. All amounts in cents.
"""

import logging
import math
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models import Appointment, Home
from ...models_multi_cleaner import MultiCleanerJob, RoomAssignment
from ...shared.errors import NotFoundError
from ...shared.validators import to_float
from .repository import MultiCleanerRepository

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_cents(cents: Optional[int]) -> str:
    return f"${(cents or 0) / 100:.2f}"


class MultiCleanerPricingService:
    """Financial calculations for multi-cleaner jobs"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = MultiCleanerRepository()

    def calculate_total_job_price(self, home: Home, appointment: Optional[Appointment] = None, cleaner_count: int = 1) -> int:
        """
        Price the homeowner pays for the whole cleaning. The cleaner count
        does not change the price; coordination is absorbed by the platform.
        """
        beds = int(to_float(home.num_beds if home else None))
        baths = to_float(home.num_baths if home else None)
        full_baths = int(math.floor(baths))
        has_half_bath = (baths % 1) >= 0.5

        total = config.BASE_PRICE_CENTS
        total += max(0, beds - 1) * config.PRICE_PER_EXTRA_BED_CENTS
        total += max(0, full_baths - 1) * config.PRICE_PER_EXTRA_BATH_CENTS
        if has_half_bath:
            total += config.HALF_BATH_PRICE_CENTS
        return total

    def calculate_per_cleaner_earnings(
        self,
        total_price_cents: int,
        cleaner_count: int,
        room_assignments: Optional[list[RoomAssignment]] = None,
    ) -> dict:
        """
        Split the net (after platform fee) between cleaners.

        Without rooms the split is equal and the first cleaner gets the
        leftover cents. With rooms it is proportional to each cleaner's
        estimated minutes and the last cleaner gets the leftover.
        """
        fee_percent = config.PLATFORM_FEE_PERCENT
        platform_fee = round_half_up(total_price_cents * fee_percent)
        net_for_cleaners = total_price_cents - platform_fee
        cleaner_count = max(1, cleaner_count)

        earnings = []
        if not room_assignments:
            per_cleaner = net_for_cleaners // cleaner_count
            remainder = net_for_cleaners - per_cleaner * cleaner_count
            for i in range(cleaner_count):
                earnings.append(
                    {
                        "cleanerIndex": i,
                        "grossAmount": round_half_up(total_price_cents / cleaner_count),
                        "platformFee": round_half_up(platform_fee / cleaner_count),
                        "netAmount": per_cleaner + (remainder if i == 0 else 0),
                        "percentOfWork": round_half_up(100 / cleaner_count),
                    }
                )
        else:
            total_effort = sum(r.estimated_minutes or 0 for r in room_assignments)

            # Keyed by cleaner, or by split group while the room is unassigned
            efforts: dict = {}
            for room in room_assignments:
                key = room.cleaner_id if room.cleaner_id is not None else f"slot-{room.cleaner_slot_index}"
                efforts[key] = efforts.get(key, 0) + (room.estimated_minutes or 0)

            allocated = 0
            keys = list(efforts.keys())
            for i, key in enumerate(keys):
                effort = efforts[key]
                ratio = effort / total_effort if total_effort else 0
                if i == len(keys) - 1:
                    net_amount = net_for_cleaners - allocated
                else:
                    net_amount = round_half_up(ratio * net_for_cleaners)
                    allocated += net_amount

                earnings.append(
                    {
                        "cleanerId": key if isinstance(key, int) else None,
                        "cleanerIndex": i,
                        "grossAmount": round_half_up(ratio * total_price_cents),
                        "platformFee": round_half_up(ratio * platform_fee),
                        "netAmount": net_amount,
                        "percentOfWork": round_half_up(ratio * 100),
                        "estimatedMinutes": effort,
                    }
                )

        return {
            "totalPrice": total_price_cents,
            "platformFee": platform_fee,
            "netForCleaners": net_for_cleaners,
            "platformFeePercent": fee_percent,
            "cleanerEarnings": earnings,
        }

    def per_cleaner_share(self, job: MultiCleanerJob) -> int:
        """Net amount a cleaner is offered for one equal slot of the job"""
        appointment = job.appointment
        total = self.calculate_total_job_price(appointment.home, appointment, job.total_cleaners_required)
        breakdown = self.calculate_per_cleaner_earnings(total, job.total_cleaners_required)
        return breakdown["cleanerEarnings"][0]["netAmount"]

    def calculate_solo_completion_earnings(self, appointment_id: int) -> int:
        """Full job pay for one cleaner: regular platform fee plus any large-home bonus"""
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")

        total = self.calculate_total_job_price(appointment.home, appointment, 1)
        platform_fee = round_half_up(total * config.SOLO_PLATFORM_FEE_PERCENT)
        return total - platform_fee + config.SOLO_LARGE_HOME_BONUS_CENTS

    def calculate_partial_payment(self, completed_rooms: int, total_rooms: int, total_price_cents: int) -> dict:
        ratio = completed_rooms / total_rooms if total_rooms > 0 else 0
        partial_price = round_half_up(total_price_cents * ratio)
        platform_fee = round_half_up(partial_price * config.PLATFORM_FEE_PERCENT)
        return {
            "completedRooms": completed_rooms,
            "totalRooms": total_rooms,
            "completionPercentage": round_half_up(ratio * 100),
            "partialPrice": partial_price,
            "platformFee": platform_fee,
            "netForCleaners": partial_price - platform_fee,
        }

    def update_room_earnings_shares(self, job_id: int, total_price_cents: int) -> list[RoomAssignment]:
        """Store each room's share of the net, proportional to its estimated minutes"""
        rooms = self.repo.get_rooms(self.db, job_id)
        total_effort = sum(r.estimated_minutes or 0 for r in rooms)
        net_for_cleaners = round_half_up(total_price_cents * (1 - config.PLATFORM_FEE_PERCENT))

        for room in rooms:
            ratio = (room.estimated_minutes / total_effort) if total_effort else 0
            room.earnings_share = round_half_up(net_for_cleaners * ratio)

        self.db.flush()
        return rooms

    def _load_job(self, job_id: int) -> MultiCleanerJob:
        job = self.repo.get_job(self.db, job_id)
        if not job:
            raise NotFoundError("Multi-cleaner job not found")
        return job

    def recalculate_earnings_after_dropout(self, job_id: int) -> dict:
        """
        New earnings for each remaining cleaner once rooms have been
        rebalanced. The homeowner still pays for the full job, so the extra
        over the original equal share goes to whoever covers the rooms.
        """
        job = self._load_job(job_id)
        appointment = job.appointment
        total = self.calculate_total_job_price(appointment.home, appointment, job.total_cleaners_required)

        active = self.repo.get_active_completions(self.db, job_id)
        if not active:
            return {"earnings": [], "totalPriceCents": total, "remainingCleaners": 0}

        rooms = self.update_room_earnings_shares(job_id, total)

        per_cleaner = {
            c.cleaner_id: {"cleanerId": c.cleaner_id, "roomCount": 0, "totalEarnings": 0, "extraEarnings": 0}
            for c in active
        }
        for room in rooms:
            if room.cleaner_id in per_cleaner:
                per_cleaner[room.cleaner_id]["roomCount"] += 1
                per_cleaner[room.cleaner_id]["totalEarnings"] += room.earnings_share or 0

        net_for_cleaners = round_half_up(total * (1 - config.PLATFORM_FEE_PERCENT))
        original_share = round_half_up(net_for_cleaners / job.total_cleaners_required)

        earnings = []
        for entry in per_cleaner.values():
            entry["extraEarnings"] = entry["totalEarnings"] - original_share
            entry["totalEarningsFormatted"] = format_cents(entry["totalEarnings"])
            entry["extraEarningsFormatted"] = format_cents(entry["extraEarnings"])
            earnings.append(entry)

        return {
            "earnings": earnings,
            "totalPriceCents": total,
            "netForCleaners": net_for_cleaners,
            "remainingCleaners": len(active),
            "originalCleanersRequired": job.total_cleaners_required,
            "platformFeePercent": config.PLATFORM_FEE_PERCENT,
        }

    def generate_earnings_breakdown(self, job_id: int) -> dict:
        """Per-cleaner rooms and earnings for display"""
        job = self._load_job(job_id)
        appointment = job.appointment
        home = appointment.home
        total = self.calculate_total_job_price(home, appointment, job.total_cleaners_required)

        rooms = self.repo.get_rooms(self.db, job_id)
        breakdown = self.calculate_per_cleaner_earnings(total, job.total_cleaners_required, rooms)
        by_cleaner = {e["cleanerId"]: e for e in breakdown["cleanerEarnings"] if e.get("cleanerId") is not None}

        cleaner_rooms: dict[int, list[str]] = {}
        for room in rooms:
            if room.cleaner_id is not None:
                cleaner_rooms.setdefault(room.cleaner_id, []).append(room.display_label())

        cleaner_details = []
        for cleaner_id, labels in cleaner_rooms.items():
            cleaner = self.repo.get_user(self.db, cleaner_id)
            earning = by_cleaner.get(cleaner_id)
            cleaner_details.append(
                {
                    "cleanerId": cleaner_id,
                    "cleanerName": cleaner.display_name if cleaner else "Unassigned",
                    "assignedRooms": labels,
                    "earnings": {
                        "grossAmount": earning["grossAmount"],
                        "platformFee": earning["platformFee"],
                        "netAmount": earning["netAmount"],
                        "percentOfWork": earning["percentOfWork"],
                    }
                    if earning
                    else None,
                }
            )

        return {
            "multiCleanerJobId": job.id,
            "appointmentId": appointment.id,
            "appointmentDate": appointment.date.isoformat() if appointment.date else None,
            "homeAddress": f"{home.address}, {home.city}" if home else None,
            "totalPrice": total,
            "totalPriceFormatted": format_cents(total),
            "platformFee": breakdown["platformFee"],
            "platformFeePercent": breakdown["platformFeePercent"] * 100,
            "netForCleaners": breakdown["netForCleaners"],
            "cleanersRequired": job.total_cleaners_required,
            "cleanersConfirmed": job.cleaners_confirmed,
            "cleanerDetails": cleaner_details,
        }
