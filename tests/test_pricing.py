"""
Tests for job pricing and earnings splits.
"""

import pytest

from multiclean import config
from multiclean.domain.multi_cleaner.pricing import MultiCleanerPricingService, format_cents, round_half_up
from multiclean.models_multi_cleaner import RoomAssignment


@pytest.fixture(autouse=True)
def price_table(monkeypatch):
    monkeypatch.setattr(config, "PLATFORM_FEE_PERCENT", 0.13)
    monkeypatch.setattr(config, "SOLO_PLATFORM_FEE_PERCENT", 0.10)
    monkeypatch.setattr(config, "SOLO_LARGE_HOME_BONUS_CENTS", 0)
    monkeypatch.setattr(config, "BASE_PRICE_CENTS", 15000)
    monkeypatch.setattr(config, "PRICE_PER_EXTRA_BED_CENTS", 5000)
    monkeypatch.setattr(config, "PRICE_PER_EXTRA_BATH_CENTS", 5000)
    monkeypatch.setattr(config, "HALF_BATH_PRICE_CENTS", 2500)


@pytest.fixture
def pricing(db):
    return MultiCleanerPricingService(db)


class TestHelpers:
    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.49) == 2

    def test_format_cents(self):
        assert format_cents(15225) == "$152.25"


class TestTotalPrice:
    def test_extra_beds_and_baths(self, pricing):
        class Home:
            num_beds = 4
            num_baths = 2

        assert pricing.calculate_total_job_price(Home()) == 35000

    def test_half_bath_surcharge(self, pricing):
        class Home:
            num_beds = 1
            num_baths = 1.5

        assert pricing.calculate_total_job_price(Home()) == 17500

    def test_cleaner_count_does_not_change_price(self, pricing):
        class Home:
            num_beds = 3
            num_baths = 2

        assert pricing.calculate_total_job_price(Home(), cleaner_count=1) == pricing.calculate_total_job_price(
            Home(), cleaner_count=3
        )


class TestEarningsSplit:
    def test_equal_split_remainder_goes_to_first_cleaner(self, pricing):
        result = pricing.calculate_per_cleaner_earnings(10001, 3)
        nets = [e["netAmount"] for e in result["cleanerEarnings"]]

        assert result["platformFee"] == 1300
        assert result["netForCleaners"] == 8701
        assert nets == [2901, 2900, 2900]
        assert sum(nets) == result["netForCleaners"]

    def test_proportional_split_remainder_goes_to_last_cleaner(self, pricing):
        rooms = [
            RoomAssignment(cleaner_id=1, estimated_minutes=30),
            RoomAssignment(cleaner_id=2, estimated_minutes=40),
            RoomAssignment(cleaner_id=2, estimated_minutes=20),
        ]
        result = pricing.calculate_per_cleaner_earnings(10000, 2, rooms)
        earnings = result["cleanerEarnings"]

        assert [e["cleanerId"] for e in earnings] == [1, 2]
        assert earnings[0]["netAmount"] == 2900
        assert earnings[1]["netAmount"] == 5800
        assert earnings[1]["estimatedMinutes"] == 60

    def test_unassigned_rooms_are_grouped_by_slot(self, pricing):
        rooms = [
            RoomAssignment(cleaner_id=None, cleaner_slot_index=0, estimated_minutes=30),
            RoomAssignment(cleaner_id=None, cleaner_slot_index=1, estimated_minutes=30),
        ]
        result = pricing.calculate_per_cleaner_earnings(10000, 2, rooms)

        assert [e["cleanerId"] for e in result["cleanerEarnings"]] == [None, None]
        assert sum(e["netAmount"] for e in result["cleanerEarnings"]) == 8700

    def test_partial_payment(self, pricing):
        result = pricing.calculate_partial_payment(3, 4, 20000)

        assert result["partialPrice"] == 15000
        assert result["platformFee"] == 1950
        assert result["netForCleaners"] == 13050
        assert result["completionPercentage"] == 75


class TestJobEarnings:
    def test_per_cleaner_share(self, pricing, make_job):
        job = make_job(cleaner_count=2, beds=4, baths=2)
        assert pricing.per_cleaner_share(job) == 15225

    def test_solo_completion_earnings(self, pricing, make_job):
        job = make_job(cleaner_count=2, beds=4, baths=2)
        assert pricing.calculate_solo_completion_earnings(job.appointment_id) == 31500

    def test_room_shares_cover_the_net(self, pricing, make_job, db):
        job = make_job(cleaner_count=2, beds=4, baths=2)
        rooms = pricing.update_room_earnings_shares(job.id, 35000)

        # Per-room rounding may drift by a few cents
        assert abs(sum(r.earnings_share for r in rooms) - 30450) <= len(rooms)

    def test_breakdown_lists_assigned_cleaners(self, pricing, make_job, jobs, make_user):
        job = make_job(cleaner_count=2, beds=4, baths=2)
        cleaner = make_user(first_name="Dana")
        jobs.fill_slot(job.id, cleaner.id)

        breakdown = pricing.generate_earnings_breakdown(job.id)

        assert breakdown["totalPrice"] == 35000
        assert breakdown["cleanersConfirmed"] == 1
        assert [d["cleanerId"] for d in breakdown["cleanerDetails"]] == [cleaner.id]
        assert breakdown["cleanerDetails"][0]["cleanerName"] == "Dana Tester"
        assert breakdown["cleanerDetails"][0]["earnings"]["netAmount"] > 0
