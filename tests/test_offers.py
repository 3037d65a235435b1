"""
Tests for cleaner job offers.
"""

from datetime import datetime, timedelta

import pytest
from freezegun import freeze_time

from multiclean.domain.multi_cleaner.offer_service import OfferService
from multiclean.models_multi_cleaner import (
    DECISION_PROCEED,
    JOB_FILLED,
    JOB_PARTIALLY_FILLED,
    OFFER_DECLINED,
    OFFER_EXPIRED,
    OFFER_PENDING,
    OFFER_WITHDRAWN,
)
from multiclean.shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError


@pytest.fixture
def offers(db, gateway):
    return OfferService(db, gateway)


class TestCreateOffer:
    def test_defaults_to_equal_share_and_next_rooms(self, offers, make_job, make_user):
        job = make_job(cleaner_count=2, beds=4, baths=2)
        offer = offers.create_offer(job.id, make_user().id)

        assert offer.status == OFFER_PENDING
        assert offer.earnings_offered == 15225
        assert len(offer.rooms_offered) == 4
        assert offer.expires_at > datetime.utcnow()

    def test_one_live_offer_per_cleaner(self, offers, make_job, make_user):
        job = make_job(cleaner_count=2)
        cleaner = make_user()
        offers.create_offer(job.id, cleaner.id)

        with pytest.raises(ConflictError):
            offers.create_offer(job.id, cleaner.id)

    def test_rejects_unknown_offer_type(self, offers, make_job, make_user):
        job = make_job(cleaner_count=2)
        with pytest.raises(ValidationFailedError):
            offers.create_offer(job.id, make_user().id, offer_type="bribe")


class TestAcceptOffer:
    def test_accept_fills_a_slot(self, offers, make_job, make_user):
        job = make_job(cleaner_count=2)
        cleaner = make_user()
        offer = offers.create_offer(job.id, cleaner.id)

        result = offers.accept_offer(offer.id, cleaner.id)

        assert result["success"] is True
        assert result["job"]["status"] == JOB_PARTIALLY_FILLED
        assert result["job"]["cleanersConfirmed"] == 1
        assert result["offer"]["status"] == "accepted"
        assert result["assignedRooms"] == len(result["assignedRoomIds"]) > 0

    def test_co_cleaner_is_told(self, offers, make_job, make_user, notifications_for):
        job = make_job(cleaner_count=2)
        first, second = make_user(), make_user()
        offers.accept_offer(offers.create_offer(job.id, first.id).id, first.id)

        result = offers.accept_offer(offers.create_offer(job.id, second.id).id, second.id)

        assert result["job"]["status"] == JOB_FILLED
        assert len(notifications_for(first.id, "multi_cleaner_co_cleaner_joined")) == 1
        assert notifications_for(second.id, "multi_cleaner_co_cleaner_joined") == []

    def test_edge_case_wording_after_homeowner_proceeded(self, offers, make_job, make_user, db, notifications_for):
        job = make_job(cleaner_count=2, beds=3, baths=2)
        first, second = make_user(), make_user()
        offers.accept_offer(offers.create_offer(job.id, first.id).id, first.id)
        job.homeowner_decision = DECISION_PROCEED
        db.commit()

        offers.accept_offer(offers.create_offer(job.id, second.id).id, second.id)

        assert len(notifications_for(first.id, "edge_case_second_cleaner_joined")) == 1

    def test_notification_failure_does_not_undo_accept(self, db, make_job, make_user, make_gateway):
        job = make_job(cleaner_count=2)
        first, second = make_user(), make_user()
        offers = OfferService(db, make_gateway(fail_for={first.id}))
        offers.accept_offer(offers.create_offer(job.id, first.id).id, first.id)

        result = offers.accept_offer(offers.create_offer(job.id, second.id).id, second.id)

        assert result["success"] is True
        assert result["job"]["status"] == JOB_FILLED
        assert result["notificationErrors"][0]["userId"] == first.id

    def test_offer_for_someone_else(self, offers, make_job, make_user):
        job = make_job(cleaner_count=2)
        offer = offers.create_offer(job.id, make_user().id)

        with pytest.raises(ForbiddenError, match="This offer is not for you"):
            offers.accept_offer(offer.id, make_user().id)

    def test_missing_offer(self, offers):
        with pytest.raises(NotFoundError, match="Offer not found"):
            offers.accept_offer(404, 1)

    def test_expired_offer(self, offers, make_job, make_user):
        job = make_job(cleaner_count=2)
        cleaner = make_user()
        offer = offers.create_offer(job.id, cleaner.id)

        with freeze_time(datetime.utcnow() + timedelta(hours=49)):
            with pytest.raises(ConflictError, match="Offer has expired"):
                offers.accept_offer(offer.id, cleaner.id)

    def test_accepting_twice(self, offers, make_job, make_user):
        job = make_job(cleaner_count=2)
        cleaner = make_user()
        offer = offers.create_offer(job.id, cleaner.id)
        offers.accept_offer(offer.id, cleaner.id)

        with pytest.raises(ConflictError, match="no longer available"):
            offers.accept_offer(offer.id, cleaner.id)

    def test_accept_on_filled_job_keeps_offer_pending(self, offers, make_job, make_user, db):
        job = make_job(cleaner_count=2)
        late = make_user()
        late_offer = offers.create_offer(job.id, late.id)
        for cleaner in (make_user(), make_user()):
            offers.accept_offer(offers.create_offer(job.id, cleaner.id).id, cleaner.id)

        with pytest.raises(ConflictError, match="All cleaner slots are already filled"):
            offers.accept_offer(late_offer.id, late.id)

        db.refresh(late_offer)
        assert late_offer.status == OFFER_PENDING


class TestDeclineAndList:
    def test_decline_records_reason(self, offers, make_job, make_user):
        job = make_job(cleaner_count=2)
        cleaner = make_user()
        offer = offers.create_offer(job.id, cleaner.id)

        offer = offers.decline_offer(offer.id, cleaner.id, "Out of town")

        assert offer.status == OFFER_DECLINED
        assert offer.declined_reason == "Out of town"

    def test_list_splits_personal_offers_and_open_jobs(self, offers, make_job, make_user):
        offered_job = make_job(cleaner_count=2)
        open_job = make_job(cleaner_count=2)
        cleaner = make_user()
        offers.create_offer(offered_job.id, cleaner.id)

        listing = offers.list_offers_for_cleaner(cleaner.id)

        assert [o["multiCleanerJobId"] for o in listing["personalOffers"]] == [offered_job.id]
        assert [j["id"] for j in listing["availableJobs"]] == [open_job.id]


class TestOfferSweeps:
    def test_expired_offers_are_marked_once(self, offers, make_job, make_user, db, notifications_for):
        job = make_job(cleaner_count=2)
        cleaner = make_user()
        offer = offers.create_offer(job.id, cleaner.id)

        with freeze_time(datetime.utcnow() + timedelta(hours=49)):
            assert offers.process_expired_offers() == {"processed": 1, "errors": 0}
            assert offers.process_expired_offers() == {"processed": 0, "errors": 0}

        db.refresh(offer)
        assert offer.status == OFFER_EXPIRED
        assert len(notifications_for(cleaner.id, "multi_cleaner_offer_expired")) == 1

    def test_pending_offers_withdrawn_once_job_fills(self, offers, make_job, make_user, db, notifications_for):
        job = make_job(cleaner_count=2)
        bystander = make_user()
        stale = offers.create_offer(job.id, bystander.id)
        for cleaner in (make_user(), make_user()):
            offers.accept_offer(offers.create_offer(job.id, cleaner.id).id, cleaner.id)

        assert offers.withdraw_offers_for_filled_jobs()["processed"] == 1

        db.refresh(stale)
        assert stale.status == OFFER_WITHDRAWN
        assert len(notifications_for(bystander.id, "multi_cleaner_offer_withdrawn")) == 1

    def test_cancelling_a_job_withdraws_offers(self, offers, make_job, make_user, db):
        job = make_job(cleaner_count=2)
        offer = offers.create_offer(job.id, make_user().id)

        offers.jobs.cancel_job(job.id)

        db.refresh(offer)
        assert offer.status == OFFER_WITHDRAWN
