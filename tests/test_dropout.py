"""
Tests for dropouts, solo completion and extra work offers.
"""

from datetime import datetime, timedelta

import pytest
from freezegun import freeze_time

from multiclean import config
from multiclean.domain.multi_cleaner.dropout_service import DropoutService
from multiclean.models_multi_cleaner import (
    COMPLETION_COMPLETED,
    COMPLETION_NO_SHOW,
    JOB_OPEN,
    JOB_PARTIALLY_FILLED,
)
from multiclean.shared.errors import ConflictError, ForbiddenError, NotFoundError


@pytest.fixture
def dropouts(db, gateway):
    return DropoutService(db, gateway)


@pytest.fixture(autouse=True)
def price_table(monkeypatch):
    monkeypatch.setattr(config, "PLATFORM_FEE_PERCENT", 0.13)
    monkeypatch.setattr(config, "SOLO_PLATFORM_FEE_PERCENT", 0.10)
    monkeypatch.setattr(config, "SOLO_LARGE_HOME_BONUS_CENTS", 0)


@pytest.fixture
def staffed_job(make_job, make_user, jobs):
    """A job with every slot taken; returns (job, cleaners)"""

    def _make(cleaner_count=2, **kwargs):
        job = make_job(cleaner_count=cleaner_count, **kwargs)
        cleaners = [make_user() for _ in range(cleaner_count)]
        for cleaner in cleaners:
            jobs.fill_slot(job.id, cleaner.id)
        return job, cleaners

    return _make


class TestDropout:
    def test_one_left_can_go_solo(self, dropouts, staffed_job, db, notifications_for):
        job, (leaving, staying) = staffed_job(2)

        result = dropouts.handle_cleaner_dropout(job.id, leaving.id, "Family emergency")

        assert result["remainingCleaners"] == 1
        assert result["remainingCleanerIds"] == [staying.id]
        assert result["shortfall"] == 1
        assert result["canProceedSolo"] is True
        assert result["canProceedWithRebalance"] is False
        assert result["job"].status == JOB_PARTIALLY_FILLED
        assert len(dropouts.repo.get_unassigned_rooms(db, job.id)) > 0
        assert len(notifications_for(staying.id, "cleaner_dropout_solo_possible")) == 1
        assert len(notifications_for(job.appointment.user_id, "cleaner_dropout_homeowner_solo")) == 1

    def test_several_left_share_the_rooms(self, dropouts, staffed_job, notifications_for):
        job, (leaving, *staying) = staffed_job(3, beds=6, baths=4)

        result = dropouts.handle_cleaner_dropout(job.id, leaving.id)

        assert result["canProceedWithRebalance"] is True
        for cleaner in staying:
            assert len(notifications_for(cleaner.id, "cleaner_dropout_extra_rooms")) == 1
        assert len(notifications_for(job.appointment.user_id, "cleaner_dropout_homeowner_reduced")) == 1

    def test_last_cleaner_leaving_alerts_homeowner_by_email(self, dropouts, make_job, make_user, jobs, gateway, notifications_for):
        job = make_job(cleaner_count=2)
        cleaner = make_user()
        jobs.fill_slot(job.id, cleaner.id)

        result = dropouts.handle_cleaner_dropout(job.id, cleaner.id)

        assert result["remainingCleaners"] == 0
        assert result["job"].status == JOB_OPEN
        homeowner_id = job.appointment.user_id
        assert len(notifications_for(homeowner_id, "all_cleaners_unavailable")) == 1
        assert [e["to"] for e in gateway.emails] == [job.appointment.user.email]

    def test_no_show(self, dropouts, staffed_job, db):
        job, (absent, _present) = staffed_job(2)

        dropouts.handle_no_show(job.id, absent.id)

        history = {c.cleaner_id: c for c in dropouts.repo.get_all_completions(db, job.id)}
        assert history[absent.id].status == COMPLETION_NO_SHOW
        assert history[absent.id].dropout_reason == "No-show"

    def test_no_dropout_after_the_job_is_done(self, dropouts, staffed_job, add_photos, db, notifications_for):
        job, cleaners = staffed_job(2)
        for cleaner in cleaners:
            for room in dropouts.repo.get_cleaner_rooms(db, job.id, cleaner.id):
                add_photos(room, cleaner.id)
                dropouts.jobs.complete_room(room.id, cleaner.id)

        with pytest.raises(ConflictError, match="no longer active"):
            dropouts.handle_cleaner_dropout(job.id, cleaners[0].id)

        db.expire_all()
        assert {c.status for c in dropouts.repo.get_all_completions(db, job.id)} == {COMPLETION_COMPLETED}
        assert notifications_for(job.appointment.user_id, "cleaner_dropout_homeowner_solo") == []

    def test_unassigned_cleaner_cannot_drop_out(self, dropouts, make_job, make_user):
        job = make_job(cleaner_count=2)
        with pytest.raises(NotFoundError):
            dropouts.handle_cleaner_dropout(job.id, make_user().id)


class TestSoloCompletion:
    def test_offer_and_accept(self, dropouts, staffed_job, db, notifications_for):
        job, (leaving, staying) = staffed_job(2)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)

        offer = dropouts.offer_solo_completion(job.id, staying.id)
        assert offer["earnings"] == 31500
        assert offer["job"].solo_offer_expires_at is not None
        assert len(notifications_for(staying.id, "solo_completion_offer")) == 1

        result = dropouts.accept_solo_completion(job.appointment_id, staying.id)

        assert result["message"] == "You will complete this job solo for full pay"
        assert result["earnings"] == 31500
        assert result["earningsFormatted"] == "$315.00"
        assert len(result["assignedRoomIds"]) == 9
        assert job.appointment.solo_cleaner_consent is True
        assert dropouts.repo.get_unassigned_rooms(db, job.id) == []
        assert len(notifications_for(job.appointment.user_id, "solo_completion_accepted")) == 1

    def test_accept_requires_assignment(self, dropouts, staffed_job, make_user):
        job, _ = staffed_job(2)
        with pytest.raises(ForbiddenError, match="not assigned"):
            dropouts.accept_solo_completion(job.appointment_id, make_user().id)

    def test_decline_releases_the_cleaner(self, dropouts, staffed_job, notifications_for):
        job, (leaving, staying) = staffed_job(2)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)
        dropouts.offer_solo_completion(job.id, staying.id)

        result = dropouts.handle_solo_decline(job.id, staying.id)

        assert result["remainingCleaners"] == 0
        assert result["job"].solo_offer_declined is True
        assert result["job"].cleaners_confirmed == 0
        assert len(notifications_for(job.appointment.user_id, "all_cleaners_unavailable")) == 1

    def test_unanswered_solo_offer_counts_as_decline(self, dropouts, staffed_job, db):
        job, (leaving, staying) = staffed_job(2)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)
        dropouts.offer_solo_completion(job.id, staying.id)

        with freeze_time(datetime.utcnow() + timedelta(hours=config.SOLO_OFFER_HOURS + 1)):
            assert dropouts.process_expired_solo_offers() == {"processed": 1, "errors": 0}
            assert dropouts.process_expired_solo_offers() == {"processed": 0, "errors": 0}

        db.refresh(job)
        assert job.solo_offer_expired is True
        assert job.cleaners_confirmed == 0
        assert dropouts.repo.get_active_completion(db, job.id, staying.id) is None

    def test_lapsed_offer_without_dropout_keeps_the_cleaner(self, dropouts, make_job, make_user, jobs, db):
        job = make_job(cleaner_count=2)
        lone = make_user()
        jobs.fill_slot(job.id, lone.id)
        dropouts.offer_solo_completion(job.id, lone.id)

        with freeze_time(datetime.utcnow() + timedelta(hours=config.SOLO_OFFER_HOURS + 1)):
            assert dropouts.process_expired_solo_offers() == {"processed": 0, "errors": 0}

        db.refresh(job)
        assert job.solo_offer_expired is True
        assert job.cleaners_confirmed == 1
        assert dropouts.repo.get_active_completion(db, job.id, lone.id) is not None

    def test_accepted_solo_offer_survives_expiry(self, dropouts, staffed_job, db):
        job, (leaving, staying) = staffed_job(2)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)
        dropouts.offer_solo_completion(job.id, staying.id)
        dropouts.accept_solo_completion(job.appointment_id, staying.id)

        with freeze_time(datetime.utcnow() + timedelta(hours=config.SOLO_OFFER_HOURS + 1)):
            assert dropouts.process_expired_solo_offers()["processed"] == 0

        assert dropouts.repo.get_active_completion(db, job.id, staying.id) is not None


class TestExtraWork:
    def test_rooms_are_rebalanced_and_offered(self, dropouts, staffed_job, db, notifications_for):
        job, (leaving, *staying) = staffed_job(3, beds=6, baths=4)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)

        result = dropouts.offer_extra_work_to_remaining_cleaners(job.id)

        assert sorted(o["cleanerId"] for o in result["offers"]) == sorted(c.id for c in staying)
        assert sum(o["extraRooms"] for o in result["offers"]) > 0
        assert dropouts.repo.get_unassigned_rooms(db, job.id) == []
        for cleaner in staying:
            assert len(notifications_for(cleaner.id, "extra_work_offer")) == 1

    def test_single_survivor_gets_solo_offer_instead(self, dropouts, staffed_job):
        job, (leaving, staying) = staffed_job(2)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)

        result = dropouts.offer_extra_work_to_remaining_cleaners(job.id)

        assert result["cleanerId"] == staying.id
        assert result["earnings"] == 31500

    def test_accept_and_decline(self, dropouts, staffed_job, db):
        job, (leaving, keen, reluctant) = staffed_job(3, beds=6, baths=4)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)
        dropouts.offer_extra_work_to_remaining_cleaners(job.id)

        accepted = dropouts.accept_extra_work(job.id, keen.id)
        declined = dropouts.handle_decline_extra_work(job.id, reluctant.id, "Too much")

        assert accepted["success"] is True
        assert accepted["earnings"] > 0
        assert declined["remainingCleanerIds"] == [keen.id]

    def test_accept_without_offer(self, dropouts, staffed_job):
        job, cleaners = staffed_job(2)
        with pytest.raises(ConflictError, match="No extra work offer"):
            dropouts.accept_extra_work(job.id, cleaners[0].id)

    def test_accept_after_expiry(self, dropouts, staffed_job):
        job, (leaving, keen, _other) = staffed_job(3, beds=6, baths=4)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)
        dropouts.offer_extra_work_to_remaining_cleaners(job.id)

        with freeze_time(datetime.utcnow() + timedelta(hours=config.EXTRA_WORK_OFFER_HOURS + 1)):
            with pytest.raises(ConflictError, match="expired"):
                dropouts.accept_extra_work(job.id, keen.id)

    def test_silence_releases_cleaner_and_solo_offer_follows(self, dropouts, staffed_job, db, notifications_for):
        job, (leaving, keen, silent) = staffed_job(3, beds=6, baths=4)
        dropouts.handle_cleaner_dropout(job.id, leaving.id)
        dropouts.offer_extra_work_to_remaining_cleaners(job.id)
        dropouts.accept_extra_work(job.id, keen.id)

        with freeze_time(datetime.utcnow() + timedelta(hours=config.EXTRA_WORK_OFFER_HOURS + 1)):
            result = dropouts.handle_expired_extra_work_offers()

        assert result == {"processed": 1, "released": 1, "errors": 0}
        assert dropouts.repo.active_cleaner_ids(db, job.id) == [keen.id]
        assert len(notifications_for(keen.id, "solo_completion_offer")) == 1
