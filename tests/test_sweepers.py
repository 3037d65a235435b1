"""
Tests for the scheduled fill monitor sweeps.
"""

from datetime import datetime, timedelta

import pytest
from freezegun import freeze_time

from multiclean import config
from multiclean.domain.multi_cleaner import sweepers


@pytest.fixture(autouse=True)
def windows(monkeypatch):
    monkeypatch.setattr(config, "LARGE_HOME_BEDS_THRESHOLD", 3)
    monkeypatch.setattr(config, "LARGE_HOME_BATHS_THRESHOLD", 3)
    monkeypatch.setattr(config, "URGENT_FILL_DAYS", 7)
    monkeypatch.setattr(config, "FINAL_WARNING_DAYS", 3)
    monkeypatch.setattr(config, "SOLO_OFFER_DAYS", 1)
    monkeypatch.setattr(config, "URGENT_NOTIFICATION_INTERVAL_HOURS", 6)


class TestUrgentFill:
    def test_once_per_interval(self, db, gateway, make_job, make_user, notifications_for):
        make_job(cleaner_count=2, days_ahead=5)
        bystander = make_user()

        first = sweepers.process_urgent_fill_notifications(db, gateway)
        again = sweepers.process_urgent_fill_notifications(db, gateway)

        assert first["processed"] == 1
        assert first["notified"] >= 1
        assert again["processed"] == 0
        assert len(notifications_for(bystander.id, "multi_cleaner_urgent")) == 1

        with freeze_time(datetime.utcnow() + timedelta(hours=7)):
            later = sweepers.process_urgent_fill_notifications(db, gateway)

        assert later["processed"] == 1
        assert len(notifications_for(bystander.id, "multi_cleaner_urgent")) == 2

    def test_confirmed_cleaners_are_not_pinged(self, db, gateway, make_job, make_user, jobs, notifications_for):
        job = make_job(cleaner_count=2, days_ahead=5)
        confirmed = make_user()
        jobs.fill_slot(job.id, confirmed.id)

        sweepers.process_urgent_fill_notifications(db, gateway)

        assert notifications_for(confirmed.id, "multi_cleaner_urgent") == []

    def test_far_off_jobs_are_left_alone(self, db, gateway, make_job, make_user):
        make_job(cleaner_count=2, days_ahead=10)
        make_user()

        assert sweepers.process_urgent_fill_notifications(db, gateway)["processed"] == 0

    def test_filled_jobs_are_left_alone(self, db, gateway, make_job, make_user, jobs):
        job = make_job(cleaner_count=2, days_ahead=5)
        jobs.fill_slot(job.id, make_user().id)
        jobs.fill_slot(job.id, make_user().id)

        assert sweepers.process_urgent_fill_notifications(db, gateway)["processed"] == 0


class TestFinalWarning:
    def test_homeowner_warned_once(self, db, gateway, make_job, notifications_for):
        job = make_job(cleaner_count=2, days_ahead=2)

        assert sweepers.process_final_warnings(db, gateway) == {"processed": 1, "errors": 0}
        assert sweepers.process_final_warnings(db, gateway) == {"processed": 0, "errors": 0}

        db.refresh(job)
        assert job.final_warning_at is not None
        warnings = notifications_for(job.appointment.user_id, "multi_cleaner_final_warning")
        assert len(warnings) == 1
        assert warnings[0].data["slotsRemaining"] == 2
        assert [e["to"] for e in gateway.emails] == [job.appointment.user.email]

    def test_outside_window(self, db, gateway, make_job):
        make_job(cleaner_count=2, days_ahead=5)
        assert sweepers.process_final_warnings(db, gateway)["processed"] == 0


class TestSoloCompletionOffers:
    def test_lone_cleaner_gets_offer_the_day_before(self, db, gateway, make_job, make_user, jobs, notifications_for):
        job = make_job(cleaner_count=2, days_ahead=1)
        cleaner = make_user()
        jobs.fill_slot(job.id, cleaner.id)

        assert sweepers.process_solo_completion_offers(db, gateway) == {"processed": 1, "errors": 0}
        assert sweepers.process_solo_completion_offers(db, gateway) == {"processed": 0, "errors": 0}

        db.refresh(job)
        assert job.solo_offer_expires_at is not None
        assert len(notifications_for(cleaner.id, "solo_completion_offer")) == 1

    def test_empty_job_gets_no_offer(self, db, gateway, make_job):
        make_job(cleaner_count=2, days_ahead=1)
        assert sweepers.process_solo_completion_offers(db, gateway)["processed"] == 0


class TestFillMonitor:
    def test_runs_every_sweep(self, db, gateway, make_job, make_user, jobs):
        job = make_job(cleaner_count=2, beds=3, baths=2, days_ahead=2)
        jobs.fill_slot(job.id, make_user().id)
        make_user()

        result = sweepers.run_multi_cleaner_fill_monitor(db, gateway)

        assert result["urgentFillNotifications"] == 1
        assert result["finalWarnings"] == 1
        assert result["soloCompletionOffers"] == 0
        assert result["edgeCaseDecisions"] == 1
        assert result["expiredEdgeCaseDecisions"] == 0
        assert result["errors"] == 0
        assert "timestamp" in result

    def test_failing_sweep_does_not_stop_the_rest(self, db, gateway, make_job, monkeypatch):
        make_job(cleaner_count=2, days_ahead=2)

        def boom(db, gateway=None):
            raise RuntimeError("database went away")

        monkeypatch.setattr(
            sweepers,
            "FILL_MONITOR_SWEEPS",
            (("urgentFillNotifications", boom),) + sweepers.FILL_MONITOR_SWEEPS[1:],
        )

        result = sweepers.run_multi_cleaner_fill_monitor(db, gateway)

        assert result["urgentFillNotifications"] == 0
        assert result["finalWarnings"] == 1
        assert result["errors"] == 1
