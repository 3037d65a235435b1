"""
Tests for the edge case homeowner decision and homeowner responses.
"""

from datetime import date, datetime, timedelta

import pytest
from freezegun import freeze_time

from multiclean import config
from multiclean.domain.multi_cleaner import sweepers
from multiclean.domain.multi_cleaner.dropout_service import DropoutService
from multiclean.domain.multi_cleaner.edge_case_service import EdgeCaseService
from multiclean.models_multi_cleaner import (
    COMPLETION_DROPPED_OUT,
    DECISION_AUTO_PROCEEDED,
    DECISION_CANCEL,
    DECISION_PENDING,
    DECISION_PROCEED,
    JOB_CANCELLED,
)
from multiclean.shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError


@pytest.fixture(autouse=True)
def thresholds(monkeypatch):
    monkeypatch.setattr(config, "LARGE_HOME_BEDS_THRESHOLD", 3)
    monkeypatch.setattr(config, "LARGE_HOME_BATHS_THRESHOLD", 3)


@pytest.fixture
def edge_cases(db, gateway):
    return EdgeCaseService(db, gateway)


@pytest.fixture
def short_edge_job(make_job, make_user, jobs):
    """A 3 bed / 2 bath job two days out with one of two cleaners confirmed"""

    def _make(days_ahead=2, beds=3, baths=2):
        job = make_job(cleaner_count=2, beds=beds, baths=baths, days_ahead=days_ahead)
        cleaner = make_user(first_name="Sam")
        jobs.fill_slot(job.id, cleaner.id)
        return job, cleaner

    return _make


class TestDecisionRequest:
    def test_homeowner_asked_once(self, edge_cases, short_edge_job, db, gateway, notifications_for):
        job, _cleaner = short_edge_job()

        assert edge_cases.process_edge_case_decisions() == {"processed": 1, "errors": 0}
        assert edge_cases.process_edge_case_decisions() == {"processed": 0, "errors": 0}

        db.refresh(job)
        assert job.edge_case_decision_required is True
        assert job.homeowner_decision == DECISION_PENDING
        assert job.edge_case_decision_expires_at - job.edge_case_decision_sent_at == timedelta(hours=24)
        sent = notifications_for(job.appointment.user_id, "edge_case_decision_required")
        assert len(sent) == 1
        assert sent[0].data["cleanerName"] == "Sam"
        assert len(gateway.emails) == 1

    def test_not_yet_in_window(self, edge_cases, short_edge_job):
        short_edge_job(days_ahead=5)
        assert edge_cases.process_edge_case_decisions()["processed"] == 0

    def test_homes_over_the_threshold_are_skipped(self, edge_cases, short_edge_job):
        short_edge_job(beds=4, baths=2)
        assert edge_cases.process_edge_case_decisions()["processed"] == 0

    def test_job_without_cleaners_is_skipped(self, edge_cases, make_job):
        make_job(cleaner_count=2, beds=3, baths=2, days_ahead=2)
        assert edge_cases.process_edge_case_decisions()["processed"] == 0


class TestAutoProceed:
    def test_silence_means_proceed(self, edge_cases, short_edge_job, db, notifications_for):
        job, cleaner = short_edge_job()
        edge_cases.process_edge_case_decisions()

        with freeze_time(datetime.utcnow() + timedelta(hours=25)):
            assert edge_cases.process_expired_edge_case_decisions() == {"processed": 1, "errors": 0}
            assert edge_cases.process_expired_edge_case_decisions() == {"processed": 0, "errors": 0}

        db.refresh(job)
        assert job.homeowner_decision == DECISION_AUTO_PROCEEDED
        assert len(notifications_for(job.appointment.user_id, "edge_case_auto_proceeded")) == 1
        assert len(notifications_for(cleaner.id, "edge_case_cleaner_confirmed")) == 1

    def test_deadline_not_reached(self, edge_cases, short_edge_job):
        short_edge_job()
        edge_cases.process_edge_case_decisions()

        assert edge_cases.process_expired_edge_case_decisions()["processed"] == 0


class TestHomeownerResponse:
    def test_proceed(self, edge_cases, short_edge_job, db, notifications_for):
        job, cleaner = short_edge_job()
        edge_cases.process_edge_case_decisions()
        homeowner_id = job.appointment.user_id

        result = edge_cases.handle_homeowner_response(job.appointment_id, homeowner_id, "proceed_edge_case")

        assert result["decision"] == DECISION_PROCEED
        db.refresh(job)
        assert job.homeowner_decision == DECISION_PROCEED
        assert len(notifications_for(cleaner.id, "edge_case_cleaner_confirmed")) == 1

    def test_second_decision_is_rejected(self, edge_cases, short_edge_job):
        job, _cleaner = short_edge_job()
        edge_cases.process_edge_case_decisions()
        homeowner_id = job.appointment.user_id
        edge_cases.handle_homeowner_response(job.appointment_id, homeowner_id, "proceed_edge_case")

        with pytest.raises(ConflictError, match="Decision has already been made") as exc:
            edge_cases.handle_homeowner_response(job.appointment_id, homeowner_id, "cancel_edge_case")
        assert exc.value.extra == {"currentDecision": DECISION_PROCEED}

    def test_cancel_releases_cleaner_without_fees(self, edge_cases, short_edge_job, db, notifications_for):
        job, cleaner = short_edge_job()
        edge_cases.process_edge_case_decisions()

        result = edge_cases.handle_homeowner_response(
            job.appointment_id, job.appointment.user_id, "cancel_edge_case"
        )

        assert result["message"] == "Appointment cancelled with no fees"
        db.refresh(job)
        assert job.status == JOB_CANCELLED
        assert job.homeowner_decision == DECISION_CANCEL
        assert job.appointment.payment_status == "cancelled"
        assert job.appointment.has_been_assigned is False
        assert [c.status for c in edge_cases.repo.get_all_completions(db, job.id)] == [COMPLETION_DROPPED_OUT]
        assert len(notifications_for(cleaner.id, "edge_case_cleaner_cancelled")) == 1
        assert len(notifications_for(job.appointment.user_id, "edge_case_cancelled")) == 1

    def test_edge_case_answer_without_pending_decision(self, edge_cases, short_edge_job):
        job, _cleaner = short_edge_job()

        with pytest.raises(ConflictError, match="No edge case decision required"):
            edge_cases.handle_homeowner_response(job.appointment_id, job.appointment.user_id, "proceed_edge_case")

    def test_proceed_with_one_is_acknowledged(self, edge_cases, make_appointment, db):
        appointment = make_appointment(beds=2, baths=1)

        result = edge_cases.handle_homeowner_response(appointment.id, appointment.user_id, "proceed_with_one")

        assert result["message"] == "Appointment will proceed with available cleaner(s)"
        db.refresh(appointment)
        assert appointment.homeowner_solo_warning_acknowledged is True

    def test_plain_cancel_cancels_the_job(self, edge_cases, make_job, db):
        job = make_job(cleaner_count=2)

        edge_cases.handle_homeowner_response(job.appointment_id, job.appointment.user_id, "cancel")

        db.refresh(job)
        assert job.status == JOB_CANCELLED

    def test_reschedule(self, edge_cases, make_appointment, db):
        appointment = make_appointment()
        new_date = date.today() + timedelta(days=30)

        result = edge_cases.handle_homeowner_response(
            appointment.id, appointment.user_id, "reschedule", reschedule_date=new_date
        )

        assert result["rescheduleDate"] == new_date.isoformat()
        db.refresh(appointment)
        assert appointment.reschedule_requested_date == new_date

    def test_reschedule_needs_a_date(self, edge_cases, make_appointment):
        appointment = make_appointment()
        with pytest.raises(ValidationFailedError, match="Reschedule date required"):
            edge_cases.handle_homeowner_response(appointment.id, appointment.user_id, "reschedule")

    def test_unknown_response(self, edge_cases, make_appointment):
        appointment = make_appointment()
        with pytest.raises(ValidationFailedError, match="Invalid response. Use: proceed_with_one"):
            edge_cases.handle_homeowner_response(appointment.id, appointment.user_id, "shrug")

    def test_someone_elses_appointment(self, edge_cases, make_appointment, make_user):
        appointment = make_appointment()
        with pytest.raises(ForbiddenError, match="Not your appointment"):
            edge_cases.handle_homeowner_response(appointment.id, make_user(type="homeowner").id, "cancel")

    def test_missing_appointment(self, edge_cases):
        with pytest.raises(NotFoundError):
            edge_cases.handle_homeowner_response(999, 1, "cancel")


class TestKeptCleanerStaysOn:
    def test_no_solo_offer_after_homeowner_proceeds(self, edge_cases, short_edge_job, db, gateway, monkeypatch):
        monkeypatch.setattr(config, "SOLO_OFFER_DAYS", 3)
        job, _cleaner = short_edge_job()
        edge_cases.process_edge_case_decisions()
        edge_cases.handle_homeowner_response(job.appointment_id, job.appointment.user_id, "proceed_edge_case")

        assert sweepers.process_solo_completion_offers(db, gateway)["processed"] == 0
        db.refresh(job)
        assert job.solo_offer_sent_at is None

    def test_lapsed_solo_offer_keeps_the_kept_cleaner(self, edge_cases, short_edge_job, db):
        job, cleaner = short_edge_job()
        edge_cases.process_edge_case_decisions()
        edge_cases.handle_homeowner_response(job.appointment_id, job.appointment.user_id, "proceed_edge_case")
        dropouts = DropoutService(db, edge_cases.gateway)
        dropouts.offer_solo_completion(job.id, cleaner.id)

        with freeze_time(datetime.utcnow() + timedelta(hours=config.SOLO_OFFER_HOURS + 1)):
            assert dropouts.process_expired_solo_offers()["processed"] == 0

        db.refresh(job)
        assert job.cleaners_confirmed == 1
        assert job.solo_offer_expired is True
        assert dropouts.repo.get_active_completion(db, job.id, cleaner.id) is not None
