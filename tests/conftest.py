"""
Pytest configuration and shared fixtures.
"""

import itertools
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from multiclean import models, models_multi_cleaner  # noqa: F401
from multiclean.database import Base
from multiclean.domain.multi_cleaner.job_lifecycle import MultiCleanerJobService
from multiclean.domain.multi_cleaner.notifications import NotificationGateway
from multiclean.models import Appointment, Home, JobPhoto, Notification, User
from multiclean.shared.errors import UpstreamError

_ids = itertools.count(1)


class RecordingGateway(NotificationGateway):
    """Writes in-app notifications for real and records email/push instead of sending"""

    def __init__(self, db, fail_email: bool = False, fail_push: bool = False, fail_for=()):
        super().__init__(db)
        self.emails = []
        self.pushes = []
        self.fail_email = fail_email
        self.fail_push = fail_push
        self.fail_for = set(fail_for)

    def notify(self, user_id, type, title, body, data=None, action_required=False, expires_at=None):
        if user_id in self.fail_for:
            raise UpstreamError("Notification store unavailable")
        return super().notify(user_id, type, title, body, data, action_required, expires_at)

    def send_email(self, to, subject, mjml_content):
        if self.fail_email:
            raise UpstreamError("Failed to send email: provider down")
        self.emails.append({"to": to, "subject": subject, "mjml": mjml_content})
        return {"id": f"email-{len(self.emails)}"}

    def send_push(self, token, title, body, data=None):
        if self.fail_push:
            raise UpstreamError("Failed to send push notification: provider down")
        self.pushes.append({"token": token, "title": title, "body": body, "data": data or {}})
        return {"data": {"status": "ok"}}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway(db):
    return RecordingGateway(db)


@pytest.fixture
def make_gateway(db):
    def _make(**kwargs):
        return RecordingGateway(db, **kwargs)

    return _make


@pytest.fixture
def jobs(db, gateway):
    return MultiCleanerJobService(db, gateway)


@pytest.fixture
def make_user(db):
    def _make(type="cleaner", first_name=None, last_name="Tester", push_token=None, email=True):
        n = next(_ids)
        user = User(
            first_name=first_name or f"{type.title()}{n}",
            last_name=last_name,
            email=f"{type}{n}@example.com" if email else None,
            type=type,
            expo_push_token=push_token,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_appointment(db, make_user):
    def _make(beds=4, baths=2, days_ahead=10, homeowner=None, preferred_cleaner_id=None):
        homeowner = homeowner or make_user(type="homeowner")
        home = Home(
            user_id=homeowner.id,
            address="12 Harbor Lane",
            city="Portland",
            state="ME",
            zipcode="04101",
            num_beds=beds,
            num_baths=baths,
            square_footage=2400,
            preferred_cleaner_id=preferred_cleaner_id,
        )
        db.add(home)
        db.flush()
        appointment = Appointment(
            user_id=homeowner.id,
            home_id=home.id,
            date=date.today() + timedelta(days=days_ahead),
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture
def make_job(jobs, make_appointment):
    """Create a job on a fresh appointment; extra kwargs go to the appointment factory"""

    def _make(cleaner_count=2, **appointment_kwargs):
        appointment = make_appointment(**appointment_kwargs)
        return jobs.create_job(appointment.id, cleaner_count)

    return _make


@pytest.fixture
def add_photos(db):
    def _add(room, cleaner_id):
        for photo_type in ("before", "after"):
            db.add(JobPhoto(room_assignment_id=room.id, cleaner_id=cleaner_id, photo_type=photo_type))
        db.commit()

    return _add


@pytest.fixture
def notifications_for(db):
    def _get(user_id, type=None):
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if type is not None:
            query = query.filter(Notification.type == type)
        return query.order_by(Notification.id.asc()).all()

    return _get
