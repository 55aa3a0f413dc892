"""
Pytest configuration and shared fixtures for testing the Clubroom API.
"""
import os

os.environ.setdefault("CLUBROOM_DATABASE_URL", "sqlite://")
os.environ["CLUBROOM_RATE_LIMIT_ENABLED"] = "0"

from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clubroom.database import Base
from clubroom.main import app
from clubroom.deps import get_clock, get_db, get_password_hash
from clubroom import models
from clubroom.core import slots
from clubroom.core.ports import FixedClock
from clubroom.repository import BookingRepository


# Use an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Tuesday morning; the ISO week runs from Monday 9 to Sunday 15 March
NOW = datetime(2026, 3, 10, 9, 0)
TODAY = NOW.date()
TOMORROW = date(2026, 3, 11)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture(scope="function")
def client(db_session, clock):
    """
    Create a test client with the test database and a fixed clock.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _add_user(db_session, username, role=models.ROLE_MEMBER, status=models.USER_ACTIVE, plan=None):
    user = models.User(
        name=username.title(),
        username=username,
        email=f"{username}@example.com",
        hashed_password=get_password_hash(f"{username}pass123"),
        role=role,
        status=status,
        plan_id=plan.id if plan is not None else None,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _login(client, username):
    response = client.post(
        "/users/login",
        params={"username": username, "password": f"{username}pass123"},
    )
    return response.json()["access_token"]


@pytest.fixture
def player_plan(db_session):
    """
    A plan with every quota and guest billing enabled.
    """
    plan = models.Plan(
        name="Player",
        price=50.0,
        weekly_quota=2,
        monthly_quota=4,
        late_night_quota=1,
        invites=2,
        extra_invite_price=10.0,
        voting_weight=1,
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture
def master_plan(db_session):
    """
    A plan without caps (all quotas 0).
    """
    plan = models.Plan(
        name="Master",
        price=120.0,
        weekly_quota=0,
        monthly_quota=0,
        late_night_quota=0,
        invites=4,
        extra_invite_price=0.0,
        voting_weight=3,
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture
def admin_user(db_session):
    return _add_user(db_session, "admin", role=models.ROLE_ADMIN)


@pytest.fixture
def editor_user(db_session):
    return _add_user(db_session, "editor", role=models.ROLE_EDITOR)


@pytest.fixture
def member(db_session, player_plan):
    """
    Active member on the Player plan.
    """
    return _add_user(db_session, "member", plan=player_plan)


@pytest.fixture
def other_member(db_session, player_plan):
    return _add_user(db_session, "other", plan=player_plan)


@pytest.fixture
def visitor(db_session):
    """
    Account without a plan; can be a guest but never organize.
    """
    return _add_user(db_session, "visitor")


@pytest.fixture
def pending_member(db_session, player_plan):
    return _add_user(db_session, "late", status=models.USER_PENDING, plan=player_plan)


@pytest.fixture
def admin_token(client, admin_user):
    return _login(client, "admin")


@pytest.fixture
def editor_token(client, editor_user):
    return _login(client, "editor")


@pytest.fixture
def member_token(client, member):
    return _login(client, "member")


@pytest.fixture
def other_token(client, other_member):
    return _login(client, "other")


@pytest.fixture
def visitor_token(client, visitor):
    return _login(client, "visitor")


@pytest.fixture
def sample_room(db_session):
    room = models.Room(
        name="Dragon Room",
        description="Big table, two shelves of board games",
        capacity=6,
        status=models.ROOM_AVAILABLE,
    )
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def book(db_session):
    """
    Store a booking directly, claiming its half-hour units.
    """
    def _book(room, organizer, day, start_time, end_time, guests=(), participants=None, title="Campaign"):
        booking = models.Booking(
            room_id=room.id,
            organizer_id=organizer.id,
            date=day,
            start_time=start_time,
            end_time=end_time,
            title=title,
            participant_ids=list(participants) if participants is not None else [organizer.id],
            guest_ids=list(guests),
            status=models.BOOKING_CONFIRMED,
        )
        BookingRepository(db_session).create(booking, slots.booking_units(booking))
        return booking

    return _book


@pytest.fixture
def sample_booking(book, sample_room, member):
    """
    Tomorrow afternoon session organized by ``member``.
    """
    return book(sample_room, member, TOMORROW, "13:00", "17:30")


def get_auth_header(token: str) -> dict:
    """
    Helper function to create authorization header.
    """
    return {"Authorization": f"Bearer {token}"}
