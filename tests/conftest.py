import os

# Keep imports of the app modules away from any real database file
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import queues
from database import get_db
from main import app
from models import Base, Category, ReviewHistory

BASE_TIME = datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_category(db):
    def _make(name, description=None):
        category = Category(name=name, description=description)
        db.add(category)
        db.commit()
        return category
    return _make


@pytest.fixture
def add_review(db):
    """Insert a revision ``minutes`` after BASE_TIME."""
    def _add(category, review_id, stars, minutes=0, text="Some review text",
             tone=None, sentiment=None):
        created_at = BASE_TIME + timedelta(minutes=minutes)
        review = ReviewHistory(
            review_id=review_id,
            text=text,
            stars=stars,
            tone=tone,
            sentiment=sentiment,
            category_id=category.id,
            created_at=created_at,
            updated_at=created_at,
        )
        db.add(review)
        db.commit()
        return review
    return _add


@pytest.fixture
def queue_mocks():
    """Replace broker publishing with mocks for the duration of a test."""
    with patch.object(queues, "enqueue_bulk", side_effect=lambda name, jobs: len(list(jobs))) as bulk, \
            patch.object(queues, "log_message", return_value=True) as log:
        yield {"enqueue_bulk": bulk, "log_message": log}


@pytest.fixture
def client(session_factory, queue_mocks):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def resolve_latest(rows):
    """Current revision of each review_id from rows already in memory, newest
    first. Reference result for the SQL latest-revision queries."""
    latest = {}
    for row in rows:
        current = latest.get(row.review_id)
        if current is None or (row.created_at, row.id) > (current.created_at, current.id):
            latest[row.review_id] = row
    return sorted(latest.values(), key=lambda r: (r.created_at, r.id), reverse=True)
