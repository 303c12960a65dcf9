from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STAR_SYNC_PAGE_DELAY_SECONDS"] = "0"
os.environ.pop("STAR_SYNC_DEFAULT_NOTIFY_URL", None)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import starsync.models  # noqa: F401
from starsync.config.database import Base
from starsync.services.stars.star_store import StarStore


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> StarStore:
    return StarStore(session_factory)
