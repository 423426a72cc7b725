from __future__ import annotations

import os

# Module-level engines are built at import time; keep them off Postgres.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from commit_translator.config.database import Base  # noqa: E402
from commit_translator.services.analysis_store import AnalysisStore  # noqa: E402
from commit_translator.services.events import EventBus  # noqa: E402
import commit_translator.models  # noqa: E402,F401


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(session_factory, event_bus) -> AnalysisStore:
    return AnalysisStore(session_factory=session_factory, event_bus=event_bus)
