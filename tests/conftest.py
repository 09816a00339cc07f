"""Global pytest fixtures & helpers.

Adds project root to path and provides reusable fix factories, storage and
session fixtures to avoid duplication across files.
"""
from __future__ import annotations

import os
import sys
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from street_sweeper.models import LocationFix
from street_sweeper.services import PersistenceService, PersistenceServiceConfig
from street_sweeper.storage import InMemoryStorage
from street_sweeper.tracking import TrackingSession

USER_ID = "user-1"

# Roughly 111 m per 0.001 degree of latitude.
LAT_STEP = 0.001


# --- Factory helpers -------------------------------------------------
def make_fix(lat, lng, t, accuracy=5.0):
    return LocationFix(latitude=lat, longitude=lng, accuracy_meters=accuracy, timestamp=t)


def northbound_fixes(count, start_lat=40.0, lng=-74.0, step=LAT_STEP, dt=10.0):
    """Fixes heading north, each one grid cell beyond the previous."""
    return [make_fix(start_lat + i * step, lng, i * dt) for i in range(count)]


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def memory_storage():
    return InMemoryStorage()


@pytest.fixture
def sync_persistence(memory_storage):
    service = PersistenceService(
        PersistenceServiceConfig(storage=memory_storage, user_id=USER_ID, synchronous=True)
    )
    yield service
    service.close()


@pytest.fixture
def session(sync_persistence):
    return TrackingSession(persistence=sync_persistence)


@pytest.fixture
def active_session(session):
    session.start()
    return session
