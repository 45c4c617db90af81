"""Shared pytest fixtures for the timestamp camera tests."""

from datetime import datetime, timedelta, timezone

import pytest

from timestamp_camera.camera import TimestampSourceNames, register
from timestamp_camera.models import Config
from timestamp_camera.resource import Registry


FIXED_TIME = datetime(2026, 10, 18, 12, 34, 56, 789000, tzinfo=timezone.utc)


class StepClock:
    """Returns FIXED_TIME, then advances by one second per call."""

    def __init__(self, start=FIXED_TIME, step=timedelta(seconds=1)):
        self.current = start
        self.step = step
        self.calls = 0

    def __call__(self):
        now = self.current
        self.current += self.step
        self.calls += 1
        return now


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def registry() -> Registry:
    registry = Registry()
    register(registry)
    return registry


@pytest.fixture
def cam(clock):
    camera = TimestampSourceNames("camera", Config(n_images=3), clock=clock)
    yield camera
    camera.close()


@pytest.fixture
def fixed_time() -> datetime:
    return FIXED_TIME
