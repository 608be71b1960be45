import pytest

from ct_watch.diagnostics import Diagnostics

from tests.helpers import EventRecorder


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def diagnostics(recorder):
    return Diagnostics(recorder)
