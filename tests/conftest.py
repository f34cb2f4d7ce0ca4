import pytest

from drift_reconciler.state.store import InMemoryStateStore

from tests.fakes import FakeClock, make_env


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def prod():
    return make_env("prod", auto_remediate=True)


@pytest.fixture
def staging():
    return make_env("staging", auto_remediate=False)
