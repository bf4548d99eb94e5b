import pytest

from observability.event_store import event_store


@pytest.fixture(autouse=True)
def clean_event_store():
    """Events are process-global; start every test empty."""
    event_store.clear()
    yield
    event_store.clear()
