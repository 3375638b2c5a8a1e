import pytest

from livecell import use_runtime


@pytest.fixture(autouse=True)
def runtime():
    """Fresh evaluation stack and dispatch queue for every test."""
    with use_runtime() as rt:
        yield rt
