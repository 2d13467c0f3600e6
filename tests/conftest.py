import pytest

from pg_deployer.utils.sanitizer import clear_registered_secrets


@pytest.fixture(autouse=True)
def forget_resolved_secrets():
    yield
    clear_registered_secrets()
