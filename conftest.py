"""py.test configuration."""
import pytest

# Sample programs run by `test_integration.py`; they aren't test modules themselves.
collect_ignore = ["compiler/tests"]


def pytest_addoption(parser):
    parser.addoption("--keep-transformed", action="store_true",
                     help="write the command-line compiler's output to working directory")


@pytest.fixture(scope="session")
def keep_transformed(request) -> bool:
    return request.config.getoption("--keep-transformed")
