"""
Shared test configuration.

Sets HOLDSIM_DB_PATH to a temporary file for each test session so the
API tests never touch a database in the project directory.
"""

import os

import pytest


@pytest.fixture(autouse=True, scope="session")
def _isolate_db(tmp_path_factory):
    """Use a temp DB path for all tests to avoid polluting the project dir."""
    tmp_dir = tmp_path_factory.mktemp("holdsim_test_data")
    db_path = str(tmp_dir / "test_holdsim.db")
    os.environ["HOLDSIM_DB_PATH"] = db_path
    yield
    os.environ.pop("HOLDSIM_DB_PATH", None)
