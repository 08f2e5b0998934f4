"""Unit test conftest: no DB, no I/O."""
import pytest


# Ensure no DB fixtures leak into unit tests
@pytest.fixture(autouse=True)
def _no_db_in_unit_tests(request):
    """Guard: unit tests must not use DB fixtures."""
    if "sql_store" in request.fixturenames or "test_db_engine" in request.fixturenames:
        pytest.fail("Unit tests must not use DB fixtures. Use @pytest.mark.integration.")
