import importlib
import os

import pytest
from fastapi.testclient import TestClient

from library_loans.library import Library


@pytest.fixture
def lib(tmp_path, request):
    # Every test gets its own database file
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def client(tmp_path, request, monkeypatch):
    # The API builds its Library at import time, so point it at a per-test
    # database and reload the module.
    db_file = str(tmp_path / f"api_test_{request.node.name}.db")
    monkeypatch.setenv("LIBRARY_DB_FILE", db_file)

    import library_loans.api as api_module
    importlib.reload(api_module)

    test_client = TestClient(api_module.app)
    yield test_client
    if os.path.exists(db_file):
        try:
            os.remove(db_file)
        except OSError:
            pass
