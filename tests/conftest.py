import pytest
from fastapi.testclient import TestClient

from notes_api.api.main import create_app
from notes_api.config import Settings


@pytest.fixture
def sql_settings(tmp_path):
    return Settings(storage_backend="sql", db_dir=tmp_path / "db", disable_auth=True)


@pytest.fixture
def file_settings(tmp_path):
    return Settings(storage_backend="file", notes_root=tmp_path / "notes", disable_auth=True)


@pytest.fixture(params=["sql", "file"])
def settings(request):
    """Settings for each storage backend in turn."""
    return request.getfixturevalue(f"{request.param}_settings")


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client
