import pytest

from correlator.config import CorrelatorConfig, QueryConfig
from correlator.persistence import InMemoryCorrelationRepository, SQLiteCorrelationRepository
from correlator.security import Identity
from correlator.service import CorrelationService


@pytest.fixture
def alice():
    return Identity(user_id="alice", token="token-alice")


@pytest.fixture
def bob():
    return Identity(user_id="bob", token="token-bob")


@pytest.fixture
def admin():
    return Identity(
        user_id="admin",
        token="token-admin",
        claims={"can_manage_process_instances": True, "can_delete_process_model": True},
    )


@pytest.fixture
def auditor():
    return Identity(
        user_id="auditor",
        token="token-auditor",
        claims={"can_read_process_instances": True},
    )


@pytest.fixture(params=["inmemory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "inmemory":
        return InMemoryCorrelationRepository()
    return SQLiteCorrelationRepository(tmp_path / "correlations.db")


@pytest.fixture
def service(repository):
    return CorrelationService(repository)


@pytest.fixture
def small_batch_service(repository):
    config = CorrelatorConfig(
        query=QueryConfig(default_limit=5, max_limit=8, scan_batch_size=2)
    )
    return CorrelationService(repository, config=config)
