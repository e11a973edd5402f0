import pytest

from portal import storage
from portal.config import Settings

TEST_USERS = {"gm-pass": "GM", "frunk-pass": "frunk", "sharon-pass": "sharon"}


@pytest.fixture(autouse=True)
def test_settings(tmp_path):
    """Point storage at a fresh tmp data dir before every test."""
    settings = Settings(
        data_dir=tmp_path / "data",
        secret="test-secret",
        users=dict(TEST_USERS),
        lock_timeout=0.3,
    )
    storage.init_storage(settings)
    return settings
