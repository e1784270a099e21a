"""
Shared fixtures for the CriticMerge tests.
"""

import pytest

from critic_merge.config_logging import MergeConfig, reset_config
from critic_merge.routes import create_app


@pytest.fixture
def config(tmp_path) -> MergeConfig:
    """Engine configuration with the snapshot kept in a temp directory."""
    return MergeConfig(
        log_level='WARNING',
        snapshot_path=tmp_path / '.rev' / 'conflicts.json'
    )


@pytest.fixture
def app(config):
    """Flask app bound to the test configuration."""
    app = create_app(config)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture(autouse=True)
def _fresh_global_config():
    """Drop any cached global configuration between tests."""
    reset_config()
    yield
    reset_config()
