"""Pytest configuration and fixtures.

This module makes the repository root importable so that ``app`` and the
``ecs_jenkins_github`` package resolve without installing the project.
"""

import sys
from pathlib import Path

import pytest

root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

from ecs_jenkins_github.settings import EnvironmentSecrets  # noqa: E402

SECRET_VARIABLES = {
    "": {
        "DB_USERNAME": "devadmin",
        "DB_PASSWORD": "dev-password-123",
        "GRAFANA_ADMIN_PASSWORD": "dev-grafana-pass",
    },
    "PROD_": {
        "PROD_DB_USERNAME": "prodadmin",
        "PROD_DB_PASSWORD": "prod-password-123",
        "PROD_GRAFANA_ADMIN_PASSWORD": "prod-grafana-pass",
    },
    "DR_": {
        "DR_DB_USERNAME": "dradmin",
        "DR_DB_PASSWORD": "dr-password-123",
        "DR_GRAFANA_ADMIN_PASSWORD": "dr-grafana-pass",
    },
}


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every secret and account variable from the process environment."""
    for variables in SECRET_VARIABLES.values():
        for name in variables:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("CDK_DEFAULT_ACCOUNT", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    return monkeypatch


@pytest.fixture
def secret_env(clean_env):
    """Set the secrets of all three environments."""
    for variables in SECRET_VARIABLES.values():
        for name, value in variables.items():
            clean_env.setenv(name, value)
    return SECRET_VARIABLES


@pytest.fixture
def missing_env_file(tmp_path):
    """Path of a .env file that does not exist, so only the process environment is read."""
    return tmp_path / ".env-nonexistent"


@pytest.fixture(scope="session")
def dev_secrets():
    """Dev credentials built directly, independent of the process environment."""
    return EnvironmentSecrets(
        _env_file=None,
        db_username="jenkins",
        db_password="s3cret-passw0rd",
        grafana_admin_password="grafana-passw0rd",
    )
