"""Secrets and process settings loaded from environment variables.

Values come from the process environment or a ``.env`` file at the
repository root. Each deployment environment reads its own variables,
distinguished by a prefix (``""`` for dev, ``"PROD_"`` and ``"DR_"``).
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ecs_jenkins_github.errors import InvalidSecretError, MissingSecretError

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = Path(__file__).parent.parent / ".env"

_DB_USERNAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,62}$")
_DB_PASSWORD_FORBIDDEN = set('/@" ')


class EnvironmentSecrets(BaseSettings):
    """Credentials for one deployment environment.

    Blank values are allowed here so that every missing variable can be
    reported at once by :func:`load_environment_secrets`.
    """

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        hide_input_in_errors=True,
    )

    db_username: str = Field(
        default="",
        description="Master username of the Jenkins database",
    )
    db_password: SecretStr = Field(
        default=SecretStr(""),
        description="Master password of the Jenkins database",
    )
    grafana_admin_password: SecretStr = Field(
        default=SecretStr(""),
        description="Grafana admin user password",
    )

    @field_validator("db_username")
    @classmethod
    def validate_db_username(cls, v: str) -> str:
        """Validate that the username is accepted by RDS PostgreSQL."""
        if v.strip() and not _DB_USERNAME_PATTERN.match(v):
            raise ValueError(
                "Database username must start with a letter and contain only letters, digits and underscores"
            )
        return v

    @field_validator("db_password")
    @classmethod
    def validate_db_password(cls, v: SecretStr) -> SecretStr:
        """Validate that the password is accepted by RDS PostgreSQL."""
        value = v.get_secret_value()
        if not value.strip():
            return v
        if len(value) < 8:
            raise ValueError("Database password must be at least 8 characters")
        if _DB_PASSWORD_FORBIDDEN.intersection(value):
            raise ValueError("Database password must not contain '/', '@', '\"' or spaces")
        return v

    def missing_variables(self, prefix: str) -> list[str]:
        """Return the environment variable names whose values are blank."""
        values = {
            "db_username": self.db_username,
            "db_password": self.db_password.get_secret_value(),
            "grafana_admin_password": self.grafana_admin_password.get_secret_value(),
        }
        return [f"{prefix}{name}".upper() for name, value in values.items() if not value.strip()]


class AppSettings(BaseSettings):
    """Process-wide settings for the CDK app."""

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    cdk_default_account: Optional[str] = Field(
        default=None,
        description="AWS account the stacks are deployed to",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level of the synthesis process",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the level is a standard logging level name."""
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


def load_environment_secrets(
    environment: str,
    prefix: str,
    env_file: Optional[Union[str, Path]] = DEFAULT_ENV_FILE,
) -> EnvironmentSecrets:
    """Load the credentials of one environment and fail if any is blank.

    Args:
        environment: Environment name, used in error messages
        prefix: Environment variable prefix, e.g. ``"PROD_"``
        env_file: Optional ``.env`` file to read in addition to the process environment

    Returns:
        EnvironmentSecrets: The validated credentials

    Raises:
        MissingSecretError: If any credential is unset or blank
        InvalidSecretError: If a credential is not accepted by RDS
    """
    try:
        secrets = EnvironmentSecrets(_env_prefix=prefix, _env_file=env_file)
    except ValidationError as e:
        problems = {
            f"{prefix}{error['loc'][0]}".upper(): error["msg"]
            for error in e.errors(include_input=False, include_url=False)
        }
        raise InvalidSecretError(environment, problems) from None
    missing = secrets.missing_variables(prefix)
    if missing:
        raise MissingSecretError(environment, missing)
    logger.debug(f"Loaded secrets for {environment} environment (prefix '{prefix}')")
    return secrets
