"""Exceptions raised while loading deployment configuration."""


class ConfigurationError(ValueError):
    """Raised when an environment configuration record or setting is invalid."""


class MissingSecretError(ConfigurationError):
    """Raised when required secret environment variables are unset or blank."""

    def __init__(self, environment: str, variables: list[str]) -> None:
        self.environment = environment
        self.variables = variables
        super().__init__(
            f"Missing secrets for {environment} environment: {', '.join(variables)}"
        )


class InvalidSecretError(ConfigurationError):
    """Raised when secret environment variables hold values that cannot be used.

    Only the variable names and the validation messages are kept; the
    offending values never appear in the error.
    """

    def __init__(self, environment: str, problems: dict[str, str]) -> None:
        self.environment = environment
        self.problems = problems
        self.variables = list(problems)
        details = "; ".join(f"{name}: {message}" for name, message in problems.items())
        super().__init__(f"Invalid secrets for {environment} environment: {details}")
