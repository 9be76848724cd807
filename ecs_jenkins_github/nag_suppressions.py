"""cdk-nag suppressions registered on each environment stack."""

import logging

from aws_cdk import Stack
from cdk_nag import NagPackSuppression, NagSuppressions

from ecs_jenkins_github.errors import ConfigurationError

logger = logging.getLogger(__name__)

STACK_SUPPRESSIONS: dict[str, list[dict[str, str]]] = {
    "dev": [
        {"id": "AwsSolutions-IAM4", "reason": "Using managed policies for demo purposes"},
        {"id": "AwsSolutions-IAM5", "reason": "Using wildcards in IAM policies for demo purposes"},
        {"id": "AwsSolutions-RDS3", "reason": "Using password authentication for demonstration purposes"},
        {"id": "AwsSolutions-EC23", "reason": "Using SSH key pairs for ease of demonstration"},
    ],
    "prod": [
        {"id": "AwsSolutions-IAM4", "reason": "Using managed policies for production"},
        {"id": "AwsSolutions-IAM5", "reason": "Using wildcards in IAM policies"},
        {"id": "AwsSolutions-RDS3", "reason": "Using password authentication"},
        {"id": "AwsSolutions-EC23", "reason": "Using SSH key pairs for management"},
    ],
    "dr": [
        {"id": "AwsSolutions-IAM4", "reason": "Using managed policies for DR environment"},
        {"id": "AwsSolutions-IAM5", "reason": "Using wildcards in IAM policies for DR"},
        {"id": "AwsSolutions-RDS3", "reason": "Using password authentication for DR database"},
        {"id": "AwsSolutions-EC23", "reason": "Using SSH key pairs for DR instance management"},
    ],
}


def suppressions_for(environment: str) -> list[NagPackSuppression]:
    """Build the stack-level suppressions of an environment.

    Raises:
        ConfigurationError: If the environment has no suppression set
    """
    try:
        entries = STACK_SUPPRESSIONS[environment]
    except KeyError:
        raise ConfigurationError(f"No nag suppressions defined for environment '{environment}'") from None
    return [NagPackSuppression(id=entry["id"], reason=entry["reason"]) for entry in entries]


def apply_stack_suppressions(stack: Stack, environment: str) -> None:
    """Register the environment's suppressions on every resource of the stack."""
    suppressions = suppressions_for(environment)
    NagSuppressions.add_stack_suppressions(stack, suppressions)
    logger.info(
        f"Registered {len(suppressions)} nag suppressions on {stack.stack_name}: "
        f"{', '.join(s.id for s in suppressions)}"
    )
